import numpy as np
import pytest

from chaser.mapping.occupancy import decode_snapshot
from snapshot_io import load_snapshot_file, save_snapshot_file


def test_saved_snapshot_decodes(tmp_path, box_occupancy):
    path = str(tmp_path / "maps" / "box.npz")
    save_snapshot_file(path, box_occupancy)

    raw = load_snapshot_file(path)
    occ = decode_snapshot(raw, is_full=True)
    np.testing.assert_array_equal(occ.keys, box_occupancy.keys)
    assert not (tmp_path / "maps" / "box.npz.tmp").exists()


def test_binary_snapshot_file(tmp_path, box_occupancy):
    path = str(tmp_path / "box_binary.npz")
    save_snapshot_file(path, box_occupancy, is_full=False)
    occ = decode_snapshot(load_snapshot_file(path), is_full=False)
    np.testing.assert_array_equal(occ.occupied_mask(), box_occupancy.occupied_mask())


def test_missing_snapshot_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_snapshot_file(str(tmp_path / "nope.npz"))
