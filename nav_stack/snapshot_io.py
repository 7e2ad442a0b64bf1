# snapshot_io.py
# Offline occupancy snapshots on disk: the same bytes the octomap topic would carry.
from __future__ import annotations

import logging
import os

from chaser.mapping.occupancy import SpatialOccupancy, encode_snapshot


log = logging.getLogger("snapshot_io")


def _atomic_write(path: str, payload: bytes) -> None:
    """
    Atomic write:
      write to path + ".tmp" then os.replace().
    """
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    tmp_path = path + ".tmp"
    try:
        with open(tmp_path, "wb") as f:
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    finally:
        # If something failed before replace(), try to delete the temp file.
        try:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
        except OSError as e:
            log.warning("Failed to delete temp snapshot '%s': %s", tmp_path, e)


def save_snapshot_file(path: str, occupancy: SpatialOccupancy, *, is_full: bool = True) -> None:
    payload = encode_snapshot(occupancy, is_full=is_full)
    _atomic_write(path, payload)
    log.info("Saved %s snapshot: %s (%d voxels, %d bytes)",
             "full" if is_full else "binary", path, len(occupancy), len(payload))


def load_snapshot_file(path: str) -> bytes:
    """Raw snapshot bytes; decoding (and its errors) is left to the handler."""
    if not os.path.isfile(path):
        raise FileNotFoundError(f"Snapshot not found: {path}")
    with open(path, "rb") as f:
        raw = f.read()
    log.info("Loaded snapshot: %s (%d bytes)", path, len(raw))
    return raw
