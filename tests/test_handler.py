import io
import threading

import numpy as np
import pytest

from chaser.config import ObjectsHandlerParams
from chaser.errors import DecodeError, DegenerateVolumeError, FieldNotReadyError
from chaser.mapping.occupancy import SpatialOccupancy, encode_snapshot
from chaser.objects.handler import FieldState, ObjectsHandler


def _accessors(handler):
    return [
        handler.get_occupancy,
        lambda: handler.distance_field,
        lambda: handler.distance_at([1.0, 1.0, 1.0]),
        lambda: handler.distance_grid,
        lambda: handler.grid_spec,
        lambda: handler.markers,
    ]


def test_queries_before_snapshot_raise(params, fake_lookup):
    handler = ObjectsHandler(params, fake_lookup)
    assert handler.state is FieldState.AWAITING_MAP
    assert not handler.is_field_ready
    for get in _accessors(handler):
        with pytest.raises(FieldNotReadyError):
            get()


def test_first_snapshot_builds_field(params, fake_lookup, box_snapshot):
    handler = ObjectsHandler(params, fake_lookup)
    assert handler.on_snapshot(box_snapshot) is True
    assert handler.state is FieldState.FIELD_READY

    spec = handler.grid_spec
    assert spec.origin == pytest.approx((0.0, 0.0, 0.4))
    assert spec.dims == (20, 20, 10)
    np.testing.assert_allclose(handler.bbox_min, [0.0, 0.0, 0.0])
    np.testing.assert_allclose(handler.bbox_max, [10.0, 10.0, 5.0])

    values = handler.distance_grid.values
    assert np.all((values >= 0.0) & (values <= params.edf_max_dist))
    assert handler.distance_at([0.25, 0.25, 0.25]) == 0.0
    assert len(handler.markers) > 0
    assert len(handler.get_occupancy()) == 2


def test_later_snapshots_are_ignored(params, fake_lookup, box_snapshot):
    handler = ObjectsHandler(params, fake_lookup)
    handler.on_snapshot(box_snapshot)
    grid = handler.distance_grid
    markers = handler.markers

    other = SpatialOccupancy.from_points(np.array([[3.25, 3.25, 1.25], [20.25, 20.25, 8.25]]), 0.5)
    assert handler.on_snapshot(encode_snapshot(other)) is False
    assert handler.on_snapshot(b"garbage") is False

    assert handler.distance_grid is grid
    assert handler.markers is markers
    assert handler.state is FieldState.FIELD_READY


def test_malformed_snapshot_fails_the_field(params, fake_lookup, box_snapshot):
    handler = ObjectsHandler(params, fake_lookup)
    with pytest.raises(DecodeError):
        handler.on_snapshot(b"garbage")
    assert handler.state is FieldState.FIELD_FAILED
    for get in _accessors(handler):
        with pytest.raises(FieldNotReadyError):
            get()

    # No retry: a good snapshot afterwards is ignored
    assert handler.on_snapshot(box_snapshot) is False
    assert handler.state is FieldState.FIELD_FAILED


def test_encoding_flag_selects_decoder(fake_lookup, box_occupancy):
    handler = ObjectsHandler(ObjectsHandlerParams(is_octomap_full=False), fake_lookup)
    assert handler.on_snapshot(encode_snapshot(box_occupancy, is_full=False)) is True


def test_encoding_override_per_call(params, fake_lookup, box_occupancy):
    handler = ObjectsHandler(params, fake_lookup)
    with pytest.raises(DecodeError):
        handler.on_snapshot(encode_snapshot(box_occupancy, is_full=False))

    handler = ObjectsHandler(params, fake_lookup)
    assert handler.on_snapshot(encode_snapshot(box_occupancy, is_full=False), is_full=False) is True


def test_empty_map_is_degenerate(params, fake_lookup):
    empty = SpatialOccupancy(0.5, np.empty((0, 3)), np.empty(0))
    handler = ObjectsHandler(params, fake_lookup)
    with pytest.raises(DegenerateVolumeError):
        handler.on_snapshot(encode_snapshot(empty))
    assert handler.state is FieldState.FIELD_FAILED


def test_floor_above_map_is_degenerate(fake_lookup, box_snapshot):
    handler = ObjectsHandler(ObjectsHandlerParams(min_z=5.0), fake_lookup)
    with pytest.raises(DegenerateVolumeError):
        handler.on_snapshot(box_snapshot)
    assert handler.state is FieldState.FIELD_FAILED


def test_failure_is_logged_with_traceback(params, fake_lookup, caplog):
    caplog.set_level("ERROR", logger="objects_handler")
    handler = ObjectsHandler(params, fake_lookup)
    with pytest.raises(DecodeError):
        handler.on_snapshot(b"garbage")
    records = [r for r in caplog.records if r.name == "objects_handler"]
    assert len(records) == 1
    assert records[0].exc_info is not None


def test_concurrent_snapshots_build_once(params, fake_lookup, box_snapshot):
    handler = ObjectsHandler(params, fake_lookup)
    results = []
    barrier = threading.Barrier(4)

    def deliver():
        barrier.wait()
        results.append(handler.on_snapshot(box_snapshot))

    threads = [threading.Thread(target=deliver) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(results) == [False, False, False, True]
    assert handler.state is FieldState.FIELD_READY


def test_pose_accessors_delegate_to_tracker(params, fake_lookup):
    fake_lookup.table["/firefly/base_link"] = (np.array([1.0, 2.0, 3.0]), np.array([0.0, 0.0, 0.0, 1.0]))
    handler = ObjectsHandler(params, fake_lookup)
    handler.tf_update()
    assert handler.is_chaser_received
    assert not handler.is_target_received
    np.testing.assert_allclose(handler.get_chaser_pose().position, [1.0, 2.0, 3.0])
    assert handler.get_target_pose().position[2] == pytest.approx(params.min_z)


def test_non_numeric_log_odds_fail_the_field(params, fake_lookup, box_snapshot):
    bad = io.BytesIO()
    np.savez(
        bad,
        tree_type=np.array("OcTree"),
        encoding=np.array("full"),
        resolution=np.array(0.5),
        keys=np.array([[0, 0, 0], [1, 0, 0]], dtype=np.int32),
        log_odds=np.array(["occ", "free"]),
        occupancy_threshold=np.array(0.0),
        clamping_thresholds=np.array([-2.0, 3.5]),
    )
    handler = ObjectsHandler(params, fake_lookup)
    with pytest.raises(DecodeError):
        handler.on_snapshot(bad.getvalue())
    assert handler.state is FieldState.FIELD_FAILED

    assert handler.on_snapshot(box_snapshot) is False
    assert handler.state is FieldState.FIELD_FAILED


def test_unexpected_build_error_still_fails_the_field(params, fake_lookup, box_snapshot, monkeypatch):
    handler = ObjectsHandler(params, fake_lookup)

    def broken_build(raw, is_full):
        raise RuntimeError("backend exploded")

    monkeypatch.setattr(handler, "_build_field", broken_build)
    with pytest.raises(RuntimeError):
        handler.on_snapshot(box_snapshot)
    assert handler.state is FieldState.FIELD_FAILED
    assert handler.on_snapshot(box_snapshot) is False
