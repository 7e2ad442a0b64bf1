import numpy as np
import pytest

from chaser.config import ObjectsHandlerParams
from chaser.mapping.occupancy import SpatialOccupancy, encode_snapshot


RES = 0.5


@pytest.fixture
def box_occupancy():
    """
    Two occupied voxels at opposite corners of the box (0,0,0)-(10,10,5) at 0.5 m.
    The rest of the box is unknown.
    """
    occupied = np.array([[0.25, 0.25, 0.25], [9.75, 9.75, 4.75]])
    return SpatialOccupancy.from_points(occupied, RES)


@pytest.fixture
def free_only_occupancy():
    free = np.array([[0.25, 0.25, 0.25], [4.75, 4.75, 2.25]])
    return SpatialOccupancy.from_points(np.empty((0, 3)), RES, free_pts=free)


@pytest.fixture
def box_snapshot(box_occupancy):
    return encode_snapshot(box_occupancy, is_full=True)


@pytest.fixture
def params():
    return ObjectsHandlerParams()


class FakeLookup:
    """Lookup callable backed by a dict: frame -> (position, quat) or exception."""

    def __init__(self, table=None):
        self.table = dict(table or {})
        self.calls = []

    def __call__(self, reference_frame, target_frame, time_ns=None):
        self.calls.append((reference_frame, target_frame, time_ns))
        entry = self.table.get(target_frame)
        if entry is None:
            raise LookupError(f"no transform for {target_frame}")
        if isinstance(entry, Exception):
            raise entry
        return entry


@pytest.fixture
def fake_lookup():
    return FakeLookup()
