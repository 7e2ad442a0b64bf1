# edf.py
# Euclidean distance field over a SpatialOccupancy, saturated at a max search distance.
from __future__ import annotations

import logging
import time
from typing import Tuple

import numpy as np
from scipy.ndimage import distance_transform_edt

from chaser.errors import DegenerateVolumeError
from chaser.mapping.occupancy import SpatialOccupancy


log = logging.getLogger("edf")

# Tolerance when snapping metric bounds onto the voxel lattice
_KEY_EPS = 1e-6


class DistanceField:
    """
    Read-only distance-to-nearest-obstacle lookup.

    Distances are measured between voxel centres at the map resolution and
    clipped to [0, max_distance]. The occupancy map is borrowed, not copied:
    whoever built the field keeps owning it. The distance array is taken over
    as is and frozen in place (setflags(write=False)), so callers must not
    hand in an array they still write to.
    """

    def __init__(
        self,
        occupancy: SpatialOccupancy,
        dist: np.ndarray,
        key_origin: np.ndarray,
        max_distance: float,
        bbox_min: Tuple[float, float, float],
        bbox_max: Tuple[float, float, float],
        unknown_as_occupied: bool,
        build_seconds: float,
    ):
        self.occupancy = occupancy
        self.resolution = occupancy.resolution
        self.max_distance = float(max_distance)
        self.bbox_min = tuple(float(v) for v in bbox_min)
        self.bbox_max = tuple(float(v) for v in bbox_max)
        self.unknown_as_occupied = bool(unknown_as_occupied)
        self.build_seconds = float(build_seconds)

        self._dist = dist
        self._dist.setflags(write=False)
        self._key_origin = np.asarray(key_origin, dtype=np.int64)
        self._shape = np.asarray(dist.shape, dtype=np.int64)

    @property
    def shape(self) -> Tuple[int, int, int]:
        return tuple(int(s) for s in self._shape)

    def distances_at(self, points: np.ndarray) -> np.ndarray:
        """
        Vectorized lookup for (N,3) points -> (N,) float32.
        Points outside the volume read the nearest boundary voxel.
        """
        pts = np.asarray(points, dtype=np.float64).reshape(-1, 3)
        if not np.isfinite(pts).all():
            raise ValueError("distance query with non-finite point")
        keys = np.floor(pts / self.resolution).astype(np.int64) - self._key_origin
        np.clip(keys, 0, self._shape - 1, out=keys)
        return self._dist[keys[:, 0], keys[:, 1], keys[:, 2]]

    def distance_at(self, point) -> float:
        return float(self.distances_at(np.asarray(point, dtype=np.float64).reshape(1, 3))[0])


def build_distance_field(
    occupancy: SpatialOccupancy,
    max_distance: float,
    bbox_min,
    bbox_max,
    unknown_as_occupied: bool = False,
) -> DistanceField:
    """
    Rasterize the map over [bbox_min, bbox_max] and run an exact EDT on it.

    Raises DegenerateVolumeError if the box has no volume.
    """
    lo = np.asarray(bbox_min, dtype=np.float64).reshape(3)
    hi = np.asarray(bbox_max, dtype=np.float64).reshape(3)
    if not (np.isfinite(lo).all() and np.isfinite(hi).all()) or np.any(hi - lo <= 0.0):
        raise DegenerateVolumeError(f"Degenerate EDT volume: min={lo.tolist()} max={hi.tolist()}")
    if max_distance <= 0.0:
        raise ValueError(f"max_distance must be > 0, got {max_distance}")

    begin = time.perf_counter()

    res = occupancy.resolution
    key_lo = np.floor(lo / res + _KEY_EPS).astype(np.int64)
    key_hi = np.maximum(np.ceil(hi / res - _KEY_EPS).astype(np.int64), key_lo + 1)
    shape = tuple(int(s) for s in (key_hi - key_lo))

    # Obstacle mask: unknown voxels start as obstacles only when asked to
    occ = np.full(shape, bool(unknown_as_occupied), dtype=bool)
    idx = occupancy.keys.astype(np.int64) - key_lo
    inside = np.all((idx >= 0) & (idx < np.asarray(shape)), axis=1)
    idx = idx[inside]
    occ[idx[:, 0], idx[:, 1], idx[:, 2]] = occupancy.occupied_mask()[inside]

    if np.any(occ):
        dist = distance_transform_edt(~occ, sampling=res).astype(np.float32)
        np.minimum(dist, np.float32(max_distance), out=dist)
    else:
        dist = np.full(shape, max_distance, dtype=np.float32)

    elapsed = time.perf_counter() - begin
    log.info("[Objects handler] dynamic EDT computed in %f [sec]", elapsed)

    return DistanceField(
        occupancy,
        dist,
        key_lo,
        max_distance,
        tuple(lo),
        tuple(hi),
        unknown_as_occupied,
        elapsed,
    )
