# occupancy.py
# Sparse voxel occupancy map (octomap-like leaf storage) and its snapshot codec.
#
# Snapshot wire format (.npz archive, no pickles):
#   tree_type   0-d str     must be "OcTree"
#   encoding    0-d str     "full" | "binary"
#   resolution  0-d float   voxel edge length (meters)
#   keys        (N,3) int32 voxel keys, floor(p / resolution)
#   full:   log_odds (N,) float32, occupancy_threshold 0-d float, clamping_thresholds (2,) float
#   binary: occupied packbits(N bools) uint8, count 0-d int
from __future__ import annotations

import io
import logging
import zipfile
from typing import Dict, Optional, Tuple

import numpy as np

from chaser.errors import DecodeError


log = logging.getLogger("occupancy")

TREE_TYPE = "OcTree"

# Octomap defaults, in log-odds: occupied if p > 0.5, clamp to p in [0.1192, 0.971]
OCCUPANCY_THRESHOLD = 0.0
CLAMPING_THRESHOLDS = (-2.0, 3.5)

_KEY_MIN = np.iinfo(np.int32).min
_KEY_MAX = np.iinfo(np.int32).max


# ---- Occupancy map ------------------------------------------------------------
class SpatialOccupancy:
    """
    Known voxels of a 3D occupancy map at a single resolution.

    Attributes:
      resolution: voxel edge length (meters)
      keys:       (N,3) int32 voxel keys, voxel k spans [k*res, (k+1)*res)
      log_odds:   (N,)  float32 occupancy log-odds per known voxel
    Voxels without a key are unknown.
    """

    def __init__(
        self,
        resolution: float,
        keys: np.ndarray,
        log_odds: np.ndarray,
        *,
        occupancy_threshold: float = OCCUPANCY_THRESHOLD,
        clamping_thresholds: Tuple[float, float] = CLAMPING_THRESHOLDS,
    ):
        if not np.isfinite(resolution) or resolution <= 0.0:
            raise ValueError(f"resolution must be > 0, got {resolution}")
        keys = np.asarray(keys, dtype=np.int32).reshape(-1, 3)
        log_odds = np.asarray(log_odds, dtype=np.float32).reshape(-1)
        if keys.shape[0] != log_odds.shape[0]:
            raise ValueError(f"keys ({keys.shape[0]}) and log_odds ({log_odds.shape[0]}) differ in length")

        self.resolution = float(resolution)
        self.keys = keys
        self.log_odds = log_odds
        self.occupancy_threshold = float(occupancy_threshold)
        self.clamping_thresholds = (float(clamping_thresholds[0]), float(clamping_thresholds[1]))
        self._index: Optional[Dict[Tuple[int, int, int], int]] = None

    @classmethod
    def from_points(
        cls,
        occupied_pts: np.ndarray,
        resolution: float,
        free_pts: Optional[np.ndarray] = None,
    ) -> "SpatialOccupancy":
        """Build a map marking voxels hit by occupied_pts occupied and free_pts free (occupied wins)."""
        lo_free, lo_occ = CLAMPING_THRESHOLDS
        occ_keys = _points_to_keys(occupied_pts, resolution)
        free_keys = _points_to_keys(free_pts, resolution) if free_pts is not None else np.empty((0, 3), np.int32)

        keys = np.concatenate([occ_keys, free_keys], axis=0)
        vals = np.concatenate([
            np.full(occ_keys.shape[0], lo_occ, dtype=np.float32),
            np.full(free_keys.shape[0], lo_free, dtype=np.float32),
        ])
        # np.unique keeps the first occurrence index, so occupied entries win
        uniq, first = np.unique(keys, axis=0, return_index=True)
        return cls(resolution, uniq, vals[first])

    def __len__(self) -> int:
        return int(self.keys.shape[0])

    # ---- Geometry -------------------------------------------------------------
    def world_to_key(self, point) -> Tuple[int, int, int]:
        p = np.asarray(point, dtype=np.float64).reshape(3)
        k = np.floor(p / self.resolution).astype(np.int64)
        return int(k[0]), int(k[1]), int(k[2])

    def key_to_center(self, keys: np.ndarray) -> np.ndarray:
        return (np.asarray(keys, dtype=np.float64) + 0.5) * self.resolution

    def metric_min(self) -> Tuple[float, float, float]:
        """Lower corner of the axis-aligned box spanned by all known voxels."""
        if len(self) == 0:
            return (0.0, 0.0, 0.0)
        lo = self.keys.min(axis=0).astype(np.float64) * self.resolution
        return float(lo[0]), float(lo[1]), float(lo[2])

    def metric_max(self) -> Tuple[float, float, float]:
        """Upper corner of the axis-aligned box spanned by all known voxels."""
        if len(self) == 0:
            return (0.0, 0.0, 0.0)
        hi = (self.keys.max(axis=0).astype(np.float64) + 1.0) * self.resolution
        return float(hi[0]), float(hi[1]), float(hi[2])

    # ---- Queries --------------------------------------------------------------
    def occupied_mask(self) -> np.ndarray:
        return self.log_odds > self.occupancy_threshold

    def occupied_keys(self) -> np.ndarray:
        return self.keys[self.occupied_mask()]

    def search(self, point) -> Optional[float]:
        """Log-odds of the voxel containing point, or None if unknown."""
        if self._index is None:
            self._index = {tuple(int(v) for v in k): i for i, k in enumerate(self.keys)}
        i = self._index.get(self.world_to_key(point))
        return None if i is None else float(self.log_odds[i])

    def is_occupied(self, point) -> bool:
        lo = self.search(point)
        return lo is not None and lo > self.occupancy_threshold


def _points_to_keys(pts: np.ndarray, resolution: float) -> np.ndarray:
    pts = np.asarray(pts, dtype=np.float64).reshape(-1, 3)
    pts = pts[np.isfinite(pts).all(axis=1)]
    return np.floor(pts / float(resolution)).astype(np.int32)


# ---- Snapshot codec -----------------------------------------------------------
def encode_snapshot(occupancy: SpatialOccupancy, is_full: bool = True) -> bytes:
    """
    Serialize a map. Binary encoding keeps only the occupied/free bit per voxel;
    full encoding keeps log-odds and the threshold metadata.
    """
    data = {
        "tree_type": np.array(TREE_TYPE),
        "encoding": np.array("full" if is_full else "binary"),
        "resolution": np.array(occupancy.resolution, dtype=np.float64),
        "keys": occupancy.keys.astype(np.int32),
    }
    if is_full:
        data["log_odds"] = occupancy.log_odds.astype(np.float32)
        data["occupancy_threshold"] = np.array(occupancy.occupancy_threshold, dtype=np.float64)
        data["clamping_thresholds"] = np.asarray(occupancy.clamping_thresholds, dtype=np.float64)
    else:
        data["occupied"] = np.packbits(occupancy.occupied_mask())
        data["count"] = np.array(len(occupancy), dtype=np.int64)

    buf = io.BytesIO()
    np.savez_compressed(buf, **data)
    return buf.getvalue()


def decode_snapshot(raw: bytes, is_full: bool = True) -> SpatialOccupancy:
    """
    Deserialize a snapshot into a SpatialOccupancy.

    Raises DecodeError for anything that is not an OcTree snapshot in the
    requested encoding.
    """
    if not isinstance(raw, (bytes, bytearray, memoryview)) or len(raw) == 0:
        raise DecodeError(f"Empty or non-bytes snapshot payload ({type(raw).__name__})")

    try:
        z = np.load(io.BytesIO(bytes(raw)), allow_pickle=False)
        if not isinstance(z, np.lib.npyio.NpzFile):
            raise DecodeError(f"Snapshot is a bare {type(z).__name__}, not an archive")
        with z:
            members = {k: z[k] for k in z.files}
    except (zipfile.BadZipFile, ValueError, OSError, EOFError) as e:
        raise DecodeError(f"Snapshot is not a readable archive: {e}") from e

    tree_type = _scalar_str(members, "tree_type")
    if tree_type != TREE_TYPE:
        raise DecodeError(f"Unexpected tree type {tree_type!r}, expected {TREE_TYPE!r}")

    expected = "full" if is_full else "binary"
    encoding = _scalar_str(members, "encoding")
    if encoding != expected:
        raise DecodeError(f"Snapshot encoding is {encoding!r} but {expected!r} was requested")

    resolution = _scalar_float(members, "resolution")
    if not np.isfinite(resolution) or resolution <= 0.0:
        raise DecodeError(f"Invalid snapshot resolution: {resolution}")

    keys = _member(members, "keys")
    if keys.ndim != 2 or keys.shape[1] != 3 or not np.issubdtype(keys.dtype, np.integer):
        raise DecodeError(f"Snapshot keys must be (N,3) integers, got {keys.shape} {keys.dtype}")
    if keys.size and (keys.min() < _KEY_MIN or keys.max() > _KEY_MAX):
        raise DecodeError(f"Snapshot keys exceed the int32 key range [{keys.min()}, {keys.max()}]")
    n = keys.shape[0]

    if is_full:
        log_odds = _member(members, "log_odds")
        if log_odds.dtype.kind not in "iuf":
            raise DecodeError(f"log_odds must be numeric, got {log_odds.dtype}")
        if log_odds.shape != (n,):
            raise DecodeError(f"log_odds shape {log_odds.shape} does not match {n} keys")
        occ_thr = _scalar_float(members, "occupancy_threshold")
        clamp = _member(members, "clamping_thresholds").reshape(-1)
        if clamp.dtype.kind not in "iuf" or clamp.shape != (2,):
            raise DecodeError(f"clamping_thresholds must be 2 numbers, got {clamp.shape} {clamp.dtype}")
        lo_min, lo_max = float(clamp[0]), float(clamp[1])
    else:
        count = int(_scalar_float(members, "count"))
        packed = _member(members, "occupied").reshape(-1)
        if count != n or packed.dtype != np.uint8 or packed.size * 8 < n:
            raise DecodeError(f"Binary occupancy bits do not cover {n} keys")
        occupied = np.unpackbits(packed, count=n).astype(bool)
        occ_thr = OCCUPANCY_THRESHOLD
        lo_min, lo_max = CLAMPING_THRESHOLDS
        log_odds = np.where(occupied, lo_max, lo_min).astype(np.float32)

    if n and np.unique(keys, axis=0).shape[0] != n:
        raise DecodeError("Snapshot contains duplicate voxel keys")

    try:
        occ = SpatialOccupancy(
            resolution,
            keys,
            log_odds,
            occupancy_threshold=occ_thr,
            clamping_thresholds=(lo_min, lo_max),
        )
    except (TypeError, ValueError) as e:
        raise DecodeError(f"Snapshot members do not form an occupancy map: {e}") from e
    log.debug("Decoded %s snapshot: %d voxels @ %.3f m", encoding, len(occ), resolution)
    return occ


def _member(members: Dict[str, np.ndarray], name: str) -> np.ndarray:
    try:
        return members[name]
    except KeyError:
        raise DecodeError(f"Snapshot is missing member {name!r}") from None


def _scalar_str(members: Dict[str, np.ndarray], name: str) -> str:
    arr = _member(members, name)
    if arr.shape != () or arr.dtype.kind != "U":
        raise DecodeError(f"Snapshot member {name!r} must be a string")
    return str(arr[()])


def _scalar_float(members: Dict[str, np.ndarray], name: str) -> float:
    arr = _member(members, name)
    if arr.shape != () or arr.dtype.kind not in "iuf":
        raise DecodeError(f"Snapshot member {name!r} must be a numeric scalar")
    return float(arr)
