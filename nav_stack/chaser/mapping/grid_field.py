# grid_field.py
# Uniform 3D lattice resampling of a DistanceField, plus the visualization pass.
#
# Lattice convention:
#   origin  = (bbox_min.x, bbox_min.y, min_z)
#   extents = (bbox_max - origin)
#   N       = ceil(extent / resolution) per axis (default; "floor" and "round" selectable)
#   centre(ix,iy,iz) = origin + (index + 0.5) * resolution
# With ceil the lattice covers the whole box and the last layer may poke out of it.
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Optional, Tuple

import numpy as np
from scipy.ndimage import map_coordinates

from chaser.errors import DegenerateVolumeError
from chaser.mapping.edf import DistanceField


# Guards extent/resolution against float noise, e.g. (5.0 - 0.4) / 0.5
_DIM_EPS = 1e-9

MARKER_ALPHA = 0.8


def grid_dim(extent: float, resolution: float, rounding: str = "ceil") -> int:
    ratio = float(extent) / float(resolution)
    if rounding == "ceil":
        n = np.ceil(ratio - _DIM_EPS)
    elif rounding == "floor":
        n = np.floor(ratio + _DIM_EPS)
    elif rounding == "round":
        n = np.floor(ratio + 0.5)
    else:
        raise ValueError(f"Unknown rounding convention: {rounding!r}")
    return max(0, int(n))


# ---- Lattice definition -------------------------------------------------------
@dataclass(frozen=True)
class GridSpec:
    x0: float
    y0: float
    z0: float
    lx: float
    ly: float
    lz: float
    resolution: float
    ray_stride_res: Optional[float] = None
    rounding: str = "ceil"

    @classmethod
    def from_bbox(
        cls,
        bbox_min,
        bbox_max,
        min_z: float,
        resolution: float,
        ray_stride_res: Optional[float] = None,
        rounding: str = "ceil",
    ) -> "GridSpec":
        """Lattice over the box with its floor forced to min_z. Raises DegenerateVolumeError if it is empty."""
        if resolution <= 0.0:
            raise ValueError(f"resolution must be > 0, got {resolution}")
        bmin = [float(v) for v in bbox_min]
        bmax = [float(v) for v in bbox_max]
        spec = cls(
            x0=bmin[0],
            y0=bmin[1],
            z0=float(min_z),
            lx=bmax[0] - bmin[0],
            ly=bmax[1] - bmin[1],
            lz=bmax[2] - float(min_z),
            resolution=float(resolution),
            ray_stride_res=ray_stride_res,
            rounding=rounding,
        )
        if min(spec.extents) <= 0.0 or min(spec.dims) == 0:
            raise DegenerateVolumeError(
                f"Empty sampling lattice: extents={spec.extents} dims={spec.dims} (min_z={min_z})"
            )
        return spec

    @property
    def origin(self) -> Tuple[float, float, float]:
        return (self.x0, self.y0, self.z0)

    @property
    def extents(self) -> Tuple[float, float, float]:
        return (self.lx, self.ly, self.lz)

    @property
    def dims(self) -> Tuple[int, int, int]:
        return (
            grid_dim(self.lx, self.resolution, self.rounding),
            grid_dim(self.ly, self.resolution, self.rounding),
            grid_dim(self.lz, self.resolution, self.rounding),
        )

    @property
    def Nx(self) -> int:
        return self.dims[0]

    @property
    def Ny(self) -> int:
        return self.dims[1]

    @property
    def Nz(self) -> int:
        return self.dims[2]

    def cell_center(self, ix: int, iy: int, iz: int) -> np.ndarray:
        idx = np.array([ix, iy, iz], dtype=np.float64)
        return np.asarray(self.origin, dtype=np.float64) + (idx + 0.5) * self.resolution

    def cell_centers(self) -> np.ndarray:
        """(Nx,Ny,Nz,3) centres; reshape(-1,3) walks ix outermost, iz innermost."""
        axes = [
            o + (np.arange(n, dtype=np.float64) + 0.5) * self.resolution
            for o, n in zip(self.origin, self.dims)
        ]
        X, Y, Z = np.meshgrid(*axes, indexing="ij")
        return np.stack([X, Y, Z], axis=-1)

    def world_to_index(self, point) -> Tuple[int, int, int]:
        """Index of the cell containing point; may fall outside [0, N)."""
        p = np.asarray(point, dtype=np.float64).reshape(3)
        idx = np.floor((p - np.asarray(self.origin)) / self.resolution).astype(np.int64)
        return int(idx[0]), int(idx[1]), int(idx[2])

    def contains_index(self, ix: int, iy: int, iz: int) -> bool:
        nx, ny, nz = self.dims
        return 0 <= ix < nx and 0 <= iy < ny and 0 <= iz < nz


# ---- Dense field --------------------------------------------------------------
class DistanceGrid:
    """
    Dense (Nx,Ny,Nz) float32 distance samples on a GridSpec lattice. Read-only.
    """

    def __init__(self, spec: GridSpec, values: np.ndarray):
        values = np.asarray(values, dtype=np.float32)
        if values.shape != spec.dims:
            raise ValueError(f"values shape {values.shape} does not match lattice {spec.dims}")
        values.setflags(write=False)
        self.spec = spec
        self._values = values

    @property
    def values(self) -> np.ndarray:
        return self._values

    @property
    def shape(self) -> Tuple[int, int, int]:
        return self._values.shape

    @property
    def size(self) -> int:
        return int(self._values.size)

    def __getitem__(self, idx):
        return self._values[idx]

    def _continuous_index(self, points: np.ndarray) -> np.ndarray:
        pts = np.asarray(points, dtype=np.float64).reshape(-1, 3)
        u = (pts - np.asarray(self.spec.origin)) / self.spec.resolution - 0.5
        upper = np.asarray(self.shape, dtype=np.float64) - 1.0
        return np.clip(u, 0.0, upper)

    def values_at(self, points: np.ndarray) -> np.ndarray:
        """Trilinear interpolation between cell centres, clamped to the lattice."""
        u = self._continuous_index(points)
        return map_coordinates(self._values, u.T, order=1, mode="nearest")

    def value_at(self, point) -> float:
        return float(self.values_at(np.asarray(point, dtype=np.float64).reshape(1, 3))[0])

    def gradient_at(self, point) -> np.ndarray:
        """Central-difference gradient of the interpolated field (per meter)."""
        p = np.asarray(point, dtype=np.float64).reshape(3)
        h = 0.5 * self.spec.resolution
        offsets = np.eye(3) * h
        probes = np.concatenate([p + offsets, p - offsets], axis=0)
        v = self.values_at(probes).astype(np.float64)
        return (v[:3] - v[3:]) / (2.0 * h)


# ---- Visualization markers ----------------------------------------------------
@dataclass
class VisualizationMarkers:
    points: np.ndarray   # (N,3) float64 cell centres
    colors: np.ndarray   # (N,4) float32 rgba in [0,1]

    def __len__(self) -> int:
        return int(self.points.shape[0])

    def __iter__(self) -> Iterator[Tuple[np.ndarray, np.ndarray]]:
        return iter(zip(self.points, self.colors))


def get_colors_dist(dists: np.ndarray, max_dist: float) -> np.ndarray:
    """
    Red (touching an obstacle) -> yellow -> green (at max_dist) ramp.
    Red never increases and green never decreases with distance.
    """
    d = np.asarray(dists, dtype=np.float64).reshape(-1)
    if max_dist <= 0.0:
        ratio = np.zeros_like(d)
    else:
        ratio = np.clip(d / float(max_dist), 0.0, 1.0)
    rgba = np.empty((d.shape[0], 4), dtype=np.float32)
    rgba[:, 0] = np.minimum(1.0, 2.0 * (1.0 - ratio))
    rgba[:, 1] = np.minimum(1.0, 2.0 * ratio)
    rgba[:, 2] = 0.0
    rgba[:, 3] = MARKER_ALPHA
    return rgba


def get_color_dist(dist: float, max_dist: float) -> Tuple[float, float, float, float]:
    r, g, b, a = get_colors_dist(np.array([dist]), max_dist)[0]
    return float(r), float(g), float(b), float(a)


# ---- Sampler ------------------------------------------------------------------
def sample_grid(
    distance_field: DistanceField,
    bbox_min,
    bbox_max,
    min_z: float,
    resolution: float,
    viz_threshold: float,
    ray_stride_res: Optional[float] = None,
    rounding: str = "ceil",
) -> Tuple[DistanceGrid, VisualizationMarkers]:
    """
    Sample the field at every lattice cell centre.

    Returns the dense grid and a marker per cell whose distance is strictly
    below viz_threshold, in ix -> iy -> iz traversal order.
    """
    spec = GridSpec.from_bbox(bbox_min, bbox_max, min_z, resolution, ray_stride_res, rounding)

    centers = spec.cell_centers().reshape(-1, 3)
    vals = np.asarray(distance_field.distances_at(centers), dtype=np.float32)
    grid = DistanceGrid(spec, vals.reshape(spec.dims))

    near = np.flatnonzero(vals < viz_threshold)
    markers = VisualizationMarkers(
        points=centers[near],
        colors=get_colors_dist(vals[near], viz_threshold),
    )
    return grid, markers
