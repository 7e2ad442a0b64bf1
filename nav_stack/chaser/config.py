# config.py
from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any, Dict

import yaml


ROUNDING_MODES = ("ceil", "floor", "round")


# ---- Parameters ---------------------------------------------------------------
@dataclass
class ObjectsHandlerParams:
    # Frames
    world_frame_id: str = "/world"
    target_frame_id: str = "/target__base_footprint"
    chaser_frame_id: str = "/firefly/base_link"

    # Planning floor: obstacles below this height are ignored by the grid
    min_z: float = 0.4

    # Distance field
    edf_max_dist: float = 2.0          # saturation radius (meters)
    edf_max_viz_dist: float = 0.5      # markers only for cells closer than this
    edf_resolution: float = 0.5        # uniform grid cell size (meters)
    edf_stride_resolution: float = 0.5 # handed to the grid, not interpreted here
    grid_rounding: str = "ceil"        # N = ceil/floor/round(extent / resolution)

    # Occupancy snapshot encoding: True = full (log-odds), False = binary
    is_octomap_full: bool = True

    # Pose tracker tick
    tf_rate_hz: float = 10.0

    def __post_init__(self):
        if self.edf_resolution <= 0.0:
            raise ValueError(f"edf_resolution must be > 0, got {self.edf_resolution}")
        if self.edf_stride_resolution <= 0.0:
            raise ValueError(f"edf_stride_resolution must be > 0, got {self.edf_stride_resolution}")
        if self.edf_max_dist <= 0.0:
            raise ValueError(f"edf_max_dist must be > 0, got {self.edf_max_dist}")
        if self.edf_max_viz_dist < 0.0:
            raise ValueError(f"edf_max_viz_dist must be >= 0, got {self.edf_max_viz_dist}")
        if self.grid_rounding not in ROUNDING_MODES:
            raise ValueError(f"grid_rounding must be one of {ROUNDING_MODES}, got {self.grid_rounding!r}")

    @classmethod
    def from_dict(cls, cfg: Dict[str, Any]) -> "ObjectsHandlerParams":
        """Build params from a mapping; unknown keys are rejected."""
        known = {f.name for f in fields(cls)}
        bad = sorted(k for k in cfg if k not in known)
        if bad:
            raise ValueError(f"Unknown objects handler parameters: {bad}")
        return cls(**cfg)

    @classmethod
    def from_yaml(cls, path: str) -> "ObjectsHandlerParams":
        with open(path, "r") as f:
            cfg = yaml.safe_load(f) or {}
        # Allow the params to live under an "objects_handler" section
        if "objects_handler" in cfg:
            cfg = cfg["objects_handler"] or {}
        return cls.from_dict(cfg)
