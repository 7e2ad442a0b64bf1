# handler.py
# Owns the one-shot environment field pipeline and the pose tracker.
from __future__ import annotations

import enum
import logging
import threading
from typing import Optional

import numpy as np

from chaser.config import ObjectsHandlerParams
from chaser.errors import FieldNotReadyError
from chaser.mapping.edf import DistanceField, build_distance_field
from chaser.mapping.grid_field import DistanceGrid, GridSpec, VisualizationMarkers, sample_grid
from chaser.mapping.occupancy import SpatialOccupancy, decode_snapshot
from chaser.objects.pose_tracker import LookupFn, Pose, PoseTracker


log = logging.getLogger("objects_handler")


class FieldState(enum.Enum):
    AWAITING_MAP = "awaiting_map"
    FIELD_READY = "field_ready"
    FIELD_FAILED = "field_failed"


class ObjectsHandler:
    """
    Environment field + tracked objects for the chaser planner.

    - on_snapshot(): first occupancy snapshot only; decodes it, builds the
      distance field and samples it on the uniform grid. Any later snapshot
      is ignored, whatever its content.
    - tf_update(): refreshes target/chaser poses (never raises).
    Field accessors raise FieldNotReadyError unless state is FIELD_READY.
    """

    def __init__(self, params: ObjectsHandlerParams, lookup: LookupFn):
        self.params = params
        self.tracker = PoseTracker(
            lookup,
            world_frame_id=params.world_frame_id,
            target_frame_id=params.target_frame_id,
            chaser_frame_id=params.chaser_frame_id,
            min_z=params.min_z,
        )

        self._state = FieldState.AWAITING_MAP
        self._snapshot_lock = threading.Lock()

        self._occupancy: Optional[SpatialOccupancy] = None
        self._edf: Optional[DistanceField] = None
        self._grid: Optional[DistanceGrid] = None
        self._markers: Optional[VisualizationMarkers] = None
        self.bbox_min: Optional[np.ndarray] = None
        self.bbox_max: Optional[np.ndarray] = None

        log.info("Object handler initialized.")

    # ---- State ----------------------------------------------------------------
    @property
    def state(self) -> FieldState:
        return self._state

    @property
    def is_field_ready(self) -> bool:
        return self._state is FieldState.FIELD_READY

    # ---- Occupancy ingest -----------------------------------------------------
    def on_snapshot(self, raw: bytes, is_full: Optional[bool] = None) -> bool:
        """
        Process the first snapshot. Returns False when the snapshot was ignored.

        Raises DecodeError / DegenerateVolumeError. Any failure moves the state
        to FIELD_FAILED, so later snapshots are ignored as well.
        """
        with self._snapshot_lock:
            if self._state is not FieldState.AWAITING_MAP:
                log.debug("[Objects handler] snapshot ignored, field is %s", self._state.value)
                return False
            try:
                self._build_field(raw, self.params.is_octomap_full if is_full is None else bool(is_full))
            except Exception:
                self._state = FieldState.FIELD_FAILED
                log.exception("[Objects handler] environment field unavailable for this run")
                raise
            self._state = FieldState.FIELD_READY
            return True

    def _build_field(self, raw: bytes, is_full: bool) -> None:
        p = self.params
        occupancy = decode_snapshot(raw, is_full)
        log.info("[Objects handler] octomap received (%d voxels @ %.3f m).", len(occupancy), occupancy.resolution)

        bbox_min = np.array(occupancy.metric_min(), dtype=np.float64)
        bbox_max = np.array(occupancy.metric_max(), dtype=np.float64)

        edf = build_distance_field(occupancy, p.edf_max_dist, bbox_min, bbox_max, unknown_as_occupied=False)

        grid, markers = sample_grid(
            edf,
            bbox_min,
            bbox_max,
            min_z=p.min_z,
            resolution=p.edf_resolution,
            viz_threshold=p.edf_max_viz_dist,
            ray_stride_res=p.edf_stride_resolution,
            rounding=p.grid_rounding,
        )
        log.info(
            "[Objects handler] EDF grid %s (origin=%s, %d markers below %.2f m)",
            grid.shape, grid.spec.origin, len(markers), p.edf_max_viz_dist,
        )

        self._occupancy = occupancy
        self._edf = edf
        self._grid = grid
        self._markers = markers
        self.bbox_min = bbox_min
        self.bbox_max = bbox_max

    # ---- Field outputs --------------------------------------------------------
    def _require_ready(self) -> None:
        if self._state is not FieldState.FIELD_READY:
            raise FieldNotReadyError(f"Environment field is {self._state.value}")

    def get_occupancy(self) -> SpatialOccupancy:
        self._require_ready()
        return self._occupancy

    @property
    def distance_field(self) -> DistanceField:
        self._require_ready()
        return self._edf

    def distance_at(self, point) -> float:
        self._require_ready()
        return self._edf.distance_at(point)

    @property
    def distance_grid(self) -> DistanceGrid:
        self._require_ready()
        return self._grid

    @property
    def grid_spec(self) -> GridSpec:
        self._require_ready()
        return self._grid.spec

    @property
    def markers(self) -> VisualizationMarkers:
        self._require_ready()
        return self._markers

    # ---- Tracked objects ------------------------------------------------------
    def tf_update(self) -> None:
        self.tracker.tf_update()

    def get_target_pose(self) -> Pose:
        return self.tracker.get_target_pose()

    def get_chaser_pose(self) -> Pose:
        return self.tracker.get_chaser_pose()

    @property
    def is_target_received(self) -> bool:
        return self.tracker.is_target_received

    @property
    def is_chaser_received(self) -> bool:
        return self.tracker.is_chaser_received
