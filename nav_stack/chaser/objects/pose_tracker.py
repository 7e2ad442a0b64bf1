# pose_tracker.py
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Tuple

import numpy as np

from chaser.errors import TransformUnavailable
from chaser.utils.diagnostics import LogOnce


log = logging.getLogger("pose_tracker")

# (reference_frame, target_frame, time_ns or None) -> (position xyz, quaternion xyzw)
LookupFn = Callable[[str, str, Optional[int]], Tuple[np.ndarray, np.ndarray]]

TARGET = "target"
CHASER = "chaser"


@dataclass
class Pose:
    frame_id: str
    stamp_ns: int = 0
    position: np.ndarray = field(default_factory=lambda: np.zeros(3, dtype=np.float64))
    orientation: np.ndarray = field(default_factory=lambda: np.array([0.0, 0.0, 0.0, 1.0]))  # xyzw

    def copy(self) -> "Pose":
        return Pose(self.frame_id, self.stamp_ns, self.position.copy(), self.orientation.copy())

    def as_qt7(self) -> np.ndarray:
        """[qx, qy, qz, qw, tx, ty, tz]"""
        return np.concatenate([self.orientation, self.position])


class PoseTracker:
    """
    Tracks the world poses of the target and the chaser.

    tf_update() is meant to be called periodically; a body whose transform is
    not available keeps its previous pose and is reported once per condition.
    """

    def __init__(
        self,
        lookup: LookupFn,
        world_frame_id: str,
        target_frame_id: str,
        chaser_frame_id: str,
        min_z: float,
        clock: Callable[[], int] = time.time_ns,
    ):
        self._lookup = lookup
        self.world_frame_id = world_frame_id
        self.frame_ids: Dict[str, str] = {TARGET: target_frame_id, CHASER: chaser_frame_id}
        self.min_z = float(min_z)
        self._clock = clock

        self._lock = threading.Lock()
        self._poses: Dict[str, Pose] = {
            TARGET: Pose(world_frame_id),
            CHASER: Pose(world_frame_id),
        }
        self._received: Dict[str, bool] = {TARGET: False, CHASER: False}
        self._once = LogOnce(log)

    # ---- Resolution -----------------------------------------------------------
    def resolve(self, body_name: str) -> Pose:
        """Latest world pose of a tracked body. Raises TransformUnavailable."""
        frame_id = self.frame_ids[body_name]
        try:
            position, orientation = self._lookup(self.world_frame_id, frame_id, None)
            position = np.asarray(position, dtype=np.float64).reshape(3).copy()
            orientation = np.asarray(orientation, dtype=np.float64).reshape(4).copy()
        except TransformUnavailable:
            raise
        except (LookupError, RuntimeError, TypeError, ValueError) as e:
            raise TransformUnavailable(f"lookup {self.world_frame_id!r} <- {frame_id!r} failed: {e}") from e

        return Pose(
            frame_id=self.world_frame_id,
            stamp_ns=int(self._clock()),
            position=position,
            orientation=orientation,
        )

    def tf_update(self) -> None:
        for body in (TARGET, CHASER):
            try:
                pose = self.resolve(body)
            except TransformUnavailable as e:
                self._once.error((body, self.frame_ids[body]), "tf of %s does not exist: %s", body, e)
                continue

            with self._lock:
                self._poses[body] = pose
                self._received[body] = True
            self._once.info((body, "received"), "tf of %s received.", body)

    # ---- Retrieval ------------------------------------------------------------
    def get_target_pose(self) -> Pose:
        """Target pose projected onto the planning floor (z = min_z)."""
        with self._lock:
            pose = self._poses[TARGET].copy()
        pose.position[2] = self.min_z
        return pose

    def get_chaser_pose(self) -> Pose:
        with self._lock:
            return self._poses[CHASER].copy()

    @property
    def is_target_received(self) -> bool:
        with self._lock:
            return self._received[TARGET]

    @property
    def is_chaser_received(self) -> bool:
        with self._lock:
            return self._received[CHASER]
