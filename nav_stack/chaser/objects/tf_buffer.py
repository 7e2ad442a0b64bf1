# tf_buffer.py
# Latest-value transform tree: one parent per frame, lookups compose through the common root.
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional, Tuple

import numpy as np

from chaser.errors import TransformUnavailable
from chaser.utils.utils import invert_transform, matrix_to_pose, pose_to_matrix


log = logging.getLogger("tf_buffer")

_MAX_DEPTH = 256


def normalize_frame(frame_id: str) -> str:
    """'/world' and 'world' name the same frame."""
    return str(frame_id).strip().lstrip("/")


@dataclass
class StampedTransform:
    parent: str
    child: str
    T: np.ndarray     # 4x4, maps child coordinates into parent coordinates
    stamp_ns: int


class TransformBuffer:
    """
    Holds the most recent parent->child transform of every edge.

    lookup_transform(reference, target, time_ns) returns the pose of `target`
    expressed in `reference` as (position xyz, quaternion xyzw).
    time_ns=None (or 0) means "latest available". A specific time is only
    served if every edge on the chain is at most max_extrapolation_s older.
    """

    def __init__(self, max_extrapolation_s: float = 0.5):
        self.max_extrapolation_s = float(max_extrapolation_s)
        self._edges: Dict[str, StampedTransform] = {}
        self._lock = threading.Lock()

    # ---- Writes ---------------------------------------------------------------
    def set_transform(self, parent: str, child: str, pose_qt, stamp_ns: int) -> None:
        """pose_qt: [qx, qy, qz, qw, tx, ty, tz] of child in parent."""
        parent = normalize_frame(parent)
        child = normalize_frame(child)
        if not parent or not child or parent == child:
            raise ValueError(f"Invalid transform edge {parent!r} -> {child!r}")
        T = pose_to_matrix(pose_qt)
        with self._lock:
            # Re-parenting must not close a loop
            f = parent
            for _ in range(_MAX_DEPTH):
                if f == child:
                    raise ValueError(f"Transform {parent!r} -> {child!r} would create a cycle")
                edge = self._edges.get(f)
                if edge is None:
                    break
                f = edge.parent
            self._edges[child] = StampedTransform(parent, child, T, int(stamp_ns))

    def update_from_message(self, msg: Any) -> int:
        """
        Ingest a transform message from the pub/sub layer:
            {"parent": str, "child": str, "pose": [qx,qy,qz,qw,tx,ty,tz], "stamp": ns}
        or a list of those. Malformed entries are skipped. Returns the number applied.
        """
        entries: Iterable[Any] = msg if isinstance(msg, (list, tuple)) else [msg]
        applied = 0
        for entry in entries:
            try:
                self.set_transform(entry["parent"], entry["child"], entry["pose"], int(entry.get("stamp", 0)))
                applied += 1
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                log.warning("Skipping malformed transform entry %r: %s", entry, e)
        return applied

    # ---- Reads ----------------------------------------------------------------
    def frames(self) -> set:
        with self._lock:
            names = set(self._edges.keys())
            names.update(e.parent for e in self._edges.values())
        return names

    def _chain_to_root(self, frame: str) -> Tuple[str, np.ndarray, Optional[int]]:
        """Returns (root, root_T_frame, oldest stamp on the chain)."""
        T = np.eye(4, dtype=np.float64)
        oldest: Optional[int] = None
        f = frame
        for _ in range(_MAX_DEPTH):
            edge = self._edges.get(f)
            if edge is None:
                return f, T, oldest
            T = edge.T @ T
            oldest = edge.stamp_ns if oldest is None else min(oldest, edge.stamp_ns)
            f = edge.parent
        raise TransformUnavailable(f"Transform chain from {frame!r} is too deep")

    def lookup_transform(
        self,
        reference_frame: str,
        target_frame: str,
        time_ns: Optional[int] = None,
    ) -> Tuple[np.ndarray, np.ndarray]:
        ref = normalize_frame(reference_frame)
        tgt = normalize_frame(target_frame)
        known = self.frames()
        for f in (ref, tgt):
            if f not in known:
                raise TransformUnavailable(f"Frame {f!r} does not exist")

        with self._lock:
            root_ref, T_root_ref, old_ref = self._chain_to_root(ref)
            root_tgt, T_root_tgt, old_tgt = self._chain_to_root(tgt)

        if root_ref != root_tgt:
            raise TransformUnavailable(
                f"{ref!r} and {tgt!r} are not connected (roots {root_ref!r}, {root_tgt!r})"
            )

        if time_ns:
            stamps = [s for s in (old_ref, old_tgt) if s is not None]
            if stamps and (int(time_ns) - min(stamps)) * 1e-9 > self.max_extrapolation_s:
                raise TransformUnavailable(
                    f"Lookup {ref!r} <- {tgt!r} at {time_ns} would require extrapolation"
                )

        T = invert_transform(T_root_ref) @ T_root_tgt
        pose = matrix_to_pose(T)
        return pose[4:7].copy(), pose[:4].copy()
