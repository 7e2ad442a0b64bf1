#!/usr/bin/env python3
"""
Objects node: keeps the chaser planner's view of the world.
  - Subscribes (commlink) to one occupancy snapshot and to the transform stream.
  - Builds the environment distance field once, on a worker thread.
  - Ticks the target/chaser pose tracker at a fixed rate.
  - Mirrors markers and poses to rerun.
"""

import argparse
import logging
import threading
import time
from typing import Any, Optional

from commlink import Subscriber
from loop_rate_limiters import RateLimiter

from chaser.config import ObjectsHandlerParams
from chaser.objects.handler import FieldState, ObjectsHandler
from chaser.objects.tf_buffer import TransformBuffer
from chaser.utils.logging import log_edf_markers, log_grid_bounds, log_object_pose, rerun_init
from snapshot_io import load_snapshot_file


log = logging.getLogger("objects_node")

# Pub/sub topics
OCTOMAP_FULL_TOPIC = "octomap_full"
OCTOMAP_BINARY_TOPIC = "octomap_binary"
TF_TOPIC = "tf"
MAP_PUB_PORT = 6010


class ObjectsSub:
    def __init__(self, host: str = "127.0.0.1", port: int = MAP_PUB_PORT, is_full: bool = True):
        self.map_topic = OCTOMAP_FULL_TOPIC if is_full else OCTOMAP_BINARY_TOPIC
        self._sub = Subscriber(host=host, port=port, topics=[self.map_topic, TF_TOPIC])
        self._sub_lock = threading.Lock()

    def _sub_get(self, topic):
        with self._sub_lock:
            return self._sub[topic]

    def get_snapshot(self) -> Optional[bytes]:
        """Latest octomap payload: raw bytes or {"timestamp": ns, "data": bytes}."""
        msg = self._sub_get(self.map_topic)
        if msg is None:
            return None
        if isinstance(msg, dict):
            return msg.get("data")
        return msg

    def get_tf(self) -> Any:
        return self._sub_get(TF_TOPIC)

    def stop(self):
        self._sub.stop()


class ObjectsNode:
    """
    Shared node container:
      - Holds the transform buffer, the objects handler and the commlink stream.
      - Spawns one worker thread for the (blocking) distance field build.
    """

    def __init__(
        self,
        params: ObjectsHandlerParams,
        *,
        host: str = "127.0.0.1",
        port: int = MAP_PUB_PORT,
        snapshot_file: Optional[str] = None,
        duration_s: float = 0.0,
        spawn_rerun: bool = False,
    ):
        self.params = params
        self.duration_s = duration_s
        self.snapshot_file = snapshot_file
        self.spawn_rerun = spawn_rerun

        self.tf_buffer = TransformBuffer()
        self.handler = ObjectsHandler(params, self.tf_buffer.lookup_transform)
        self.datastream = ObjectsSub(host=host, port=port, is_full=params.is_octomap_full)

        self.build_thread: Optional[threading.Thread] = None
        self.rate = RateLimiter(params.tf_rate_hz, name="objects tf")
        self.running = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def run(self):
        self.running = True
        self._init_rerun()

        if self.snapshot_file:
            self._start_build(load_snapshot_file(self.snapshot_file))

        start = time.time()
        try:
            while self.running:
                if self.duration_s and (time.time() - start) >= self.duration_s:
                    break
                self.step()
                self.rate.sleep()
        except KeyboardInterrupt:
            log.info("Ctrl+C received; shutting down.")
        finally:
            self.stop()

    def step(self):
        tf_msg = self.datastream.get_tf()
        if tf_msg is not None:
            self.tf_buffer.update_from_message(tf_msg)

        if self.build_thread is None and self.handler.state is FieldState.AWAITING_MAP:
            raw = self.datastream.get_snapshot()
            if raw is not None:
                self._start_build(raw)

        self.handler.tf_update()
        if self.handler.is_target_received:
            log_object_pose("target", self.handler.get_target_pose(), color=(255, 0, 0))
        if self.handler.is_chaser_received:
            log_object_pose("chaser", self.handler.get_chaser_pose(), color=(0, 0, 255))

    def stop(self):
        self.running = False
        self.datastream.stop()
        if self.build_thread is not None:
            self.build_thread.join(timeout=2.0)
        log.info("Stopped (field state: %s).", self.handler.state.value)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _init_rerun(self):
        try:
            rerun_init(spawn=self.spawn_rerun)
        except Exception as e:
            log.warning("rerun_init failed (continuing): %s", e)

    def _start_build(self, raw: bytes):
        self.build_thread = threading.Thread(target=self._build_worker, args=(raw,), name="EDFBuild", daemon=True)
        self.build_thread.start()

    def _build_worker(self, raw: bytes):
        try:
            if not self.handler.on_snapshot(raw):
                return
        except Exception:
            # Already reported by the handler; the field stays unavailable for this run
            return

        log_edf_markers(self.handler.markers)
        log_grid_bounds(self.handler.grid_spec)


def main():
    parser = argparse.ArgumentParser(description="Environment field + target/chaser tracking node")
    parser.add_argument("--config", type=str, default=None, help="YAML file with objects handler params")
    parser.add_argument("--host", type=str, default="127.0.0.1", help="commlink publisher host")
    parser.add_argument("--port", type=int, default=MAP_PUB_PORT, help="commlink publisher port")
    parser.add_argument(
        "--snapshot-file",
        type=str,
        default=None,
        help="load the occupancy snapshot from disk instead of waiting for the topic",
    )
    parser.add_argument(
        "--binary",
        action="store_true",
        help="expect the binary octomap encoding (default: full)",
    )
    parser.add_argument("--min-z", type=float, default=None, help="override planning floor height (m)")
    parser.add_argument(
        "--duration",
        type=float,
        default=0.0,
        help="stop after N seconds (0 = run until Ctrl+C)",
    )
    parser.add_argument("--spawn-rerun", action="store_true", help="spawn a rerun viewer")
    parser.add_argument("--log-level", type=str, default="INFO")
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    params = ObjectsHandlerParams.from_yaml(args.config) if args.config else ObjectsHandlerParams()
    if args.binary:
        params.is_octomap_full = False
    if args.min_z is not None:
        params.min_z = args.min_z

    node = ObjectsNode(
        params,
        host=args.host,
        port=args.port,
        snapshot_file=args.snapshot_file,
        duration_s=args.duration,
        spawn_rerun=args.spawn_rerun,
    )
    node.run()


if __name__ == "__main__":
    main()
