# logging.py
# rerun views of the distance field markers, the grid bounds and the tracked objects.
import numpy as np
import rerun as rr
from scipy.spatial.transform import Rotation as R

from chaser.mapping.grid_field import GridSpec, VisualizationMarkers
from chaser.objects.pose_tracker import Pose


def rerun_init(app_id: str = "objects_handler", spawn: bool = False):
    rr.init(app_id, spawn=spawn)
    rr.log(
        "world/axis",
        rr.Transform3D(translation=[0, 0, 0], rotation=rr.Quaternion(xyzw=[0, 0, 0, 1])),
        static=True,
    )
    rr.log("world", rr.ViewCoordinates.RIGHT_HAND_Z_UP, static=True)

def log_edf_markers(
    markers: VisualizationMarkers,
    radius: float = 0.05,
    log_path: str = "world/edf_markers",
):
    """Near-obstacle grid cells as a colored point cloud (red = touching an obstacle)."""
    if len(markers) == 0:
        rr.log(log_path, rr.Clear(recursive=False))
        return
    colors = np.clip(np.round(markers.colors * 255.0), 0, 255).astype(np.uint8)
    rr.log(
        log_path,
        rr.Points3D(positions=markers.points.astype(np.float32), colors=colors, radii=radius),
        static=True,
    )

def log_grid_bounds(spec: GridSpec, log_path: str = "world/edf_grid"):
    """Box around the sampled lattice (full cells, so it may exceed the map bounds)."""
    size = np.asarray(spec.dims, dtype=np.float32) * spec.resolution
    center = np.asarray(spec.origin, dtype=np.float32) + 0.5 * size
    rr.log(
        log_path,
        rr.Boxes3D(centers=[center], half_sizes=[0.5 * size], colors=[(200, 200, 200)]),
        static=True,
    )

def log_object_pose(name: str, pose: Pose, color=(0, 255, 0), arrow_len: float = 0.3):
    """Position dot + heading arrow (body +x) under world/objects/<name>."""
    pos = pose.position.astype(np.float32)
    heading = R.from_quat(pose.orientation).apply([arrow_len, 0.0, 0.0]).astype(np.float32)
    rr.log(f"world/objects/{name}", rr.Points3D(positions=[pos], colors=[color], radii=0.05))
    rr.log(f"world/objects/{name}/heading", rr.Arrows3D(origins=[pos], vectors=[heading], colors=[color]))
