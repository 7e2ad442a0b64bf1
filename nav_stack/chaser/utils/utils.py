# utils.py
import numpy as np
from scipy.spatial.transform import Rotation as R

# Pose helpers
# Poses travel as [qx, qy, qz, qw, tx, ty, tz]

def pose_to_matrix(pose: np.ndarray) -> np.ndarray:
    pose = np.asarray(pose, dtype=np.float64).reshape(-1)
    if pose.shape[0] < 7:
        raise ValueError(f"Expected 7 values [qx,qy,qz,qw,tx,ty,tz], got {pose.shape}")
    quat, translation = pose[:4], pose[4:7]
    T = np.eye(4, dtype=np.float64)
    T[:3, :3] = R.from_quat(quat).as_matrix()
    T[:3, 3] = translation
    return T

def matrix_to_pose(T: np.ndarray) -> np.ndarray:
    T = np.asarray(T, dtype=np.float64)
    if T.shape != (4, 4):
        raise ValueError(f"Expected (4,4), got {T.shape}")
    quat = R.from_matrix(T[:3, :3]).as_quat()
    return np.concatenate([quat, T[:3, 3]])

def invert_transform(T: np.ndarray) -> np.ndarray:
    T = np.asarray(T, dtype=np.float64)
    Rm = T[:3, :3]
    out = np.eye(4, dtype=np.float64)
    out[:3, :3] = Rm.T
    out[:3, 3] = -Rm.T @ T[:3, 3]
    return out
