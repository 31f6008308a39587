"""
Utility functions for eye extrinsic calibration.
"""

import numpy as np
import yaml
import os
from typing import Dict, Any, Tuple
from scipy.spatial.transform import Rotation


def load_yaml_config(config_path: str) -> Dict[str, Any]:
    """Load a configuration dictionary from YAML file."""
    if not os.path.exists(config_path):
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, 'r') as f:
        data = yaml.safe_load(f)

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Expected a mapping at top level of {config_path}")
    return data


def rpy_to_matrix(rpy) -> np.ndarray:
    """
    Convert roll-pitch-yaw angles to a 3x3 rotation matrix.

    The rotation is R = Rz(yaw) * Ry(pitch) * Rx(roll).

    Args:
        rpy: [roll, pitch, yaw] in radians

    Returns:
        3x3 rotation matrix
    """
    return Rotation.from_euler('xyz', np.asarray(rpy, dtype=float)[:3]).as_matrix()


def matrix_to_rpy(R: np.ndarray) -> np.ndarray:
    """
    Convert the rotation block of a 3x3 or 4x4 matrix to roll-pitch-yaw.

    Stacks of matrices with shape (N, 3, 3) or (N, 4, 4) are accepted too.

    Returns:
        [roll, pitch, yaw] with pitch in [-pi/2, pi/2]
    """
    return Rotation.from_matrix(np.asarray(R)[..., :3, :3]).as_euler('xyz')


def pose_to_matrix(pose: np.ndarray) -> np.ndarray:
    """
    Build a 4x4 homogeneous transform from a 6D pose.

    Args:
        pose: [x, y, z, roll, pitch, yaw] (meters, radians)

    Returns:
        4x4 homogeneous transformation matrix
    """
    pose = np.asarray(pose, dtype=float)
    T = np.eye(4)
    T[:3, :3] = rpy_to_matrix(pose[3:6])
    T[:3, 3] = pose[0:3]
    return T


def matrix_to_pose(T: np.ndarray) -> np.ndarray:
    """Extract [x, y, z, roll, pitch, yaw] from a 4x4 transform."""
    return np.concatenate([T[:3, 3], matrix_to_rpy(T)])


def quaternion_from_matrix(R: np.ndarray) -> np.ndarray:
    """
    Convert a rotation matrix to quaternion [x, y, z, w] with w >= 0.
    """
    q = Rotation.from_matrix(np.asarray(R)[:3, :3]).as_quat()
    return -q if q[3] < 0 else q


def matrix_from_quaternion(q: np.ndarray) -> np.ndarray:
    """Convert quaternion [x, y, z, w] to 3x3 rotation matrix (normalised first)."""
    return Rotation.from_quat(np.asarray(q, dtype=float)).as_matrix()


def transform_to_matrix(translation: np.ndarray, quaternion: np.ndarray) -> np.ndarray:
    """
    Create 4x4 transformation matrix from translation and quaternion [x, y, z, w].
    """
    T = np.eye(4)
    T[:3, :3] = matrix_from_quaternion(quaternion)
    T[:3, 3] = translation
    return T


def matrix_to_transform(T: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Extract translation and quaternion from 4x4 transformation matrix.

    Returns:
        Tuple of (translation [x,y,z], quaternion [x,y,z,w])
    """
    translation = T[:3, 3].copy()
    quaternion = quaternion_from_matrix(T[:3, :3])
    return translation, quaternion


def invert_transform(T: np.ndarray) -> np.ndarray:
    """
    Invert a 4x4 rigid-body transformation matrix.

    Uses the transpose of the rotation block rather than a generic
    matrix inverse. Accepts a single 4x4 matrix or a stack (N, 4, 4).
    """
    T = np.asarray(T)
    R_t = np.swapaxes(T[..., :3, :3], -1, -2)
    t = T[..., :3, 3:]

    T_inv = np.zeros(T.shape)
    T_inv[..., :3, :3] = R_t
    T_inv[..., :3, 3:] = -R_t @ t
    T_inv[..., 3, 3] = 1.0

    return T_inv


def compose_transforms(T1: np.ndarray, T2: np.ndarray) -> np.ndarray:
    """
    Compose two transformation matrices: T1 * T2

    Args:
        T1: First transformation (applied second)
        T2: Second transformation (applied first)
    """
    return T1 @ T2


def save_extrinsics_yaml(extrinsics: Dict[str, np.ndarray], output_path: str,
                         reference_frame: str = "eye_kinematics",
                         cost: float = None):
    """
    Save eye extrinsics to YAML file.

    Args:
        extrinsics: Dict mapping eye name ('left', 'right') -> 4x4 matrix
        output_path: Path to save the YAML file
        reference_frame: Name of the frame the extrinsics are expressed in
        cost: Optional final calibration cost written as a comment
    """
    lines = [
        "# Eye extrinsics computed by eyes_extrinsic_calibration",
        f"# Reference frame: {reference_frame}",
    ]
    if cost is not None:
        lines.append(f"# Calibration cost: {cost:.6g}")
    lines.extend([
        "# Position xyz; Quaternions xyzw",
        "# [ x_m, y_m, z_m, qx, qy, qz, qw]",
    ])

    for eye, T in extrinsics.items():
        t, q = matrix_to_transform(np.asarray(T))
        lines.append(f"{eye}:")
        lines.append(f'  parent: "{reference_frame}_{eye}"')
        lines.append(f'  child: "{eye}_camera"')
        lines.append(f"  value: [{t[0]:.6f}, {t[1]:.6f}, {t[2]:.6f}, {q[0]:.6f}, {q[1]:.6f}, {q[2]:.6f}, {q[3]:.6f}]")

    with open(output_path, 'w') as f:
        f.write('\n'.join(lines) + '\n')


def load_extrinsics_yaml(path: str) -> Dict[str, np.ndarray]:
    """
    Load extrinsics written by save_extrinsics_yaml.

    Returns:
        Dict mapping eye name -> 4x4 matrix
    """
    data = load_yaml_config(path)

    extrinsics = {}
    for eye, entry in data.items():
        value = entry.get('value') if isinstance(entry, dict) else None
        if value is None or len(value) != 7:
            raise ValueError(f"Entry '{eye}' must have a 7-element 'value'")
        extrinsics[eye] = transform_to_matrix(np.array(value[:3], dtype=float),
                                              np.array(value[3:], dtype=float))
    return extrinsics


def save_extrinsics_urdf(extrinsics: Dict[str, np.ndarray], output_path: str,
                         reference_frame: str = "eye_kinematics"):
    """
    Save eye extrinsics to URDF format.

    Each eye gets a fixed joint from its kinematic frame
    '<reference_frame>_<eye>' to '<eye>_camera'.
    """
    lines = [
        '<?xml version="1.0"?>',
        '<robot name="eye_extrinsics">',
    ]

    for eye, T in extrinsics.items():
        T = np.asarray(T)
        t = T[:3, 3]
        rpy = matrix_to_rpy(T)
        parent = f"{reference_frame}_{eye}"
        child = f"{eye}_camera"

        lines.extend([
            f'  <link name="{parent}"/>',
            f'  <link name="{child}"/>',
            f'  <joint name="{parent}_to_{child}" type="fixed">',
            f'    <parent link="{parent}"/>',
            f'    <child link="{child}"/>',
            f'    <origin xyz="{t[0]:.6f} {t[1]:.6f} {t[2]:.6f}" rpy="{rpy[0]:.6f} {rpy[1]:.6f} {rpy[2]:.6f}"/>',
            '  </joint>',
        ])

    lines.append('</robot>')

    with open(output_path, 'w') as f:
        f.write('\n'.join(lines) + '\n')
