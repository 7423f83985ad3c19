"""Rotation helpers for ZYX Euler angles, quaternions and angular velocities.

Euler angles are ordered ``(yaw, pitch, roll)`` and the rotation matrix is
``Rz(yaw) @ Ry(pitch) @ Rx(roll)``. Quaternions are ordered ``(w, x, y, z)``.
"""

from __future__ import annotations

import math

import numpy as np
from scipy.spatial.transform import Rotation


def _vec3(value, name: str) -> np.ndarray:
    arr = np.asarray(value, dtype=float).ravel()
    if arr.shape != (3,):
        raise ValueError(f"{name} must have 3 elements")
    return arr


def quat_to_zyx(quat) -> np.ndarray:
    """ZYX Euler angles of a ``(w, x, y, z)`` quaternion, pitch sine clamped at 0.99999."""
    q = np.asarray(quat, dtype=float).ravel()
    if q.shape != (4,):
        raise ValueError("quaternion must have 4 elements")
    w, x, y, z = q
    sin_pitch = min(-2.0 * (x * z - w * y), 0.99999)
    yaw = math.atan2(2.0 * (x * y + w * z), w * w + x * x - y * y - z * z)
    pitch = math.asin(sin_pitch) if sin_pitch >= -1.0 else math.nan
    roll = math.atan2(2.0 * (y * z + w * x), w * w - x * x - y * y + z * z)
    return np.array([yaw, pitch, roll])


def rotation_matrix_from_zyx(euler) -> np.ndarray:
    """Rotation matrix ``Rz @ Ry @ Rx`` for ZYX Euler angles."""
    yaw, pitch, roll = _vec3(euler, "euler")
    cz, sz = math.cos(yaw), math.sin(yaw)
    cy, sy = math.cos(pitch), math.sin(pitch)
    cx, sx = math.cos(roll), math.sin(roll)
    rz = np.array([[cz, -sz, 0.0], [sz, cz, 0.0], [0.0, 0.0, 1.0]])
    ry = np.array([[cy, 0.0, sy], [0.0, 1.0, 0.0], [-sy, 0.0, cy]])
    rx = np.array([[1.0, 0.0, 0.0], [0.0, cx, -sx], [0.0, sx, cx]])
    return rz @ ry @ rx


def global_angular_velocity_from_euler_zyx_derivatives(euler, euler_rates) -> np.ndarray:
    """World-frame angular velocity from ZYX Euler angle rates."""
    yaw, pitch, _ = _vec3(euler, "euler")
    dyaw, dpitch, droll = _vec3(euler_rates, "euler_rates")
    cz, sz = math.cos(yaw), math.sin(yaw)
    cy, sy = math.cos(pitch), math.sin(pitch)
    return np.array(
        [
            -sz * dpitch + cz * cy * droll,
            cz * dpitch + sz * cy * droll,
            dyaw - sy * droll,
        ]
    )


def euler_zyx_derivatives_from_global_angular_velocity(euler, omega) -> np.ndarray:
    """ZYX Euler angle rates from a world-frame angular velocity."""
    yaw, pitch, _ = _vec3(euler, "euler")
    wx, wy, wz = _vec3(omega, "omega")
    cz, sz = math.cos(yaw), math.sin(yaw)
    cy, sy = math.cos(pitch), math.sin(pitch)
    droll = (cz * wx + sz * wy) / cy
    dpitch = -sz * wx + cz * wy
    dyaw = wz + sy * droll
    return np.array([dyaw, dpitch, droll])


def euler_zyx_derivatives_from_local_angular_velocity(euler, omega) -> np.ndarray:
    """ZYX Euler angle rates from a body-frame angular velocity."""
    _, pitch, roll = _vec3(euler, "euler")
    w1, w2, w3 = _vec3(omega, "omega")
    cy, sy = math.cos(pitch), math.sin(pitch)
    cx, sx = math.cos(roll), math.sin(roll)
    dyaw = (sx * w2 + cx * w3) / cy
    dpitch = cx * w2 - sx * w3
    droll = w1 + sy * dyaw
    return np.array([dyaw, dpitch, droll])


def rotation_error_in_world(rotation_reference, rotation_measured) -> np.ndarray:
    """Rotation vector of ``R_ref @ R_meas.T``, the error expressed in the world frame."""
    ref = np.asarray(rotation_reference, dtype=float)
    meas = np.asarray(rotation_measured, dtype=float)
    if ref.shape != (3, 3) or meas.shape != (3, 3):
        raise ValueError("rotation matrices must be 3x3")
    return Rotation.from_matrix(ref @ meas.T).as_rotvec()


def _normalize_angle(angle: float) -> float:
    two_pi = 2.0 * math.pi
    positive = math.fmod(math.fmod(angle, two_pi) + two_pi, two_pi)
    if positive > math.pi:
        positive -= two_pi
    return positive


def shortest_angular_distance(from_angle: float, to_angle: float) -> float:
    """Signed angle in ``(-pi, pi]`` that takes ``from_angle`` to ``to_angle``."""
    return _normalize_angle(to_angle - from_angle)