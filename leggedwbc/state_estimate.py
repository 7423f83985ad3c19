"""Floating-base state estimation shared by the estimators.

The rigid-body state is ``[zyx euler, position, joints, angular velocity,
linear velocity, joint velocities]``, of length twice the number of
generalized coordinates. Quaternions are ordered ``(w, x, y, z)``.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence

import numpy as np

from .rotations import (
    euler_zyx_derivatives_from_local_angular_velocity,
    global_angular_velocity_from_euler_zyx_derivatives,
    quat_to_zyx,
)

PUBLISH_RATE = 200.0


def _vector(value, size: int, name: str) -> np.ndarray:
    arr = np.asarray(value, dtype=float).ravel()
    if arr.shape != (size,):
        raise ValueError(f"{name} must have {size} elements, got {arr.size}")
    return arr.copy()


def _matrix(value, size: int, name: str) -> np.ndarray:
    arr = np.asarray(value, dtype=float)
    if arr.size != size * size:
        raise ValueError(f"{name} must be a {size}x{size} matrix")
    return arr.reshape(size, size).copy()


@dataclass(eq=False)
class Odometry:
    """Pose and twist of the base with their covariances.

    The twist is expressed in the ``child_frame_id`` frame.
    """

    stamp: float = 0.0
    frame_id: str = ""
    child_frame_id: str = ""
    position: np.ndarray = field(default_factory=lambda: np.zeros(3))
    orientation: np.ndarray = field(default_factory=lambda: np.array([1.0, 0.0, 0.0, 0.0]))
    linear: np.ndarray = field(default_factory=lambda: np.zeros(3))
    angular: np.ndarray = field(default_factory=lambda: np.zeros(3))
    pose_covariance: np.ndarray = field(default_factory=lambda: np.zeros((6, 6)))
    twist_covariance: np.ndarray = field(default_factory=lambda: np.zeros((6, 6)))

    def __post_init__(self) -> None:
        self.stamp = float(self.stamp)
        self.position = _vector(self.position, 3, "position")
        self.orientation = _vector(self.orientation, 4, "orientation")
        self.linear = _vector(self.linear, 3, "linear")
        self.angular = _vector(self.angular, 3, "angular")
        self.pose_covariance = _matrix(self.pose_covariance, 6, "pose_covariance")
        self.twist_covariance = _matrix(self.twist_covariance, 6, "twist_covariance")


class StateEstimateBase:
    """Holds the rigid-body state and fills it from joint, contact and IMU readings."""

    def __init__(self, generalized_coordinates_num: int, actuated_dof_num: int) -> None:
        if actuated_dof_num < 0 or generalized_coordinates_num != 6 + actuated_dof_num:
            raise ValueError("generalized coordinates must be 6 base coordinates plus the actuated joints")
        self.generalized_coordinates_num = generalized_coordinates_num
        self.actuated_dof_num = actuated_dof_num
        self.rbd_state = np.zeros(2 * generalized_coordinates_num)
        self.contact_flags: tuple[bool, ...] = ()
        self.zyx_offset = np.zeros(3)
        self.quat = np.array([1.0, 0.0, 0.0, 0.0])
        self.angular_vel_local = np.zeros(3)
        self.linear_accel_local = np.zeros(3)
        self.orientation_covariance = np.zeros((3, 3))
        self.angular_vel_covariance = np.zeros((3, 3))
        self.linear_accel_covariance = np.zeros((3, 3))
        self.publisher: Optional[Callable[[Odometry], None]] = None
        self._last_publish = 0.0

    def update_joint_states(self, joint_pos, joint_vel) -> None:
        na, ng = self.actuated_dof_num, self.generalized_coordinates_num
        self.rbd_state[6:6 + na] = _vector(joint_pos, na, "joint_pos")
        self.rbd_state[ng + 6:ng + 6 + na] = _vector(joint_vel, na, "joint_vel")

    def update_contact(self, contact_flags: Sequence[bool]) -> None:
        self.contact_flags = tuple(bool(flag) for flag in contact_flags)

    def update_imu(
        self,
        quat,
        angular_vel_local,
        linear_accel_local,
        orientation_covariance,
        angular_vel_covariance,
        linear_accel_covariance,
    ) -> None:
        """Store IMU readings and set the base orientation and angular velocity from them."""
        self.quat = _vector(quat, 4, "quat")
        self.angular_vel_local = _vector(angular_vel_local, 3, "angular_vel_local")
        self.linear_accel_local = _vector(linear_accel_local, 3, "linear_accel_local")
        self.orientation_covariance = _matrix(orientation_covariance, 3, "orientation_covariance")
        self.angular_vel_covariance = _matrix(angular_vel_covariance, 3, "angular_vel_covariance")
        self.linear_accel_covariance = _matrix(linear_accel_covariance, 3, "linear_accel_covariance")

        measured = quat_to_zyx(self.quat)
        zyx = measured - self.zyx_offset
        euler_rates = euler_zyx_derivatives_from_local_angular_velocity(measured, self.angular_vel_local)
        angular_vel_global = global_angular_velocity_from_euler_zyx_derivatives(zyx, euler_rates)
        self.update_angular(zyx, angular_vel_global)

    def update_angular(self, zyx, angular_vel) -> None:
        ng = self.generalized_coordinates_num
        self.rbd_state[0:3] = _vector(zyx, 3, "zyx")
        self.rbd_state[ng:ng + 3] = _vector(angular_vel, 3, "angular_vel")

    def update_linear(self, pos, linear_vel) -> None:
        ng = self.generalized_coordinates_num
        self.rbd_state[3:6] = _vector(pos, 3, "pos")
        self.rbd_state[ng + 3:ng + 6] = _vector(linear_vel, 3, "linear_vel")

    def should_publish(self, stamp: float) -> bool:
        """True at most once per publishing period; a true answer starts a new period."""
        stamp = float(stamp)
        if self._last_publish + 1.0 / PUBLISH_RATE < stamp:
            self._last_publish = stamp
            return True
        return False

    def _publish(self, odom: Odometry) -> None:
        if self.should_publish(odom.stamp) and self.publisher is not None:
            self.publisher(odom)


class FromTopicStateEstimate(StateEstimateBase):
    """Takes the base pose and twist straight from a ground-truth odometry source."""

    def __init__(self, generalized_coordinates_num: int, actuated_dof_num: int) -> None:
        super().__init__(generalized_coordinates_num, actuated_dof_num)
        self._lock = threading.Lock()
        self._latest = Odometry()

    def receive(self, odom: Odometry) -> None:
        """Store the latest odometry message; safe to call from another thread."""
        with self._lock:
            self._latest = odom

    def update_imu(
        self,
        quat,
        angular_vel_local,
        linear_accel_local,
        orientation_covariance,
        angular_vel_covariance,
        linear_accel_covariance,
    ) -> None:
        """IMU readings are ignored: the orientation comes from the odometry."""
        return None

    def update(self) -> np.ndarray:
        """Copy the latest odometry into the rigid-body state and return it."""
        with self._lock:
            odom = self._latest
        self.update_angular(quat_to_zyx(odom.orientation), odom.angular)
        self.update_linear(odom.position, odom.linear)
        self._publish(odom)
        return self.rbd_state.copy()