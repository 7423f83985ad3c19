"""Linear Kalman filter fusing IMU acceleration with leg kinematics.

The filter state is ``[base position, base velocity, foot positions]`` in the
world frame. Measurements are the base-to-foot offsets, the base velocity seen
from each foot and the height of each foot.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

import numpy as np

from .config import get_value, load_info_file
from .rotations import quat_to_zyx, rotation_matrix_from_zyx
from .state_estimate import Odometry, StateEstimateBase

_GRAVITY = np.array([0.0, 0.0, -9.81])
_UNTRUSTED_SCALE = 100.0
_INITIAL_COVARIANCE = 100.0


@dataclass
class KalmanSettings:
    """Foot radius and noise levels of the filter."""

    foot_radius: float = 0.02
    imu_process_noise_position: float = 0.02
    imu_process_noise_velocity: float = 0.02
    foot_process_noise_position: float = 0.002
    foot_sensor_noise_position: float = 0.005
    foot_sensor_noise_velocity: float = 0.1
    foot_height_sensor_noise: float = 0.01


_SETTING_KEYS = {
    "foot_radius": "footRadius",
    "imu_process_noise_position": "imuProcessNoisePosition",
    "imu_process_noise_velocity": "imuProcessNoiseVelocity",
    "foot_process_noise_position": "footProcessNoisePosition",
    "foot_sensor_noise_position": "footSensorNoisePosition",
    "foot_sensor_noise_velocity": "footSensorNoiseVelocity",
    "foot_height_sensor_noise": "footHeightSensorNoise",
}


def load_kalman_settings(path: Union[str, Path]) -> KalmanSettings:
    """Read the ``kalmanFilter`` block of an INFO task file; every entry is required."""
    tree = load_info_file(path)
    return KalmanSettings(
        **{attr: float(get_value(tree, f"kalmanFilter.{key}")) for attr, key in _SETTING_KEYS.items()}
    )


class KalmanFilterEstimate(StateEstimateBase):
    """Estimates base position and linear velocity; orientation comes from the IMU."""

    def __init__(
        self,
        generalized_coordinates_num: int,
        actuated_dof_num: int,
        num_contacts: int,
        settings: Optional[KalmanSettings] = None,
    ) -> None:
        super().__init__(generalized_coordinates_num, actuated_dof_num)
        if num_contacts < 0:
            raise ValueError("number of contacts must be non-negative")
        self.settings = settings if settings is not None else KalmanSettings()
        self.num_contacts = num_contacts
        self.contact_flags = (False,) * num_contacts

        n = num_contacts
        dim = 3 * n
        self._dim_contacts = dim
        self._num_state = 6 + dim
        self._num_observe = 2 * dim + n

        c = np.zeros((self._num_observe, self._num_state))
        for i in range(n):
            c[3 * i:3 * i + 3, 0:3] = np.eye(3)
            c[3 * (n + i):3 * (n + i) + 3, 3:6] = np.eye(3)
            c[2 * dim + i, 6 + 3 * i + 2] = 1.0
        c[0:dim, 6:6 + dim] = -np.eye(dim)
        self._c = c

        self._x_hat = np.zeros(self._num_state)
        self._p = _INITIAL_COVARIANCE * np.eye(self._num_state)
        self.feet_heights = np.zeros(n)
        self._time = 0.0

    @property
    def state(self) -> np.ndarray:
        """Current filter state ``[position, velocity, foot positions]``."""
        return self._x_hat.copy()

    @property
    def covariance(self) -> np.ndarray:
        return self._p.copy()

    def _feet(self, value, name: str) -> np.ndarray:
        arr = np.asarray(value, dtype=float)
        if arr.size != 3 * self.num_contacts:
            raise ValueError(f"{name} must hold 3 entries for each of {self.num_contacts} feet")
        return arr.reshape(self.num_contacts, 3)

    def update(self, dt: float, foot_positions, foot_velocities) -> np.ndarray:
        """Run one predict-correct step and return the rigid-body state.

        ``foot_positions`` and ``foot_velocities`` are the feet relative to the
        base, in world-aligned axes, computed from the joint state alone.
        """
        dt = float(dt)
        positions = self._feet(foot_positions, "foot_positions")
        velocities = self._feet(foot_velocities, "foot_velocities")
        if len(self.contact_flags) != self.num_contacts:
            raise ValueError(f"expected {self.num_contacts} contact flags, got {len(self.contact_flags)}")

        s = self.settings
        n, dim, ns = self.num_contacts, self._dim_contacts, self._num_state

        a = np.eye(ns)
        a[0:3, 3:6] = dt * np.eye(3)
        b = np.zeros((ns, 3))
        b[0:3, :] = 0.5 * dt * dt * np.eye(3)
        b[3:6, :] = dt * np.eye(3)

        factors = np.where(self.contact_flags, 1.0, _UNTRUSTED_SCALE) if n else np.zeros(0)
        per_axis = np.repeat(factors, 3)
        q = np.diag(
            np.concatenate(
                (
                    np.full(3, dt / 20.0 * s.imu_process_noise_position),
                    np.full(3, dt * 9.81 / 20.0 * s.imu_process_noise_velocity),
                    np.full(dim, dt * s.foot_process_noise_position) * per_axis,
                )
            )
        )
        r = np.diag(
            np.concatenate(
                (
                    np.full(dim, s.foot_sensor_noise_position) * per_axis,
                    np.full(dim, s.foot_sensor_noise_velocity) * per_axis,
                    np.full(n, s.foot_height_sensor_noise) * factors,
                )
            )
        )

        ps = -positions.ravel()
        ps[2::3] += s.foot_radius
        vs = -velocities.ravel()

        rotation = rotation_matrix_from_zyx(quat_to_zyx(self.quat))
        accel = rotation @ self.linear_accel_local + _GRAVITY

        y = np.concatenate((ps, vs, self.feet_heights))
        c = self._c
        x_hat = a @ self._x_hat + b @ accel
        pm = a @ self._p @ a.T + q
        innovation_cov = c @ pm @ c.T + r
        x_hat = x_hat + pm @ c.T @ np.linalg.solve(innovation_cov, y - c @ x_hat)
        p = (np.eye(ns) - pm @ c.T @ np.linalg.solve(innovation_cov, c)) @ pm
        self._p = 0.5 * (p + p.T)
        self._x_hat = x_hat

        self._time += dt
        self.update_linear(x_hat[0:3], x_hat[3:6])
        self._publish(self.odometry())
        return self.rbd_state.copy()

    def odometry(self) -> Odometry:
        """Odometry of the base; the twist is given in the base frame."""
        pose_cov = np.zeros((6, 6))
        pose_cov[0:3, 0:3] = self._p[0:3, 0:3]
        pose_cov[3:6, 3:6] = self.orientation_covariance.T
        twist_cov = np.zeros((6, 6))
        twist_cov[0:3, 0:3] = self._p[3:6, 3:6]
        twist_cov[3:6, 3:6] = self.angular_vel_covariance.T

        rotation = rotation_matrix_from_zyx(quat_to_zyx(self.quat))
        return Odometry(
            stamp=self._time,
            frame_id="odom",
            child_frame_id="base",
            position=self._x_hat[0:3],
            orientation=self.quat,
            linear=rotation.T @ self._x_hat[3:6],
            angular=self.angular_vel_local,
            pose_covariance=pose_cov,
            twist_covariance=twist_cov,
        )