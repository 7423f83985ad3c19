"""Task formulation shared by the whole-body controllers.

Decision variables are ``x = [dv, F_1 .. F_n, tau]``: generalized accelerations,
one 3-D force per contact point and the actuated joint torques.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Sequence, Union

import numpy as np

from .config import get_value, get_vector, load_info_file
from .rotations import (
    global_angular_velocity_from_euler_zyx_derivatives,
    rotation_error_in_world,
    rotation_matrix_from_zyx,
)
from .task import Task

_FRICTION_VELOCITY_THRESHOLD = 0.001
_COULOMB_FRICTION = 0.2


@dataclass(frozen=True)
class ModelInfo:
    """Dimensions of the floating-base model."""

    generalized_coordinates_num: int
    actuated_dof_num: int
    num_three_dof_contacts: int

    def __post_init__(self) -> None:
        if self.generalized_coordinates_num != 6 + self.actuated_dof_num:
            raise ValueError("generalized coordinates must be 6 base coordinates plus the actuated joints")
        if self.actuated_dof_num < 0 or self.num_three_dof_contacts < 0:
            raise ValueError("dimensions must be non-negative")

    @property
    def contact_force_size(self) -> int:
        return 3 * self.num_three_dof_contacts

    @property
    def num_decision_vars(self) -> int:
        return self.generalized_coordinates_num + self.contact_force_size + self.actuated_dof_num


def _array(value) -> np.ndarray:
    return np.asarray(value, dtype=float)


@dataclass(eq=False)
class RobotSnapshot:
    """Measured dynamics and kinematics, plus the desired base and feet motion.

    ``q`` holds ``[position, zyx euler]`` followed by joint angles and ``v``
    holds ``[linear velocity, euler rates]`` followed by joint velocities.
    Jacobians are expressed in a world-aligned frame at the respective point.
    """

    mass_matrix: np.ndarray
    nonlinear_effects: np.ndarray
    contact_jacobian: np.ndarray
    contact_jacobian_derivative: np.ndarray
    base_jacobian: np.ndarray
    base_jacobian_derivative: np.ndarray
    q: np.ndarray
    v: np.ndarray
    base_pose_desired: np.ndarray = field(default_factory=lambda: np.zeros(6))
    base_velocity_desired: np.ndarray = field(default_factory=lambda: np.zeros(6))
    base_acceleration_desired: np.ndarray = field(default_factory=lambda: np.zeros(6))
    foot_positions_measured: Optional[np.ndarray] = None
    foot_velocities_measured: Optional[np.ndarray] = None
    foot_positions_desired: Optional[np.ndarray] = None
    foot_velocities_desired: Optional[np.ndarray] = None

    def __post_init__(self) -> None:
        for name in (
            "mass_matrix",
            "nonlinear_effects",
            "contact_jacobian",
            "contact_jacobian_derivative",
            "base_jacobian",
            "base_jacobian_derivative",
            "q",
            "v",
            "base_pose_desired",
            "base_velocity_desired",
            "base_acceleration_desired",
        ):
            setattr(self, name, _array(getattr(self, name)))
        for name in ("nonlinear_effects", "q", "v", "base_pose_desired", "base_velocity_desired",
                     "base_acceleration_desired"):
            setattr(self, name, getattr(self, name).ravel())
        for name in ("foot_positions_measured", "foot_velocities_measured",
                     "foot_positions_desired", "foot_velocities_desired"):
            value = getattr(self, name)
            if value is not None:
                setattr(self, name, _array(value).reshape(-1, 3))


def _check_shape(name: str, array: np.ndarray, shape: tuple) -> None:
    if array.shape != shape:
        raise ValueError(f"{name} has shape {array.shape}, expected {shape}")


class WbcBase:
    """Builds the tasks of the whole-body control problem from a robot snapshot."""

    def __init__(self, info: ModelInfo) -> None:
        self.info = info
        self._num_decision_vars = info.num_decision_vars
        self.torque_limits: Optional[np.ndarray] = None
        self.friction_coeff = 0.0
        self.swing_kp = 0.0
        self.swing_kd = 0.0
        self.base_height_kp = 0.0
        self.base_height_kd = 0.0
        self.base_angular_kp = 0.0
        self.base_angular_kd = 0.0
        self.contact_flags: tuple[bool, ...] = (False,) * info.num_three_dof_contacts
        self.num_contacts = 0
        self._snapshot: Optional[RobotSnapshot] = None

    @property
    def num_decision_vars(self) -> int:
        return self._num_decision_vars

    @property
    def contact_force_size(self) -> int:
        return self.info.contact_force_size

    def load_tasks_setting(self, path: Union[str, Path]) -> None:
        """Read torque limits, friction coefficient and tracking gains from an INFO file."""
        tree = load_info_file(path)
        self.torque_limits = get_vector(tree, "torqueLimitsTask", self.info.actuated_dof_num // 2)
        self.friction_coeff = float(get_value(tree, "frictionConeTask.frictionCoefficient"))
        self.swing_kp = float(get_value(tree, "swingLegTask.kp"))
        self.swing_kd = float(get_value(tree, "swingLegTask.kd"))
        self.base_height_kp = float(get_value(tree, "baseHeightTask.kp"))
        self.base_height_kd = float(get_value(tree, "baseHeightTask.kd"))
        self.base_angular_kp = float(get_value(tree, "baseAngularTask.kp"))
        self.base_angular_kd = float(get_value(tree, "baseAngularTask.kd"))

    def set_kp_kd(self, swing_kp: float, swing_kd: float) -> None:
        self.swing_kp = float(swing_kp)
        self.swing_kd = float(swing_kd)

    def update(self, snapshot: RobotSnapshot, contact_flags: Sequence[bool]) -> np.ndarray:
        """Store the measured state and contact flags; the base class returns an empty vector."""
        info = self.info
        nc = info.num_three_dof_contacts
        flags = tuple(bool(flag) for flag in contact_flags)
        if len(flags) != nc:
            raise ValueError(f"expected {nc} contact flags, got {len(flags)}")

        ng = info.generalized_coordinates_num
        _check_shape("mass_matrix", snapshot.mass_matrix, (ng, ng))
        _check_shape("nonlinear_effects", snapshot.nonlinear_effects, (ng,))
        _check_shape("contact_jacobian", snapshot.contact_jacobian, (3 * nc, ng))
        _check_shape("contact_jacobian_derivative", snapshot.contact_jacobian_derivative, (3 * nc, ng))
        _check_shape("base_jacobian", snapshot.base_jacobian, (6, ng))
        _check_shape("base_jacobian_derivative", snapshot.base_jacobian_derivative, (6, ng))
        _check_shape("q", snapshot.q, (ng,))
        _check_shape("v", snapshot.v, (ng,))
        for name in ("base_pose_desired", "base_velocity_desired", "base_acceleration_desired"):
            _check_shape(name, getattr(snapshot, name), (6,))

        # Only the upper triangle of the mass matrix is trusted.
        upper = np.triu(snapshot.mass_matrix)
        snapshot.mass_matrix = upper + np.triu(snapshot.mass_matrix, 1).T

        self.contact_flags = flags
        self.num_contacts = sum(flags)
        self._snapshot = snapshot
        return np.zeros(0)

    def _state(self) -> RobotSnapshot:
        if self._snapshot is None:
            raise RuntimeError("update() must be called before formulating tasks")
        return self._snapshot

    def formulate_floating_base_eom_task(self) -> Task:
        s = self._state()
        info = self.info
        na, ng = info.actuated_dof_num, info.generalized_coordinates_num
        selection = np.zeros((na, ng))
        selection[:, 6:] = np.eye(na)
        a = np.hstack((s.mass_matrix, -s.contact_jacobian.T, -selection.T))
        return Task(a, -s.nonlinear_effects, np.zeros((0, 0)), np.zeros(0))

    def formulate_torque_limits_task(self) -> Task:
        if self.torque_limits is None:
            raise RuntimeError("torque limits are not loaded")
        info = self.info
        na, nd = info.actuated_dof_num, self._num_decision_vars
        start = info.generalized_coordinates_num + info.contact_force_size
        d = np.zeros((2 * na, nd))
        d[:na, start:start + na] = np.eye(na)
        d[na:, start:start + na] = -np.eye(na)
        dof_per_leg = na // 2
        if dof_per_leg == 0:
            raise ValueError("torque limits need at least two actuated joints")
        f = np.tile(self.torque_limits, 2 * na // dof_per_leg)
        if f.size != 2 * na:
            raise ValueError("actuated joints cannot be split evenly between two legs")
        return Task(np.zeros((0, 0)), np.zeros(0), d, f)

    def formulate_no_contact_motion_task(self) -> Task:
        s = self._state()
        ng = self.info.generalized_coordinates_num
        a = np.zeros((3 * self.num_contacts, self._num_decision_vars))
        b = np.zeros(a.shape[0])
        j = 0
        for i, in_contact in enumerate(self.contact_flags):
            if in_contact:
                rows = slice(3 * i, 3 * i + 3)
                a[3 * j:3 * j + 3, :ng] = s.contact_jacobian[rows]
                b[3 * j:3 * j + 3] = -s.contact_jacobian_derivative[rows] @ s.v
                j += 1
        return Task(a, b, np.zeros((0, 0)), np.zeros(0))

    def formulate_friction_cone_task(self) -> Task:
        info = self.info
        ng, nc, nd = info.generalized_coordinates_num, info.num_three_dof_contacts, self._num_decision_vars
        swing_count = nc - self.num_contacts

        a = np.zeros((3 * swing_count, nd))
        j = 0
        for i, in_contact in enumerate(self.contact_flags):
            if not in_contact:
                a[3 * j:3 * j + 3, ng + 3 * i:ng + 3 * i + 3] = np.eye(3)
                j += 1
        b = np.zeros(a.shape[0])

        mu = self.friction_coeff
        pyramid = np.array(
            [
                [0.0, 0.0, -1.0],
                [1.0, 0.0, -mu],
                [-1.0, 0.0, -mu],
                [0.0, 1.0, -mu],
                [0.0, -1.0, -mu],
            ]
        )
        d = np.zeros((5 * self.num_contacts + 3 * swing_count, nd))
        j = 0
        for i, in_contact in enumerate(self.contact_flags):
            if in_contact:
                d[5 * j:5 * j + 5, ng + 3 * i:ng + 3 * i + 3] = pyramid
                j += 1
        f = np.zeros(d.shape[0])
        return Task(a, b, d, f)

    def formulate_base_height_motion_task(self) -> Task:
        s = self._state()
        a = np.zeros((1, self._num_decision_vars))
        a[0, 2] = 1.0
        b = np.array(
            [
                s.base_acceleration_desired[2]
                + self.base_height_kp * (s.base_pose_desired[2] - s.q[2])
                + self.base_height_kd * (s.base_velocity_desired[2] - s.v[2])
            ]
        )
        return Task(a, b, np.zeros((0, 0)), np.zeros(0))

    def formulate_base_angular_motion_task(self) -> Task:
        s = self._state()
        ng = self.info.generalized_coordinates_num
        a = np.zeros((3, self._num_decision_vars))
        a[:, :ng] = s.base_jacobian[3:6]

        euler = s.q[3:6]
        velocity_measured = global_angular_velocity_from_euler_zyx_derivatives(euler, s.v[3:6])
        velocity_desired = s.base_velocity_desired[3:6]
        rotation_measured = rotation_matrix_from_zyx(euler)
        rotation_reference = rotation_matrix_from_zyx(s.base_pose_desired[3:6])
        error = rotation_error_in_world(rotation_reference, rotation_measured)

        b = (
            s.base_acceleration_desired[3:6]
            + self.base_angular_kp * error
            + self.base_angular_kd * (velocity_desired - velocity_measured)
            - s.base_jacobian_derivative[3:6] @ s.v
        )
        return Task(a, b, np.zeros((0, 0)), np.zeros(0))

    def formulate_base_accel_task(self) -> Task:
        return self.formulate_base_height_motion_task() + self.formulate_base_angular_motion_task()

    def formulate_swing_leg_task(self) -> Task:
        s = self._state()
        info = self.info
        ng, nc = info.generalized_coordinates_num, info.num_three_dof_contacts
        feet = (s.foot_positions_measured, s.foot_velocities_measured,
                s.foot_positions_desired, s.foot_velocities_desired)
        if any(value is None or value.shape != (nc, 3) for value in feet):
            raise ValueError(f"foot positions and velocities must be given for {nc} feet")
        pos_meas, vel_meas, pos_des, vel_des = feet

        a = np.zeros((3 * (nc - self.num_contacts), self._num_decision_vars))
        b = np.zeros(a.shape[0])
        j = 0
        for i, in_contact in enumerate(self.contact_flags):
            if not in_contact:
                rows = slice(3 * i, 3 * i + 3)
                accel = self.swing_kp * (pos_des[i] - pos_meas[i]) + self.swing_kd * (vel_des[i] - vel_meas[i])
                a[3 * j:3 * j + 3, :ng] = s.contact_jacobian[rows]
                b[3 * j:3 * j + 3] = accel - s.contact_jacobian_derivative[rows] @ s.v
                j += 1
        return Task(a, b, np.zeros((0, 0)), np.zeros(0))

    def formulate_contact_force_task(self, input_desired) -> Task:
        info = self.info
        ng, nc = info.generalized_coordinates_num, info.num_three_dof_contacts
        u = np.asarray(input_desired, dtype=float).ravel()
        if u.size < 3 * nc:
            raise ValueError(f"input must hold at least {3 * nc} force entries")
        a = np.zeros((3 * nc, self._num_decision_vars))
        a[:, ng:ng + 3 * nc] = np.eye(3 * nc)
        return Task(a, u[:3 * nc].copy(), np.zeros((0, 0)), np.zeros(0))

    def compensate_friction(self, x) -> np.ndarray:
        """Return ``x`` with a Coulomb friction torque added to the joint torques."""
        s = self._state()
        na = self.info.actuated_dof_num
        result = np.array(x, dtype=float).ravel()
        if result.size < na:
            raise ValueError("solution is shorter than the torque vector")
        joint_v = s.v[-na:] if na else np.zeros(0)
        friction = np.where(np.abs(joint_v) > _FRICTION_VELOCITY_THRESHOLD,
                            np.sign(joint_v) * _COULOMB_FRICTION, 0.0)
        if na:
            result[-na:] += friction
        return result