"""Turning goal poses and velocity commands into target trajectories for the MPC.

The centroidal state is ``[normalized momentum (6), base pose (6), joints]``,
the base pose being ``[x, y, z, yaw, pitch, roll]``.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Union

import numpy as np

from .config import get_value, get_vector, load_info_file
from .rotations import rotation_matrix_from_zyx

DEFAULT_JOINT_STATE_SIZE = 10
_BASE_POSE = slice(6, 12)


def _vector(value) -> np.ndarray:
    return np.asarray(value, dtype=float).ravel()


@dataclass(eq=False)
class SystemObservation:
    """Time, state, input and mode of the system."""

    time: float = 0.0
    state: np.ndarray = field(default_factory=lambda: np.zeros(0))
    input: np.ndarray = field(default_factory=lambda: np.zeros(0))
    mode: int = 0

    def __post_init__(self) -> None:
        self.time = float(self.time)
        self.state = _vector(self.state)
        self.input = _vector(self.input)


@dataclass(eq=False)
class TargetTrajectories:
    """Desired states and inputs at given times."""

    time_trajectory: list[float]
    state_trajectory: list[np.ndarray]
    input_trajectory: list[np.ndarray]


@dataclass(eq=False)
class TrajectorySettings:
    """Velocities, body height and posture used to build target trajectories."""

    target_displacement_velocity: float
    target_rotation_velocity: float
    com_height: float
    default_joint_state: np.ndarray
    time_to_target: float

    def __post_init__(self) -> None:
        self.default_joint_state = _vector(self.default_joint_state)


def load_trajectory_settings(reference_file: Union[str, Path], task_file: Union[str, Path]) -> TrajectorySettings:
    """Read the settings from the reference file and the MPC horizon from the task file."""
    reference = load_info_file(reference_file)
    task = load_info_file(task_file)
    return TrajectorySettings(
        target_displacement_velocity=float(get_value(reference, "targetDisplacementVelocity")),
        target_rotation_velocity=float(get_value(reference, "targetRotationVelocity")),
        com_height=float(get_value(reference, "comHeight")),
        default_joint_state=get_vector(reference, "defaultJointState", DEFAULT_JOINT_STATE_SIZE),
        time_to_target=float(get_value(task, "mpc.timeHorizon")),
    )


def estimate_time_to_target(settings: TrajectorySettings, displacement) -> float:
    """Time to cover a base displacement ``[dx, dy, dz, dyaw, ...]`` at the target velocities."""
    delta = _vector(displacement)
    if delta.size < 4:
        raise ValueError("displacement must hold at least x, y, z and yaw")
    dx, dy, dyaw = delta[0], delta[1], delta[3]
    rotation_time = abs(dyaw) / settings.target_rotation_velocity
    displacement_time = math.hypot(dx, dy) / settings.target_displacement_velocity
    return float(max(rotation_time, displacement_time))


def _current_pose(observation: SystemObservation) -> np.ndarray:
    if observation.state.size < 12:
        raise ValueError("observation state is too short to hold a base pose")
    return observation.state[_BASE_POSE].copy()


def target_pose_to_target_trajectories(
    settings: TrajectorySettings,
    target_pose,
    observation: SystemObservation,
    reaching_time: float,
) -> TargetTrajectories:
    """Straight-line trajectory from the current pose to ``target_pose``."""
    target = _vector(target_pose)
    if target.shape != (6,):
        raise ValueError("target pose must have 6 elements")
    state_size = observation.state.size
    if state_size != 12 + settings.default_joint_state.size:
        raise ValueError(
            f"state size {state_size} does not match 12 + {settings.default_joint_state.size} joints"
        )

    current = _current_pose(observation)
    current[2] = settings.com_height
    current[4] = 0.0
    current[5] = 0.0

    states = [
        np.concatenate((np.zeros(6), pose, settings.default_joint_state)) for pose in (current, target)
    ]
    inputs = [np.zeros(observation.input.size) for _ in range(2)]
    return TargetTrajectories([observation.time, float(reaching_time)], states, inputs)


def goal_to_target_trajectories(
    settings: TrajectorySettings, goal, observation: SystemObservation
) -> TargetTrajectories:
    """Trajectory to a goal ``[x, y, z, yaw, pitch, roll]`` at the body height, level."""
    g = _vector(goal)
    if g.size < 4:
        raise ValueError("goal must hold at least x, y, z and yaw")
    current = _current_pose(observation)
    target = np.array([g[0], g[1], settings.com_height, g[3], 0.0, 0.0])
    reaching_time = observation.time + estimate_time_to_target(settings, target - current)
    return target_pose_to_target_trajectories(settings, target, observation, reaching_time)


def cmd_vel_to_target_trajectories(
    settings: TrajectorySettings, cmd_vel, observation: SystemObservation
) -> TargetTrajectories:
    """Trajectory that follows a body-frame velocity ``[vx, vy, vz, yaw rate]`` over the horizon."""
    cmd = _vector(cmd_vel)
    if cmd.size < 4:
        raise ValueError("velocity command must hold vx, vy, vz and yaw rate")
    current = _current_pose(observation)
    cmd_vel_rot = rotation_matrix_from_zyx(current[3:6]) @ cmd[:3]

    horizon = settings.time_to_target
    target = np.array(
        [
            current[0] + cmd_vel_rot[0] * horizon,
            current[1] + cmd_vel_rot[1] * horizon,
            settings.com_height,
            current[3] + cmd[3] * horizon,
            0.0,
            0.0,
        ]
    )
    trajectories = target_pose_to_target_trajectories(settings, target, observation, observation.time + horizon)
    for state in trajectories.state_trajectory:
        state[:3] = cmd_vel_rot
    return trajectories


def _quaternion_matrix(w: float, x: float, y: float, z: float) -> np.ndarray:
    return np.array(
        [
            [1 - 2 * (y * y + z * z), 2 * (x * y - w * z), 2 * (x * z + w * y)],
            [2 * (x * y + w * z), 1 - 2 * (x * x + z * z), 2 * (y * z - w * x)],
            [2 * (x * z - w * y), 2 * (y * z + w * x), 1 - 2 * (x * x + y * y)],
        ]
    )


def _euler_angles_xyz(r: np.ndarray) -> tuple[float, float, float]:
    """Angles ``(a0, a1, a2)`` with ``R = Rx(a0) Ry(a1) Rz(a2)`` and ``a0`` in ``[0, pi]``."""
    a0 = math.atan2(r[1, 2], r[2, 2])
    c2 = math.hypot(r[0, 0], r[0, 1])
    if a0 > 0:
        a0 -= math.pi
        a1 = math.atan2(-r[0, 2], -c2)
    else:
        a1 = math.atan2(-r[0, 2], c2)
    s1, c1 = math.sin(a0), math.cos(a0)
    a2 = math.atan2(s1 * r[2, 0] - c1 * r[1, 0], c1 * r[1, 1] - s1 * r[2, 1])
    return -a0, -a1, -a2


def goal_from_pose(position, quat) -> np.ndarray:
    """Goal ``[x, y, z, yaw, pitch, roll]`` from a position and a ``(w, x, y, z)`` quaternion."""
    p = _vector(position)
    q = _vector(quat)
    if p.shape != (3,) or q.shape != (4,):
        raise ValueError("position needs 3 and quaternion 4 elements")
    roll, pitch, yaw = _euler_angles_xyz(_quaternion_matrix(*q))
    return np.array([p[0], p[1], p[2], yaw, pitch, roll])