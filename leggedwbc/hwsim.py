"""Simulated robot hardware: hybrid joint commands, IMUs and contact sensors.

Each hybrid joint takes a command ``(pos_des, vel_des, kp, kd, ff)`` that is
turned into the effort ``kp (pos_des - q) + kd (vel_des - dq) + ff``. Commands
can be delayed by a fixed time to mimic actuation latency. Quaternions are
ordered ``(w, x, y, z)``.
"""

from __future__ import annotations

import logging
import math
from collections import deque
from dataclasses import dataclass, field
from numbers import Real
from typing import Iterable, Mapping, Sequence

import numpy as np
from scipy.spatial.transform import Rotation

from .rotations import shortest_angular_distance

_log = logging.getLogger(__name__)

_GRAVITY = np.array([0.0, 0.0, -9.81])
_TIME_TOLERANCE = 1e-9
_IMU_KEYS = (
    "frame_id",
    "orientation_covariance_diagonal",
    "angular_velocity_covariance",
    "linear_acceleration_covariance",
)


def _same_time(a: float, b: float) -> bool:
    return math.isclose(float(a), float(b), rel_tol=0.0, abs_tol=_TIME_TOLERANCE)


@dataclass
class HybridJointData:
    """Measured state of one joint and the command written to it."""

    name: str
    position: float = 0.0
    velocity: float = 0.0
    effort: float = 0.0
    effort_command: float = 0.0
    pos_des: float = 0.0
    vel_des: float = 0.0
    kp: float = 0.0
    kd: float = 0.0
    ff: float = 0.0

    def set_command(self, pos_des: float, vel_des: float, kp: float, kd: float, ff: float) -> None:
        """Set the desired position, velocity, gains and feed-forward effort."""
        self.pos_des = float(pos_des)
        self.vel_des = float(vel_des)
        self.kp = float(kp)
        self.kd = float(kd)
        self.ff = float(ff)


@dataclass(frozen=True)
class HybridJointCommand:
    """A joint command stamped with the time it was issued."""

    stamp: float
    pos_des: float = 0.0
    vel_des: float = 0.0
    kp: float = 0.0
    kd: float = 0.0
    ff: float = 0.0


@dataclass(eq=False)
class ImuData:
    """Latest readings of an IMU and their covariances."""

    name: str
    frame_id: str
    orientation: np.ndarray = field(default_factory=lambda: np.zeros(4))
    orientation_covariance: np.ndarray = field(default_factory=lambda: np.zeros((3, 3)))
    angular_velocity: np.ndarray = field(default_factory=lambda: np.zeros(3))
    angular_velocity_covariance: np.ndarray = field(default_factory=lambda: np.zeros((3, 3)))
    linear_acceleration: np.ndarray = field(default_factory=lambda: np.zeros(3))
    linear_acceleration_covariance: np.ndarray = field(default_factory=lambda: np.zeros((3, 3)))


def _covariance_diagonal(values, key: str, imu_name: str) -> np.ndarray:
    if isinstance(values, (str, bytes)) or not isinstance(values, Sequence):
        raise ValueError(f"imu {imu_name}: {key} must be a list")
    if len(values) != 3:
        raise ValueError(f"imu {imu_name}: {key} must have 3 entries")
    if not all(isinstance(v, Real) and not isinstance(v, bool) for v in values):
        raise ValueError(f"imu {imu_name}: {key} entries must be numbers")
    return np.diag([float(v) for v in values])


def _vector(value, size: int, name: str) -> np.ndarray:
    arr = np.asarray(value, dtype=float).ravel()
    if arr.shape != (size,):
        raise ValueError(f"{name} must have {size} elements")
    return arr.copy()


class LeggedHWSim:
    """Hardware layer between a physics simulation and the controllers."""

    def __init__(self, joint_names: Iterable[str], delay: float = 0.0) -> None:
        names = list(joint_names)
        if len(set(names)) != len(names):
            raise ValueError("joint names must be unique")
        if delay < 0:
            raise ValueError("delay must be non-negative")
        self.delay = float(delay)
        self.joints: dict[str, HybridJointData] = {name: HybridJointData(name) for name in names}
        self.imus: dict[str, ImuData] = {}
        self.contacts: dict[str, bool] = {}
        self._buffers: dict[str, deque[HybridJointCommand]] = {name: deque() for name in names}

    def parse_imus(self, imus: Mapping[str, Mapping]) -> None:
        """Register IMUs described by name; entries missing a required key are skipped."""
        if not isinstance(imus, Mapping):
            raise TypeError("imus must be a mapping from name to description")
        for name, description in imus.items():
            if not isinstance(description, Mapping):
                raise TypeError(f"imu {name} must be described by a mapping")
            missing = next((key for key in _IMU_KEYS if key not in description), None)
            if missing is not None:
                _log.error("imu %s has no associated %s", name, missing)
                continue
            self.imus[name] = ImuData(
                name=name,
                frame_id=str(description["frame_id"]),
                orientation_covariance=_covariance_diagonal(
                    description["orientation_covariance_diagonal"], "orientation_covariance_diagonal", name),
                angular_velocity_covariance=_covariance_diagonal(
                    description["angular_velocity_covariance"], "angular_velocity_covariance", name),
                linear_acceleration_covariance=_covariance_diagonal(
                    description["linear_acceleration_covariance"], "linear_acceleration_covariance", name),
            )

    def parse_contacts(self, contact_names: Sequence[str]) -> None:
        """Register contact sensors on the named links, all initially out of contact."""
        if isinstance(contact_names, (str, bytes)) or not isinstance(contact_names, Sequence):
            raise TypeError("contact names must be a list")
        for name in contact_names:
            if not isinstance(name, str):
                raise TypeError("contact names must be strings")
            self.contacts.setdefault(name, False)

    def read_joints(self, time: float, period: float, positions, efforts, prismatic: Iterable[str] = ()) -> None:
        """Update joint states from simulated positions and efforts.

        Velocities are finite differences over ``period`` (zero on the first step
        after a reset); revolute joints are unwrapped so they never jump by a
        full turn. Desired values are then reset to the measured state with zero
        gains, so no effort is applied unless a controller commands one.
        """
        period = float(period)
        if period <= 0:
            raise ValueError("period must be positive")
        pos = np.asarray(positions, dtype=float).ravel()
        eff = np.asarray(efforts, dtype=float).ravel()
        if pos.size != len(self.joints) or eff.size != len(self.joints):
            raise ValueError(f"expected {len(self.joints)} positions and efforts")
        prismatic_names = set(prismatic)
        unknown = prismatic_names - self.joints.keys()
        if unknown:
            raise KeyError(f"unknown joints: {sorted(unknown)}")

        reset = _same_time(time, period)
        for joint, position, effort in zip(self.joints.values(), pos, eff):
            position = float(position)
            joint.velocity = 0.0 if reset else (position - joint.position) / period
            if joint.name in prismatic_names:
                joint.position = position
            else:
                joint.position += shortest_angular_distance(joint.position, position)
            joint.effort = float(effort)

        for joint in self.joints.values():
            joint.effort_command = 0.0
            joint.set_command(joint.position, joint.velocity, 0.0, 0.0, 0.0)

    def read_imu(self, name: str, orientation, angular_vel, linear_accel) -> ImuData:
        """Store an IMU reading; the acceleration gains the reaction to gravity.

        ``angular_vel`` and ``linear_accel`` are the link's motion in its own frame.
        """
        imu = self.imus[name]
        quat = _vector(orientation, 4, "orientation")
        omega = _vector(angular_vel, 3, "angular_vel")
        accel = _vector(linear_accel, 3, "linear_accel")
        w, x, y, z = quat
        rotation = Rotation.from_quat([x, y, z, w])
        imu.orientation = quat
        imu.angular_velocity = omega
        imu.linear_acceleration = accel - rotation.inv().apply(_GRAVITY)
        return imu

    def read_contacts(self, contact_links: Iterable[Sequence[str]]) -> dict[str, bool]:
        """Set contact flags from the link pairs touching during the last step."""
        for name in self.contacts:
            self.contacts[name] = False
        for pair in contact_links:
            for link in pair:
                if link in self.contacts:
                    self.contacts[link] = True
        return dict(self.contacts)

    def write(self, time: float, period: float) -> list[float]:
        """Turn the (possibly delayed) joint commands into efforts, in joint order."""
        time = float(time)
        reset = _same_time(time, period)
        efforts = []
        for joint in self.joints.values():
            buffer = self._buffers[joint.name]
            if reset:
                buffer.clear()
            while buffer and buffer[-1].stamp + self.delay < time:
                buffer.pop()
            buffer.appendleft(
                HybridJointCommand(time, joint.pos_des, joint.vel_des, joint.kp, joint.kd, joint.ff)
            )
            cmd = buffer[-1]
            joint.effort_command = (
                cmd.kp * (cmd.pos_des - joint.position) + cmd.kd * (cmd.vel_des - joint.velocity) + cmd.ff
            )
            efforts.append(joint.effort_command)
        return efforts