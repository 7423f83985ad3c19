"""Whole-body control as a strict hierarchy of quadratic programs."""

from __future__ import annotations

from typing import Optional, Sequence

import numpy as np

from .hoqp import HoQp
from .wbc_base import ModelInfo, RobotSnapshot, WbcBase

_CONTACT_FORCE_WEIGHT = 0.1
_SWING_LEG_WEIGHT = 1.0


class HierarchicalWbc(WbcBase):
    """Dynamics and limits first, base motion second, forces and swing feet last.

    ``input_desired`` holds the desired input of the motion planner (contact
    forces first) and must be set before :meth:`update` is called.
    """

    def __init__(self, info: ModelInfo) -> None:
        super().__init__(info)
        self.input_desired: Optional[np.ndarray] = None

    def update(self, snapshot: RobotSnapshot, contact_flags: Sequence[bool]) -> np.ndarray:
        if self.input_desired is None:
            raise ValueError("input_desired must be set before update()")
        super().update(snapshot, contact_flags)

        task0 = (
            self.formulate_floating_base_eom_task()
            + self.formulate_torque_limits_task()
            + self.formulate_friction_cone_task()
            + self.formulate_no_contact_motion_task()
        )
        task1 = self.formulate_base_accel_task()
        task2 = (
            self.formulate_contact_force_task(self.input_desired) * _CONTACT_FORCE_WEIGHT
            + self.formulate_swing_leg_task() * _SWING_LEG_WEIGHT
        )
        problem = HoQp(task2, HoQp(task1, HoQp(task0)))
        return problem.solutions