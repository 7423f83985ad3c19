"""Whole-body control as a single weighted quadratic program."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Sequence, Union

import numpy as np
from scipy.optimize import minimize

from .config import get_value, load_info_file
from .task import Task
from .wbc_base import ModelInfo, RobotSnapshot, WbcBase

_log = logging.getLogger(__name__)

_FEASIBILITY_TOLERANCE = 1e-6


def _rows(matrix: np.ndarray, num_cols: int) -> np.ndarray:
    """A matrix with ``num_cols`` columns; a matrix without columns has no rows."""
    if matrix.shape[1] == 0:
        return np.zeros((0, num_cols))
    return matrix


def _solve_weighted_qp(h, g, a_eq, b_eq, d, f) -> tuple[np.ndarray, bool]:
    """Minimise ``0.5 x'Hx + g'x`` with ``A x = b`` and ``D x <= f``.

    Returns the solver's last iterate and whether it satisfies the constraints.
    """
    n = h.shape[0]
    h_sym = 0.5 * (h + h.T)
    constraints = []
    if a_eq.shape[0] > 0:
        constraints.append({"type": "eq", "fun": lambda x: a_eq @ x - b_eq, "jac": lambda x: a_eq})
    if d.shape[0] > 0:
        constraints.append({"type": "ineq", "fun": lambda x: f - d @ x, "jac": lambda x: -d})

    result = minimize(
        lambda x: 0.5 * x @ h_sym @ x + g @ x,
        np.zeros(n),
        jac=lambda x: h_sym @ x + g,
        method="SLSQP",
        constraints=constraints,
        options={"ftol": 1e-14, "maxiter": 1000},
    )
    x = np.asarray(result.x, dtype=float)
    if not np.all(np.isfinite(x)):
        return x, False

    solved = True
    if a_eq.shape[0] > 0:
        scale = 1.0 + float(np.max(np.abs(b_eq), initial=0.0))
        solved &= float(np.max(np.abs(a_eq @ x - b_eq))) <= _FEASIBILITY_TOLERANCE * scale
    if d.shape[0] > 0:
        scale = 1.0 + float(np.max(np.abs(f), initial=0.0))
        solved &= float(np.max(d @ x - f)) <= _FEASIBILITY_TOLERANCE * scale
    return x, bool(solved)


class WeightedWbc(WbcBase):
    """Hard dynamics constraints with a weighted sum of tracking tasks as cost.

    ``input_desired`` holds the desired input of the motion planner (contact
    forces first) and must be set before :meth:`update` is called.
    """

    def __init__(self, info: ModelInfo) -> None:
        super().__init__(info)
        self.input_desired: Optional[np.ndarray] = None
        self.weight_swing_leg = 1.0
        self.weight_base_accel = 1.0
        self.weight_contact_force = 1.0
        self._last_solution: Optional[np.ndarray] = None

    def update(self, snapshot: RobotSnapshot, contact_flags: Sequence[bool]) -> np.ndarray:
        """Solve the weighted problem; on failure fall back to the previous solution."""
        if self.input_desired is None:
            raise ValueError("input_desired must be set before update()")
        super().update(snapshot, contact_flags)
        nd = self.num_decision_vars

        constraints = self.formulate_constraints()
        a_eq = _rows(constraints.a, nd)
        d = _rows(constraints.d, nd)

        weighted = self.formulate_weighted_tasks(self.input_desired)
        a_cost = _rows(weighted.a, nd)
        h = a_cost.T @ a_cost
        g = -a_cost.T @ weighted.b

        solution, solved = _solve_weighted_qp(h, g, a_eq, constraints.b, d, constraints.f)
        if not solved:
            _log.error("weighted WBC problem not solved")
            if self._last_solution is not None:
                solution = self._last_solution
        self._last_solution = solution.copy()
        return solution.copy()

    def load_tasks_setting(self, path: Union[str, Path]) -> None:
        """Read the base settings and the task weights from an INFO file."""
        super().load_tasks_setting(path)
        tree = load_info_file(path)
        self.weight_swing_leg = float(get_value(tree, "weight.swingLeg"))
        self.weight_base_accel = float(get_value(tree, "weight.baseAccel"))
        self.weight_contact_force = float(get_value(tree, "weight.contactForce"))

    def formulate_constraints(self) -> Task:
        return (
            self.formulate_floating_base_eom_task()
            + self.formulate_torque_limits_task()
            + self.formulate_friction_cone_task()
        )

    def formulate_weighted_tasks(self, input_desired) -> Task:
        return (
            self.formulate_swing_leg_task() * self.weight_swing_leg
            + self.formulate_base_accel_task() * self.weight_base_accel
            + self.formulate_contact_force_task(input_desired) * self.weight_contact_force
        )