"""Hierarchical optimisation: a chain of quadratic programs with strict priorities."""

from __future__ import annotations

from typing import Optional

import numpy as np
from scipy.linalg import null_space
from scipy.optimize import minimize

from .task import Task

_REGULARIZATION = 1e-12
_FEASIBILITY_TOLERANCE = 1e-6


class QpError(RuntimeError):
    """The quadratic program has no feasible solution."""


def solve_qp(h, c, d, f) -> np.ndarray:
    """Minimise ``0.5 x'Hx + c'x`` subject to ``D x <= f``."""
    h = np.asarray(h, dtype=float)
    c = np.asarray(c, dtype=float).ravel()
    d = np.asarray(d, dtype=float)
    f = np.asarray(f, dtype=float).ravel()
    if h.ndim != 2 or h.shape[0] != h.shape[1]:
        raise ValueError("h must be a square matrix")
    n = h.shape[0]
    if c.shape != (n,):
        raise ValueError("c does not match h")
    if d.size == 0:
        d = d.reshape(0, n)
    if d.ndim != 2 or d.shape[1] != n or d.shape[0] != f.shape[0]:
        raise ValueError("d and f do not match the problem size")
    if n == 0:
        return np.zeros(0)

    h_sym = 0.5 * (h + h.T)
    constraints = []
    if d.shape[0] > 0:
        constraints.append({"type": "ineq", "fun": lambda x: f - d @ x, "jac": lambda x: -d})

    result = minimize(
        lambda x: 0.5 * x @ h_sym @ x + c @ x,
        np.zeros(n),
        jac=lambda x: h_sym @ x + c,
        method="SLSQP",
        constraints=constraints,
        options={"ftol": 1e-14, "maxiter": 1000},
    )
    x = result.x
    if not np.all(np.isfinite(x)):
        raise QpError(str(result.message))
    if d.shape[0] > 0 and np.max(d @ x - f) > _FEASIBILITY_TOLERANCE:
        raise QpError(str(result.message))
    return x


def _times(m: np.ndarray, z: np.ndarray) -> np.ndarray:
    if m.shape[0] == 0:
        return np.zeros((0, z.shape[1]))
    return m @ z


def _times_vec(m: np.ndarray, v: np.ndarray) -> np.ndarray:
    if m.shape[0] == 0:
        return np.zeros(0)
    return m @ v


class HoQp:
    """One priority level; it solves its task in the null space of all higher levels."""

    def __init__(self, task: Task, higher_problem: Optional["HoQp"] = None) -> None:
        self._task = task
        self._higher = higher_problem

        num_slack = task.d.shape[0]
        has_eq = task.a.shape[0] > 0
        has_ineq = num_slack > 0

        if higher_problem is not None:
            z_prev = higher_problem.stacked_z
            tasks_prev = higher_problem.stacked_tasks
            slack_prev = higher_problem.stacked_slack_solutions
            x_prev = higher_problem.solutions
            num_prev_slack = higher_problem.num_stacked_slack_vars
            nx = z_prev.shape[1]
        else:
            nx = max(task.a.shape[1], task.d.shape[1])
            tasks_prev = Task.empty(nx)
            z_prev = np.eye(nx)
            slack_prev = np.zeros(0)
            x_prev = np.zeros(nx)
            num_prev_slack = 0

        self._stacked_tasks = task + tasks_prev
        self._z_prev = z_prev
        self._x_prev = x_prev

        eye_slack = np.eye(num_slack)
        zero_slack_x = np.zeros((num_slack, nx))

        # Cost
        if has_eq:
            a_z = task.a @ z_prev
            z_ata_z = a_z.T @ a_z + _REGULARIZATION * np.eye(nx)
            c_top = a_z.T @ (task.a @ x_prev - task.b)
        else:
            z_ata_z = np.zeros((nx, nx))
            c_top = np.zeros(nx)
        h = np.vstack((np.hstack((z_ata_z, zero_slack_x.T)), np.hstack((zero_slack_x, eye_slack))))
        c = np.concatenate((c_top, np.zeros(num_slack)))

        # Constraints
        if has_ineq:
            d_curr_z = task.d @ z_prev
            f_curr = task.f - task.d @ x_prev
        else:
            d_curr_z = np.zeros((0, nx))
            f_curr = np.zeros(0)
        d = np.vstack(
            (
                np.hstack((zero_slack_x, -eye_slack)),
                np.hstack((_times(tasks_prev.d, z_prev), np.zeros((num_prev_slack, num_slack)))),
                np.hstack((d_curr_z, -eye_slack)),
            )
        )
        f = np.concatenate(
            (
                np.zeros(num_slack),
                tasks_prev.f - _times_vec(tasks_prev.d, x_prev) + slack_prev,
                f_curr,
            )
        )

        solution = solve_qp(h, c, d, f)
        self._decision = solution[:nx]
        slack = solution[nx:]

        # For the next level
        if has_eq and z_prev.shape[1] > 0:
            self._stacked_z = z_prev @ null_space(task.a @ z_prev)
        else:
            self._stacked_z = z_prev

        if higher_problem is not None:
            self._stacked_slack = np.concatenate((higher_problem.stacked_slack_solutions, slack))
        else:
            self._stacked_slack = slack

    @property
    def stacked_z(self) -> np.ndarray:
        """Basis of the null space left free by this and all higher levels."""
        return self._stacked_z.copy()

    @property
    def stacked_tasks(self) -> Task:
        """This level's task stacked on top of all higher tasks."""
        return self._stacked_tasks

    @property
    def stacked_slack_solutions(self) -> np.ndarray:
        """Slack values of all levels, highest first."""
        return self._stacked_slack.copy()

    @property
    def solutions(self) -> np.ndarray:
        """Decision variables in the full, unprojected coordinate space."""
        return self._x_prev + self._z_prev @ self._decision

    @property
    def num_stacked_slack_vars(self) -> int:
        """Number of inequality rows in the stacked tasks."""
        return self._stacked_tasks.d.shape[0]