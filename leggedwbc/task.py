"""Linear tasks ``A x - b = w`` and ``D x - f <= v`` for whole-body control."""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np


def _empty_matrix() -> np.ndarray:
    return np.zeros((0, 0))


def _empty_vector() -> np.ndarray:
    return np.zeros(0)


def concatenate_matrices(m1: np.ndarray, m2: np.ndarray) -> np.ndarray:
    """Stack two matrices row-wise; a matrix without columns is treated as absent."""
    m1 = np.asarray(m1, dtype=float)
    m2 = np.asarray(m2, dtype=float)
    if m1.shape[1] <= 0:
        return m2
    if m2.shape[1] <= 0:
        return m1
    if m1.shape[1] != m2.shape[1]:
        raise ValueError(f"column mismatch: {m1.shape[1]} != {m2.shape[1]}")
    return np.vstack((m1, m2))


def concatenate_vectors(v1: np.ndarray, v2: np.ndarray) -> np.ndarray:
    """Join two vectors end to end."""
    return np.concatenate((np.asarray(v1, dtype=float).ravel(), np.asarray(v2, dtype=float).ravel()))


@dataclass(eq=False)
class Task:
    """Equality part ``(a, b)`` and inequality part ``(d, f)`` of a task."""

    a: np.ndarray = field(default_factory=_empty_matrix)
    b: np.ndarray = field(default_factory=_empty_vector)
    d: np.ndarray = field(default_factory=_empty_matrix)
    f: np.ndarray = field(default_factory=_empty_vector)

    def __post_init__(self) -> None:
        self.a = np.asarray(self.a, dtype=float)
        self.d = np.asarray(self.d, dtype=float)
        for name in ("a", "d"):
            if getattr(self, name).ndim != 2:
                raise ValueError(f"{name} must be a 2-D matrix")
        self.b = np.asarray(self.b, dtype=float).ravel()
        self.f = np.asarray(self.f, dtype=float).ravel()

    @classmethod
    def empty(cls, num_decision_vars: int) -> "Task":
        """A task with no rows over ``num_decision_vars`` variables."""
        return cls(
            np.zeros((0, num_decision_vars)),
            np.zeros(0),
            np.zeros((0, num_decision_vars)),
            np.zeros(0),
        )

    def __add__(self, other: "Task") -> "Task":
        if not isinstance(other, Task):
            return NotImplemented
        return Task(
            concatenate_matrices(self.a, other.a),
            concatenate_vectors(self.b, other.b),
            concatenate_matrices(self.d, other.d),
            concatenate_vectors(self.f, other.f),
        )

    def __mul__(self, scale: float) -> "Task":
        if not isinstance(scale, (int, float, np.number)):
            return NotImplemented
        return Task(
            scale * self.a if self.a.shape[1] > 0 else self.a.copy(),
            scale * self.b,
            scale * self.d if self.d.shape[1] > 0 else self.d.copy(),
            scale * self.f,
        )

    __rmul__ = __mul__