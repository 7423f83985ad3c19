"""Whole-body control, state estimation, trajectory and simulated hardware tools for legged robots."""

__version__ = "0.1.0"