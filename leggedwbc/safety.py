"""Checks that stop the controller when the robot is in an unsafe state."""

from __future__ import annotations

import logging
import math

from .trajectories import SystemObservation

_log = logging.getLogger(__name__)

_BASE_POSE = slice(6, 12)


class SafetyChecker:
    """Rejects observations whose base roll exceeds a quarter turn."""

    def check(self, observation: SystemObservation, optimized_state=None, optimized_input=None) -> bool:
        return self.check_orientation(observation)

    def check_orientation(self, observation: SystemObservation) -> bool:
        pose = observation.state[_BASE_POSE]
        if pose.size != 6:
            raise ValueError("observation state is too short to hold a base pose")
        roll = pose[5]
        if roll > math.pi / 2 or roll < -math.pi / 2:
            _log.error("orientation safety check failed")
            return False
        return True