"""
Vault Liveness — Head-Pose Classifier
=====================================
Matches a face frame against the assigned HeadTask using landmark
offsets in face-width units (see vault_utils_core.head_pose_offsets):

  Task        | Offset | Rule
  ------------|--------|---------------------------
  TURN_LEFT   | yaw    | yaw   >  +sensitivity
  TURN_RIGHT  | yaw    | yaw   <  −sensitivity
  LOOK_UP     | pitch  | pitch <  sensitivity
  LOOK_DOWN   | pitch  | pitch >  sensitivity
  TILT_LEFT   | roll   | roll  >  +sensitivity
  TILT_RIGHT  | roll   | roll  <  −sensitivity

MIRRORING: the subject watches a mirrored preview while landmarks are
measured on the raw frame. A real turn to the subject's left moves the
nose toward larger x, so TURN_LEFT is the positive-yaw rule. The same
holds for tilts: the subject-left inner eye (362) drops on a left tilt.

Pitch is not zero-centred: at rest the nose tip sits below eye level,
so LOOK_UP/LOOK_DOWN compare against absolute offsets. Dividing by
face width keeps that resting value the same at any camera distance.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict

import numpy as np

from vault_types import HeadTask
from vault_utils_core import head_pose_offsets

_log = logging.getLogger("HeadPose")


@dataclass(frozen=True)
class PoseReading:
    yaw: float
    pitch: float
    roll: float
    matched: bool


_RULES: Dict[HeadTask, Callable[[float, float, float, float], bool]] = {
    HeadTask.TURN_LEFT:  lambda yaw, pitch, roll, s: yaw > s,
    HeadTask.TURN_RIGHT: lambda yaw, pitch, roll, s: yaw < -s,
    HeadTask.LOOK_UP:    lambda yaw, pitch, roll, s: pitch < s,
    HeadTask.LOOK_DOWN:  lambda yaw, pitch, roll, s: pitch > s,
    HeadTask.TILT_LEFT:  lambda yaw, pitch, roll, s: roll > s,
    HeadTask.TILT_RIGHT: lambda yaw, pitch, roll, s: roll < -s,
}


class HeadPoseClassifier:
    """Directional threshold tests on yaw/pitch/roll offsets."""

    def __init__(self, sensitivity: Dict[str, float]):
        """
        Args:
            sensitivity: HeadTask value → threshold (VaultConfig.pose_sensitivity).
        """
        self.sensitivity = dict(sensitivity)

    def classify(self, points: np.ndarray, task: HeadTask) -> PoseReading:
        yaw, pitch, roll = head_pose_offsets(points)
        return self.classify_offsets(yaw, pitch, roll, task)

    def classify_offsets(self, yaw: float, pitch: float, roll: float,
                         task: HeadTask) -> PoseReading:
        s = float(self.sensitivity[task.value])
        matched = _RULES[task](yaw, pitch, roll, s)
        _log.debug("%s yaw=%.3f pitch=%.3f roll=%.3f -> %s",
                   task.value, yaw, pitch, roll, matched)
        return PoseReading(yaw=yaw, pitch=pitch, roll=roll, matched=matched)
