"""
Vault Liveness — Hand-Gesture Classifier
========================================
Finger-extension heuristics on the 21-point MediaPipe hand model.

  - Index/middle/ring/pinky: extended if the tip is above (smaller y
    than) its PIP joint.
  - Thumb: its extension is mostly sideways, so the vertical test does
    not apply. Extended if tip-to-MCP distance exceeds a fraction of the
    hand scale (wrist to middle-finger MCP).

Each HandTask is a fixed boolean combination of the five flags; the
thumbs-up pose additionally needs the thumb tip above the index tip.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from vault_types import HandTask
from vault_utils_core import (
    INDEX_PIP, INDEX_TIP,
    MIDDLE_MCP, MIDDLE_PIP, MIDDLE_TIP,
    PINKY_PIP, PINKY_TIP,
    RING_PIP, RING_TIP,
    THUMB_MCP, THUMB_TIP,
    WRIST,
    distance,
)

_log = logging.getLogger("HandGesture")


@dataclass(frozen=True)
class FingerState:
    """Extension flags for the five digits."""
    thumb: bool
    index: bool
    middle: bool
    ring: bool
    pinky: bool

    @property
    def fingers(self) -> tuple[bool, bool, bool, bool]:
        """Non-thumb digits, index first."""
        return self.index, self.middle, self.ring, self.pinky


def finger_states(points: np.ndarray, thumb_ratio: float = 0.55) -> FingerState:
    """Compute extension flags from (21, 2) hand landmarks."""
    hand_scale = distance(points[WRIST], points[MIDDLE_MCP])
    thumb_len = distance(points[THUMB_TIP], points[THUMB_MCP])
    thumb = hand_scale > 1e-6 and thumb_len > thumb_ratio * hand_scale

    def extended(tip: int, pip: int) -> bool:
        return bool(points[tip][1] < points[pip][1])

    return FingerState(
        thumb=bool(thumb),
        index=extended(INDEX_TIP, INDEX_PIP),
        middle=extended(MIDDLE_TIP, MIDDLE_PIP),
        ring=extended(RING_TIP, RING_PIP),
        pinky=extended(PINKY_TIP, PINKY_PIP),
    )


class HandGestureClassifier:
    """Matches hand frames against the assigned HandTask."""

    def __init__(self, thumb_extension_ratio: float = 0.55):
        self.thumb_extension_ratio = thumb_extension_ratio

    def classify(self, points: np.ndarray, task: HandTask) -> bool:
        state = finger_states(points, self.thumb_extension_ratio)
        matched = self.matches(state, task, points)
        _log.debug("%s fingers=%s -> %s", task.value, state, matched)
        return matched

    @staticmethod
    def matches(state: FingerState, task: HandTask, points: np.ndarray = None) -> bool:
        index, middle, ring, pinky = state.fingers
        curled = not any(state.fingers)

        if task == HandTask.THUMBS_UP:
            if not (state.thumb and curled):
                return False
            # Thumb tip above index tip
            if points is None:
                return False
            return bool(points[THUMB_TIP][1] < points[INDEX_TIP][1])
        if task == HandTask.OPEN_PALM:
            return index and middle and ring and pinky
        if task == HandTask.CLOSED_FIST:
            return curled and not state.thumb
        if task == HandTask.VICTORY:
            return index and middle and not ring and not pinky
        if task == HandTask.POINTING_UP:
            return index and not middle and not ring and not pinky
        return False
