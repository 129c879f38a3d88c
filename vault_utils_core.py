"""
Vault Liveness — Shared Utility Module
======================================
Centralized configuration, logging and landmark geometry for the
liveness gate.

Contains 3 Components:
  A) Configuration (config.yaml → VaultConfig, overridable at runtime)
  B) Logging setup shared by every module
  C) Landmark geometry: distances, Eye Aspect Ratio, face signature
     and head-pose offsets on normalized MediaPipe coordinates

All geometry here is pure: no state, no clocks, no randomness.
"""

from __future__ import annotations

import logging
import math
import os
from dataclasses import dataclass, field, fields
from typing import Optional

import numpy as np
import yaml

from vault_types import FaceSignature, HandTask, HeadTask


# ===================================================================
# Configuration
# ===================================================================

_SCRIPT_DIR = os.path.dirname(os.path.abspath(__file__))
_config_path = os.path.join(_SCRIPT_DIR, 'config.yaml')


def load_config(path: Optional[str] = None) -> dict:
    """Load configuration from config.yaml."""
    target = path or _config_path
    with open(target, 'r', encoding='utf-8') as f:
        return yaml.safe_load(f) or {}


CONFIG = load_config() if os.path.exists(_config_path) else {}


def _default_pose_sensitivity() -> dict:
    return {
        HeadTask.TURN_LEFT.value: 0.10,
        HeadTask.TURN_RIGHT.value: 0.10,
        HeadTask.LOOK_UP.value: 0.07,
        HeadTask.LOOK_DOWN.value: 0.27,
        HeadTask.TILT_LEFT.value: 0.10,
        HeadTask.TILT_RIGHT.value: 0.10,
    }


@dataclass
class VaultConfig:
    """Tunable thresholds for the liveness gate.

    Every heuristic constant used by the classifiers lives here so it can
    be tuned from config.yaml without touching classifier logic.

    Attributes:
        blink_ear_threshold: EAR below this is a closed-eye frame.
        blink_required: Discrete blinks needed to clear the BLINK stage.
        blink_transition_delay_ms: Pause between the last blink and HEAD.
        face_hold_ms: Continuous face presence needed to clear FACE.
        consistency_tolerance: Max relative signature drift in FACE/BLINK.
        pose_sensitivity: Per-HeadTask threshold on yaw/pitch/roll offsets.
        thumb_extension_ratio: Thumb tip-to-MCP distance, as a fraction of
            wrist-to-middle-MCP distance, above which the thumb is extended.
        score_grace_seconds: Elapsed time that still earns a full score.
        score_decay_per_second: Points lost per whole second past grace.
        score_floor: Lowest score a completed gesture can earn.
        pass_threshold: Minimum score that authorizes the downstream action.
    """
    blink_ear_threshold: float = 0.20
    blink_required: int = 2
    blink_transition_delay_ms: float = 300.0
    face_hold_ms: float = 2000.0
    consistency_tolerance: float = 0.35
    pose_sensitivity: dict = field(default_factory=_default_pose_sensitivity)
    thumb_extension_ratio: float = 0.55
    score_grace_seconds: float = 10.0
    score_decay_per_second: int = 5
    score_floor: int = 50
    pass_threshold: int = 75

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "VaultConfig":
        """Build a config from a flat dict, ignoring unknown keys."""
        data = dict(data or {})
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            _log.warning("Ignoring unknown liveness config keys: %s", unknown)

        kwargs = {k: v for k, v in data.items() if k in known}
        if "pose_sensitivity" in kwargs:
            merged = _default_pose_sensitivity()
            for task, value in (kwargs["pose_sensitivity"] or {}).items():
                key = task.value if isinstance(task, HeadTask) else str(task).upper()
                merged[key] = float(value)
            kwargs["pose_sensitivity"] = merged

        config = cls(**kwargs)
        config.validate()
        return config

    @classmethod
    def from_yaml(cls, path: Optional[str] = None) -> "VaultConfig":
        """Load the `liveness:` section of a YAML file."""
        raw = load_config(path)
        return cls.from_dict(raw.get("liveness", {}))

    def validate(self) -> None:
        """Raise ValueError on out-of-range settings."""
        if not 0.0 < self.blink_ear_threshold < 1.0:
            raise ValueError(f"blink_ear_threshold must be in (0, 1), got {self.blink_ear_threshold}")
        if self.blink_required < 1:
            raise ValueError(f"blink_required must be >= 1, got {self.blink_required}")
        if self.blink_transition_delay_ms < 0 or self.face_hold_ms < 0:
            raise ValueError("Durations must be non-negative")
        if self.consistency_tolerance <= 0:
            raise ValueError(f"consistency_tolerance must be > 0, got {self.consistency_tolerance}")
        missing = [t.value for t in HeadTask if t.value not in self.pose_sensitivity]
        if missing:
            raise ValueError(f"pose_sensitivity missing tasks: {missing}")
        if any(v <= 0 for v in self.pose_sensitivity.values()):
            raise ValueError("pose_sensitivity values must be > 0")
        if self.thumb_extension_ratio <= 0:
            raise ValueError("thumb_extension_ratio must be > 0")
        if not 0 <= self.score_floor <= 100 or not 0 <= self.pass_threshold <= 100:
            raise ValueError("score_floor and pass_threshold must be within [0, 100]")
        if self.score_decay_per_second < 0 or self.score_grace_seconds < 0:
            raise ValueError("Score decay and grace must be non-negative")

    def sensitivity(self, task: HeadTask) -> float:
        return float(self.pose_sensitivity[task.value])


# ===================================================================
# Logging Setup
# ===================================================================

def setup_logger(name: str, level: int = logging.INFO) -> logging.Logger:
    """Create a configured logger for Vault modules."""
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            '[%(asctime)s] %(name)-12s %(levelname)-7s %(message)s',
            datefmt='%H:%M:%S'
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    logger.setLevel(level)
    return logger


_log = setup_logger('VaultUtils')


# ===================================================================
# Landmark Indices (MediaPipe FaceMesh / HandLandmarker)
# ===================================================================

# Face mesh (468/478 points). "Left"/"right" are the subject's.
NOSE_TIP = 1
RIGHT_EYE_OUTER, RIGHT_EYE_INNER = 33, 133
LEFT_EYE_OUTER, LEFT_EYE_INNER = 263, 362
RIGHT_EYE_UPPER, RIGHT_EYE_LOWER = 159, 145
LEFT_EYE_UPPER, LEFT_EYE_LOWER = 386, 374
RIGHT_CHEEK, LEFT_CHEEK = 234, 454

# (upper, lower, outer, inner) per eye
RIGHT_EYE = (RIGHT_EYE_UPPER, RIGHT_EYE_LOWER, RIGHT_EYE_OUTER, RIGHT_EYE_INNER)
LEFT_EYE = (LEFT_EYE_UPPER, LEFT_EYE_LOWER, LEFT_EYE_OUTER, LEFT_EYE_INNER)

FACE_MIN_POINTS = 468

# Hand (21 points)
WRIST = 0
THUMB_MCP, THUMB_TIP = 2, 4
INDEX_PIP, INDEX_TIP = 6, 8
MIDDLE_MCP, MIDDLE_PIP, MIDDLE_TIP = 9, 10, 12
RING_PIP, RING_TIP = 14, 16
PINKY_PIP, PINKY_TIP = 18, 20

HAND_MIN_POINTS = 21


# ===================================================================
# COMPONENT C: LANDMARK GEOMETRY
# ===================================================================

def to_points(landmarks, min_points: int = 0) -> Optional[np.ndarray]:
    """Normalize a landmark observation to an (N, 2) float array.

    Accepts a numpy array (N, 2|3), a sequence of (x, y[, z]) tuples, or
    objects with `.x`/`.y` attributes (MediaPipe NormalizedLandmark).

    Returns:
        (N, 2) float64 array, or None if `landmarks` is None.

    Raises:
        ValueError: If the input is malformed or has fewer than
                    `min_points` points.
    """
    if landmarks is None:
        return None

    if isinstance(landmarks, np.ndarray):
        arr = landmarks.astype(np.float64, copy=False)
    else:
        rows = []
        for lm in landmarks:
            if hasattr(lm, 'x') and hasattr(lm, 'y'):
                rows.append((float(lm.x), float(lm.y)))
            else:
                rows.append((float(lm[0]), float(lm[1])))
        arr = np.asarray(rows, dtype=np.float64)

    if arr.ndim != 2 or arr.shape[1] < 2:
        raise ValueError(f"Expected (N, 2) or (N, 3) landmarks, got shape {arr.shape}")
    if arr.shape[0] < min_points:
        raise ValueError(f"Expected at least {min_points} landmarks, got {arr.shape[0]}")
    if not np.all(np.isfinite(arr[:, :2])):
        raise ValueError("Landmarks contain non-finite coordinates")
    return arr[:, :2]


def distance(a, b) -> float:
    """Euclidean distance between two 2D points."""
    return math.hypot(float(a[0]) - float(b[0]), float(a[1]) - float(b[1]))


def eye_aspect_ratio(points: np.ndarray, eye: tuple[int, int, int, int]) -> float:
    """EAR for one eye: vertical lid opening over horizontal eye width.

    Args:
        points: (N, 2) normalized landmarks.
        eye: (upper, lower, outer, inner) landmark indices.

    Returns:
        EAR, or 0.0 if the eye width collapses.
    """
    upper, lower, outer, inner = eye
    horizontal = distance(points[outer], points[inner])
    if horizontal < 1e-6:
        return 0.0
    return distance(points[upper], points[lower]) / horizontal


def compute_ear(points: np.ndarray) -> float:
    """Average EAR over both eyes."""
    return (eye_aspect_ratio(points, RIGHT_EYE) + eye_aspect_ratio(points, LEFT_EYE)) / 2.0


def compute_face_signature(points: np.ndarray) -> FaceSignature:
    """Outer-eye-corner distance and cheek-to-cheek width."""
    return FaceSignature(
        eye_distance=distance(points[RIGHT_EYE_OUTER], points[LEFT_EYE_OUTER]),
        face_width=distance(points[RIGHT_CHEEK], points[LEFT_CHEEK]),
    )


def head_pose_offsets(points: np.ndarray) -> tuple[float, float, float]:
    """Approximate (yaw, pitch, roll) as offsets in face-width units.

    yaw   = (nose.x − inner-eye midpoint.x) / face_width
    pitch = (nose.y − inner-eye midpoint.y) / face_width   (larger = looking down)
    roll  = (y(subject-left inner eye) − y(subject-right inner eye)) / face_width

    face_width is the cheek-to-cheek distance (234–454), so the readings
    do not depend on how far the subject sits from the camera.
    Coordinates are raw image coordinates; the preview shown to the user
    is mirrored, so a turn to the user's left increases yaw.

    Raises:
        ValueError: If the cheek landmarks coincide.
    """
    face_width = distance(points[RIGHT_CHEEK], points[LEFT_CHEEK])
    if face_width <= 1e-6:
        raise ValueError("Degenerate face width; cannot normalize head pose")

    nose = points[NOSE_TIP]
    right_inner = points[RIGHT_EYE_INNER]
    left_inner = points[LEFT_EYE_INNER]
    mid_x = (right_inner[0] + left_inner[0]) / 2.0
    mid_y = (right_inner[1] + left_inner[1]) / 2.0
    yaw = float(nose[0] - mid_x) / face_width
    pitch = float(nose[1] - mid_y) / face_width
    roll = float(left_inner[1] - right_inner[1]) / face_width
    return yaw, pitch, roll


def relative_deviation(current: float, baseline: float) -> float:
    """|current − baseline| / baseline; 0.0 for a degenerate baseline."""
    if baseline <= 1e-9:
        return 0.0
    return abs(current - baseline) / baseline


def instruction_for(task) -> str:
    """Human-readable prompt for a head or hand task."""
    return TASK_INSTRUCTIONS.get(task, str(getattr(task, "value", task)))


TASK_INSTRUCTIONS = {
    HeadTask.TURN_LEFT: "Turn your head LEFT",
    HeadTask.TURN_RIGHT: "Turn your head RIGHT",
    HeadTask.LOOK_UP: "Look UP",
    HeadTask.LOOK_DOWN: "Look DOWN",
    HeadTask.TILT_LEFT: "Tilt your head to the LEFT",
    HeadTask.TILT_RIGHT: "Tilt your head to the RIGHT",
    HandTask.THUMBS_UP: "Show a THUMBS UP",
    HandTask.OPEN_PALM: "Show an OPEN PALM",
    HandTask.CLOSED_FIST: "Make a CLOSED FIST",
    HandTask.VICTORY: "Show a VICTORY sign",
    HandTask.POINTING_UP: "Point your index finger UP",
}
