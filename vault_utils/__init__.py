"""
Vault Liveness -- vault_utils package
=====================================
Re-exports the configuration, logging and geometry helpers from
vault_utils_core.py so callers can write `from vault_utils import X`.
"""

from __future__ import annotations

from vault_utils_core import (
    # Config
    load_config,
    CONFIG,
    VaultConfig,
    # Logging
    setup_logger,
    # Geometry
    to_points,
    distance,
    eye_aspect_ratio,
    compute_ear,
    compute_face_signature,
    head_pose_offsets,
    relative_deviation,
    # Prompts
    instruction_for,
    TASK_INSTRUCTIONS,
    # Landmark index sets
    FACE_MIN_POINTS,
    HAND_MIN_POINTS,
    LEFT_EYE,
    RIGHT_EYE,
)

__all__ = [
    "load_config", "CONFIG", "VaultConfig",
    "setup_logger",
    "to_points", "distance", "eye_aspect_ratio", "compute_ear",
    "compute_face_signature", "head_pose_offsets", "relative_deviation",
    "instruction_for", "TASK_INSTRUCTIONS",
    "FACE_MIN_POINTS", "HAND_MIN_POINTS", "LEFT_EYE", "RIGHT_EYE",
]
