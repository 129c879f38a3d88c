"""
Vault Liveness — Shared Types
=============================
Stages, challenge catalogs and session records shared by the engine,
the classifiers and the glue code.
"""

from dataclasses import dataclass, asdict, field
from enum import Enum
from typing import Optional


class Stage(str, Enum):
    """Verification stages, in the order a session walks through them."""
    FACE = "FACE"
    BLINK = "BLINK"
    HEAD = "HEAD"
    GESTURE = "GESTURE"
    COMPLETE = "COMPLETE"


class HeadTask(str, Enum):
    TURN_LEFT = "TURN_LEFT"
    TURN_RIGHT = "TURN_RIGHT"
    LOOK_UP = "LOOK_UP"
    LOOK_DOWN = "LOOK_DOWN"
    TILT_LEFT = "TILT_LEFT"
    TILT_RIGHT = "TILT_RIGHT"


class HandTask(str, Enum):
    THUMBS_UP = "THUMBS_UP"
    OPEN_PALM = "OPEN_PALM"
    CLOSED_FIST = "CLOSED_FIST"
    VICTORY = "VICTORY"
    POINTING_UP = "POINTING_UP"


# Ordinal used to enforce forward-only progression
STAGE_ORDER = {
    Stage.FACE: 0,
    Stage.BLINK: 1,
    Stage.HEAD: 2,
    Stage.GESTURE: 3,
    Stage.COMPLETE: 4,
}


@dataclass(frozen=True)
class FaceSignature:
    """Coarse biometric signature captured at first face acquisition."""
    eye_distance: float
    face_width: float

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class VerificationResult:
    """Delivered once to the caller on a passing gesture-stage success."""
    score: int
    elapsed_seconds: float = 0.0
    verified_at: float = 0.0      # wall-clock epoch seconds

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class SessionState:
    """Mutable state of one verification attempt.

    Owned exclusively by VaultEngine; rebuilt from scratch on reset.
    """
    head_task: HeadTask
    hand_task: HandTask
    stage: Stage = Stage.FACE
    session_start: Optional[float] = None        # monotonic, first face
    face_start: Optional[float] = None           # monotonic, countdown origin
    blink_count: int = 0
    eyes_closed: bool = False
    score: int = 100
    message: str = "Position your face in the frame"
    signature: Optional[FaceSignature] = None
    failure_reason: Optional[str] = None
    pending_head_at: Optional[float] = None      # deferred BLINK -> HEAD
    result: Optional[VerificationResult] = None
    history: list = field(default_factory=list)  # (stage, monotonic ts)

    def to_dict(self) -> dict:
        return {
            "stage": self.stage.value,
            "head_task": self.head_task.value,
            "hand_task": self.hand_task.value,
            "blink_count": self.blink_count,
            "score": self.score,
            "message": self.message,
            "signature": self.signature.to_dict() if self.signature else None,
            "failure_reason": self.failure_reason,
        }
