"""
Vault Liveness — VaultEngine (Stage Sequencer)
==============================================
The central orchestrator for the liveness gate. Consumes landmark
observations one at a time and walks a session through

    FACE → BLINK → HEAD → GESTURE → COMPLETE

before authorizing the downstream proof-of-life action.

Architecture: single-threaded, callback-driven
  1. The caller's capture/inference loop delivers face and hand
     landmarks via process_face_observation / process_hand_observation
  2. Each observation runs to completion: Consistency Guard first, then
     the classifier for the current stage
  3. on_verified(score) fires at most once per session, only on a
     passing gesture-stage success

Failure handling:
  - No face/hand in frame: skip (FACE countdown restarts from zero)
  - Signature drift in FACE/BLINK: hard failure, COMPLETE with score 0
  - Slow completion: soft failure, COMPLETE with a sub-threshold score
  - No exception escapes the observation entry points

Timing uses a monotonic clock (injectable). The short pause after the
last blink is a stored due-time applied by tick() or by the next
observation, never a blocking sleep.
"""

from __future__ import annotations

import logging
import random
import time
from typing import Any, Callable, Optional

from vault_liveness import (
    BlinkDetector,
    ConsistencyGuard,
    HandGestureClassifier,
    HeadPoseClassifier,
    ScoreCalculator,
    TaskRandomizer,
)
from vault_types import (
    FaceSignature,
    SessionState,
    Stage,
    STAGE_ORDER,
    VerificationResult,
)
from vault_utils_core import (
    CONFIG,
    FACE_MIN_POINTS,
    HAND_MIN_POINTS,
    VaultConfig,
    compute_face_signature,
    instruction_for,
    to_points,
)

_log = logging.getLogger("VaultEngine")

MSG_FACE_SEARCH = "Position your face in the frame"
MSG_FACE_LOST = "Face lost. Look at the camera and hold still"
MSG_BLINK = "Blink {remaining} more time(s)"
MSG_BLINK_DONE = "Blinks detected. Get ready..."
MSG_SWAP = "Face changed during verification. Please restart"
MSG_VERIFIED = "Verified! Liveness score {score}"
MSG_TOO_SLOW = "Liveness score {score} is below {threshold}. Please try again"


class VaultEngine:
    """
    Finite-state machine over one verification session.
    Owns the SessionState exclusively; reset() is the only external
    mutation.
    """

    def __init__(
        self,
        config: Optional[VaultConfig] = None,
        on_verified: Optional[Callable[[int], Any]] = None,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
        rng: Optional[random.Random] = None,
        scheduler: Optional[Callable[[float, Callable[[], Any]], Any]] = None,
        audit_logger=None,
    ):
        """Initialize the sequencer and start a fresh session.

        Args:
            config: Thresholds; defaults to the `liveness:` section of
                    config.yaml, or built-in defaults if absent.
            on_verified: Called with the integer score on success.
            clock: Monotonic time source in seconds.
            wall_clock: Epoch time source stamped on VerificationResult.
            rng: Random source for task selection.
            scheduler: Optional `(delay_seconds, callback)` hook, e.g.
                       asyncio's loop.call_later, used to run tick() when
                       the post-blink pause elapses.
            audit_logger: Optional VaultLogger for JSONL session events.
        """
        self.config = config or VaultConfig.from_dict(CONFIG.get("liveness"))
        self.config.validate()
        self.on_verified = on_verified
        self._clock = clock
        self._wall_clock = wall_clock
        self._scheduler = scheduler
        self._audit = audit_logger

        self.randomizer = TaskRandomizer(rng)
        self.guard = ConsistencyGuard(self.config.consistency_tolerance)
        self.blink_detector = BlinkDetector(
            self.config.blink_ear_threshold, self.config.blink_required
        )
        self.head_classifier = HeadPoseClassifier(self.config.pose_sensitivity)
        self.hand_classifier = HandGestureClassifier(self.config.thumb_extension_ratio)
        self.scorer = ScoreCalculator(self.config)

        self._frames_processed = 0
        self._state: SessionState = self._new_state()
        self._audit_event("session_reset", self._state.to_dict())

    # ── Observable state ──────────────────────────────────────

    @property
    def stage(self) -> Stage:
        return self._state.stage

    @property
    def message(self) -> str:
        return self._state.message

    @property
    def score(self) -> int:
        """Meaningful once the stage is COMPLETE."""
        return self._state.score

    @property
    def head_task(self):
        return self._state.head_task

    @property
    def hand_task(self):
        return self._state.hand_task

    @property
    def blink_count(self) -> int:
        return self._state.blink_count

    @property
    def signature(self) -> Optional[FaceSignature]:
        return self._state.signature

    @property
    def result(self) -> Optional[VerificationResult]:
        return self._state.result

    @property
    def failure_reason(self) -> Optional[str]:
        return self._state.failure_reason

    @property
    def is_complete(self) -> bool:
        return self._state.stage == Stage.COMPLETE

    def get_summary(self) -> dict:
        """Snapshot for UI rendering."""
        summary = self._state.to_dict()
        summary.update({
            "head_instruction": instruction_for(self._state.head_task),
            "hand_instruction": instruction_for(self._state.hand_task),
            "verified": self._state.result is not None,
            "frames_processed": self._frames_processed,
        })
        return summary

    # ── Public API ────────────────────────────────────────────

    def reset(self) -> None:
        """Start a new session at FACE with freshly drawn tasks."""
        self._state = self._new_state()
        _log.info("Session reset — head=%s hand=%s",
                  self._state.head_task.value, self._state.hand_task.value)
        self._audit_event("session_reset", self._state.to_dict())

    def tick(self) -> Stage:
        """Apply any transition whose due-time has passed."""
        try:
            self._apply_pending(self._clock())
        except Exception as e:
            _log.exception("tick() failed; state left unchanged")
            self._audit_error("tick", e)
        return self._state.stage

    def process_face_observation(self, landmarks) -> Stage:
        """Consume one face result (None = no face this frame).

        Returns:
            The stage after processing.
        """
        try:
            self._process_face(landmarks)
        except Exception as e:
            _log.exception("Face observation processing failed")
            self._audit_error("face_observation", e)
        return self._state.stage

    def process_hand_observation(self, landmarks) -> Stage:
        """Consume one hand result (None = no hand). Ignored outside GESTURE."""
        try:
            self._process_hand(landmarks)
        except Exception as e:
            _log.exception("Hand observation processing failed")
            self._audit_error("hand_observation", e)
        return self._state.stage

    # Aliases matching the callback names used by frame sources
    on_face_observation = process_face_observation
    on_hand_observation = process_hand_observation

    # ── Observation routing ───────────────────────────────────

    def _process_face(self, landmarks) -> None:
        now = self._clock()
        self._apply_pending(now)
        state = self._state
        if state.stage == Stage.COMPLETE:
            return

        self._frames_processed += 1
        points = self._coerce(landmarks, FACE_MIN_POINTS, "face")
        if points is None:
            self._on_face_absent()
            return

        signature = compute_face_signature(points)
        verdict = self.guard.check(signature, state.signature, state.stage)
        if not verdict.passed:
            self._fail_consistency(verdict)
            return

        if state.stage == Stage.FACE:
            self._handle_face(signature, now)
        elif state.stage == Stage.BLINK:
            self._handle_blink(points, now)
        elif state.stage == Stage.HEAD:
            self._handle_head(points)

    def _process_hand(self, landmarks) -> None:
        now = self._clock()
        self._apply_pending(now)
        if self._state.stage != Stage.GESTURE:
            return

        self._frames_processed += 1
        points = self._coerce(landmarks, HAND_MIN_POINTS, "hand")
        if points is None:
            return

        if self.hand_classifier.classify(points, self._state.hand_task):
            self._complete(now)

    @staticmethod
    def _coerce(landmarks, min_points: int, kind: str):
        try:
            return to_points(landmarks, min_points)
        except (ValueError, TypeError, IndexError) as e:
            _log.debug("Discarding malformed %s landmarks: %s", kind, e)
            return None

    # ── Stage handlers ────────────────────────────────────────

    def _on_face_absent(self) -> None:
        state = self._state
        if state.stage == Stage.FACE:
            if state.face_start is not None:
                _log.debug("Face lost; countdown restarted")
            state.face_start = None
            state.message = MSG_FACE_LOST if state.signature else MSG_FACE_SEARCH

    def _handle_face(self, signature: FaceSignature, now: float) -> None:
        state = self._state
        if state.signature is None:
            state.signature = signature
            state.session_start = now
            _log.info("Face acquired — eye_distance=%.4f face_width=%.4f",
                      signature.eye_distance, signature.face_width)
            self._audit_event("face_acquired", {"signature": signature.to_dict()})

        if state.face_start is None:
            state.face_start = now

        held_ms = (now - state.face_start) * 1000.0
        if held_ms >= self.config.face_hold_ms:
            self._transition(Stage.BLINK)
            state.message = MSG_BLINK.format(remaining=self.config.blink_required)
        else:
            remaining = (self.config.face_hold_ms - held_ms) / 1000.0
            state.message = f"Face detected. Hold still ({remaining:.1f}s)"

    def _handle_blink(self, points, now: float) -> None:
        state = self._state
        if state.pending_head_at is not None:
            return

        step = self.blink_detector.step(points, state.eyes_closed, state.blink_count)
        state.eyes_closed = step.eyes_closed
        state.blink_count = step.count
        if step.blink_detected:
            _log.info("Blink %d/%d (EAR=%.3f)",
                      step.count, self.config.blink_required, step.ear)

        if not self.blink_detector.satisfied(state.blink_count):
            state.message = MSG_BLINK.format(
                remaining=self.config.blink_required - state.blink_count
            )
            return

        state.head_task = self.randomizer.next_head_task()
        delay = self.config.blink_transition_delay_ms / 1000.0
        state.pending_head_at = now + delay
        state.message = MSG_BLINK_DONE
        if delay <= 0:
            self._apply_pending(now)
        elif self._scheduler is not None:
            self._scheduler(delay, self.tick)

    def _apply_pending(self, now: float) -> None:
        state = self._state
        if (state.stage == Stage.BLINK
                and state.pending_head_at is not None
                and now >= state.pending_head_at):
            state.pending_head_at = None
            self._transition(Stage.HEAD, task=state.head_task.value)
            state.message = instruction_for(state.head_task)

    def _handle_head(self, points) -> None:
        state = self._state
        reading = self.head_classifier.classify(points, state.head_task)
        if not reading.matched:
            return
        state.hand_task = self.randomizer.next_hand_task()
        self._transition(Stage.GESTURE, task=state.hand_task.value)
        state.message = instruction_for(state.hand_task)

    def _complete(self, now: float) -> None:
        state = self._state
        start = state.session_start if state.session_start is not None else now
        elapsed = now - start
        score = self.scorer.score(elapsed)

        self._transition(Stage.COMPLETE, elapsed_seconds=round(elapsed, 3), score=score)
        state.score = score

        if not self.scorer.passes(score):
            state.failure_reason = "low_score"
            state.message = MSG_TOO_SLOW.format(
                score=score, threshold=self.config.pass_threshold
            )
            _log.info("Gesture passed but score %d < %d; not verified",
                      score, self.config.pass_threshold)
            if self._audit is not None:
                self._audit.log_verdict(False, score, elapsed)
            return

        state.result = VerificationResult(
            score=score,
            elapsed_seconds=elapsed,
            verified_at=self._wall_clock(),
        )
        state.message = MSG_VERIFIED.format(score=score)
        _log.info("Verified in %.1fs — score %d", elapsed, score)
        if self._audit is not None:
            self._audit.log_verdict(True, score, elapsed)

        if self.on_verified is not None:
            try:
                self.on_verified(score)
            except Exception as e:
                _log.exception("on_verified callback raised")
                self._audit_error("on_verified", e)

    def _fail_consistency(self, verdict) -> None:
        state = self._state
        old = state.stage
        self._transition(Stage.COMPLETE, reason="consistency")
        state.score = 0
        state.failure_reason = "consistency"
        state.pending_head_at = None
        state.message = MSG_SWAP
        _log.warning("Consistency failure in %s: %s", old.value, verdict.explanation)
        if self._audit is not None:
            self._audit.log_consistency_failure(
                old, verdict.eye_deviation, verdict.width_deviation
            )

    # ── Internals ─────────────────────────────────────────────

    def _new_state(self) -> SessionState:
        head, hand = self.randomizer.next_pair()
        return SessionState(head_task=head, hand_task=hand, message=MSG_FACE_SEARCH)

    def _transition(self, new_stage: Stage, **context) -> None:
        state = self._state
        old = state.stage
        if STAGE_ORDER[new_stage] <= STAGE_ORDER[old]:
            raise RuntimeError(f"Illegal stage transition {old.value} -> {new_stage.value}")
        state.stage = new_stage
        state.history.append((new_stage, self._clock()))
        _log.info("Stage %s -> %s", old.value, new_stage.value)
        if self._audit is not None:
            self._audit.log_transition(old, new_stage, **context)

    def _audit_event(self, event: str, data: dict) -> None:
        if self._audit is not None:
            self._audit.log(data, event=event)

    def _audit_error(self, where: str, exc: Exception) -> None:
        if self._audit is None:
            return
        try:
            self._audit.log_error(where, exc)
        except Exception:
            _log.exception("Audit log write failed")
