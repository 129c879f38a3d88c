"""
Vault Liveness -- Engine Integration Tests
==========================================
Validates VaultEngine end to end with synthetic landmarks and a fake
clock:
- Stage progression and the deferred post-blink transition
- Consistency guard hard failure vs. low-score soft failure
- Callback semantics (exactly once, only on pass)
- Reset and robustness of the observation entry points
"""

import json
import random
import sys
import tempfile
import unittest
from pathlib import Path
from unittest.mock import ANY, MagicMock, patch

_project_root = str(Path(__file__).resolve().parent.parent)
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)
_tests_dir = str(Path(__file__).resolve().parent)
if _tests_dir not in sys.path:
    sys.path.insert(0, _tests_dir)

from vault_engine import VaultEngine
from vault_logger import VaultLogger
from vault_types import HandTask, HeadTask, Stage, STAGE_ORDER
from vault_utils import VaultConfig
from synthetic_landmarks import FakeClock, make_face, make_hand

POSE_FOR_HEAD_TASK = {
    HeadTask.TURN_LEFT: {"yaw": 0.05},
    HeadTask.TURN_RIGHT: {"yaw": -0.05},
    HeadTask.LOOK_UP: {"pitch": 0.0},
    HeadTask.LOOK_DOWN: {"pitch": 0.11},
    HeadTask.TILT_LEFT: {"roll": 0.05},
    HeadTask.TILT_RIGHT: {"roll": -0.05},
}

POSE_FOR_HAND_TASK = {
    HandTask.THUMBS_UP: {"thumb_up": True},
    HandTask.OPEN_PALM: {"index": True, "middle": True, "ring": True, "pinky": True},
    HandTask.CLOSED_FIST: {},
    HandTask.VICTORY: {"index": True, "middle": True},
    HandTask.POINTING_UP: {"index": True},
}


class EngineTestCase(unittest.TestCase):

    def setUp(self):
        self.config = VaultConfig(
            face_hold_ms=2000,
            blink_required=2,
            blink_transition_delay_ms=300,
        )
        self.clock = FakeClock(100.0)
        self.verified = MagicMock()
        self.audit = MagicMock()
        self.engine = VaultEngine(
            self.config,
            on_verified=self.verified,
            clock=self.clock,
            rng=random.Random(42),
            audit_logger=self.audit,
        )

    # ── Drivers ───────────────────────────────────────────────

    def pass_face(self, **face_kwargs):
        self.engine.process_face_observation(make_face(**face_kwargs))
        self.clock.advance(2.0)
        self.engine.process_face_observation(make_face(**face_kwargs))
        self.assertEqual(self.engine.stage, Stage.BLINK)

    def blink(self, **face_kwargs):
        self.engine.process_face_observation(make_face(ear=0.10, **face_kwargs))
        self.engine.process_face_observation(make_face(ear=0.30, **face_kwargs))

    def pass_blinks(self):
        for _ in range(self.config.blink_required):
            self.blink()
        self.clock.advance(0.3)
        self.engine.tick()
        self.assertEqual(self.engine.stage, Stage.HEAD)

    def pass_head(self):
        pose = POSE_FOR_HEAD_TASK[self.engine.head_task]
        self.engine.process_face_observation(make_face(**pose))
        self.assertEqual(self.engine.stage, Stage.GESTURE)

    def perform_gesture(self):
        pose = POSE_FOR_HAND_TASK[self.engine.hand_task]
        self.engine.process_hand_observation(make_hand(**pose))


class TestStageProgression(EngineTestCase):

    def test_starts_at_face_with_tasks_assigned(self):
        self.assertEqual(self.engine.stage, Stage.FACE)
        self.assertEqual(self.engine.blink_count, 0)
        self.assertEqual(self.engine.score, 100)
        self.assertIsInstance(self.engine.head_task, HeadTask)
        self.assertIsInstance(self.engine.hand_task, HandTask)

    def test_full_session_under_ten_seconds_verifies_once(self):
        self.pass_face()
        self.pass_blinks()
        self.pass_head()
        self.perform_gesture()

        self.assertEqual(self.engine.stage, Stage.COMPLETE)
        self.assertEqual(self.engine.score, 100)
        self.verified.assert_called_once_with(100)
        self.assertEqual(self.engine.result.score, 100)

        # Terminal: nothing re-fires
        self.perform_gesture()
        self.engine.process_face_observation(make_face())
        self.verified.assert_called_once()

    def test_face_countdown_restarts_when_face_lost(self):
        self.engine.process_face_observation(make_face())
        self.clock.advance(1.5)
        self.engine.process_face_observation(None)
        self.clock.advance(1.0)
        self.engine.process_face_observation(make_face())
        self.assertEqual(self.engine.stage, Stage.FACE)

        self.clock.advance(1.9)
        self.engine.process_face_observation(make_face())
        self.assertEqual(self.engine.stage, Stage.FACE)

        self.clock.advance(0.2)
        self.engine.process_face_observation(make_face())
        self.assertEqual(self.engine.stage, Stage.BLINK)

    def test_signature_captured_once(self):
        self.engine.process_face_observation(make_face(scale=1.0))
        first = self.engine.signature
        self.engine.process_face_observation(make_face(scale=1.1))
        self.assertIs(self.engine.signature, first)
        self.assertAlmostEqual(first.eye_distance, 0.20)

    def test_sustained_eye_closure_counts_one_blink(self):
        self.pass_face()
        for _ in range(12):
            self.engine.process_face_observation(make_face(ear=0.10))
        self.assertEqual(self.engine.blink_count, 1)
        self.assertEqual(self.engine.stage, Stage.BLINK)

    def test_post_blink_transition_is_deferred(self):
        self.pass_face()
        with patch.object(self.engine.randomizer, "next_head_task",
                          return_value=HeadTask.LOOK_UP):
            self.blink()
            self.blink()
        self.assertEqual(self.engine.blink_count, 2)
        self.assertEqual(self.engine.stage, Stage.BLINK)
        self.assertEqual(self.engine.head_task, HeadTask.LOOK_UP)

        # Extra blinks during the pause are ignored
        self.blink()
        self.assertEqual(self.engine.blink_count, 2)

        self.clock.advance(0.29)
        self.assertEqual(self.engine.tick(), Stage.BLINK)
        self.clock.advance(0.02)
        self.engine.process_face_observation(make_face())
        self.assertEqual(self.engine.stage, Stage.HEAD)
        self.assertIn("UP", self.engine.message)

    def test_scheduler_receives_tick(self):
        scheduler = MagicMock()
        engine = VaultEngine(self.config, clock=self.clock, scheduler=scheduler)
        engine.process_face_observation(make_face())
        self.clock.advance(2.0)
        engine.process_face_observation(make_face())
        for _ in range(2):
            engine.process_face_observation(make_face(ear=0.1))
            engine.process_face_observation(make_face(ear=0.3))

        scheduler.assert_called_once()
        delay, callback = scheduler.call_args[0]
        self.assertAlmostEqual(delay, 0.3)
        self.clock.advance(delay)
        callback()
        self.assertEqual(engine.stage, Stage.HEAD)

    def test_zero_delay_moves_straight_to_head(self):
        config = VaultConfig(blink_transition_delay_ms=0)
        engine = VaultEngine(config, clock=self.clock)
        engine.process_face_observation(make_face())
        self.clock.advance(2.0)
        engine.process_face_observation(make_face())
        for _ in range(2):
            engine.process_face_observation(make_face(ear=0.1))
            engine.process_face_observation(make_face(ear=0.3))
        self.assertEqual(engine.stage, Stage.HEAD)

    def test_still_head_does_not_clear_vertical_tasks_at_any_distance(self):
        for task in (HeadTask.LOOK_UP, HeadTask.LOOK_DOWN):
            self.engine.reset()
            self.pass_face()
            with patch.object(self.engine.randomizer, "next_head_task", return_value=task):
                self.pass_blinks()
            for scale in (0.35, 1.8):
                self.engine.process_face_observation(make_face(scale=scale))
            self.assertEqual(self.engine.stage, Stage.HEAD)

    def test_turn_left_moves_to_gesture_with_new_hand_task(self):
        self.pass_face()
        with patch.object(self.engine.randomizer, "next_head_task",
                          return_value=HeadTask.TURN_LEFT):
            self.pass_blinks()

        # Wrong direction first: mirrored mapping
        self.engine.process_face_observation(make_face(yaw=-0.05))
        self.assertEqual(self.engine.stage, Stage.HEAD)

        with patch.object(self.engine.randomizer, "next_hand_task",
                          return_value=HandTask.VICTORY) as picker:
            self.engine.process_face_observation(make_face(yaw=0.05))
        picker.assert_called_once()
        self.assertEqual(self.engine.stage, Stage.GESTURE)
        self.assertEqual(self.engine.hand_task, HandTask.VICTORY)

    def test_open_palm_completes_and_fires_callback_once(self):
        self.pass_face()
        self.pass_blinks()
        with patch.object(self.engine.randomizer, "next_hand_task",
                          return_value=HandTask.OPEN_PALM):
            self.pass_head()

        self.engine.process_hand_observation(make_hand(index=True, middle=True))
        self.assertEqual(self.engine.stage, Stage.GESTURE)

        self.engine.process_hand_observation(
            make_hand(index=True, middle=True, ring=True, pinky=True))
        self.assertEqual(self.engine.stage, Stage.COMPLETE)
        self.verified.assert_called_once_with(100)

    def test_hand_observations_ignored_outside_gesture(self):
        palm = make_hand(index=True, middle=True, ring=True, pinky=True)
        for _ in range(5):
            self.engine.process_hand_observation(palm)
        self.assertEqual(self.engine.stage, Stage.FACE)

        self.pass_face()
        self.engine.process_hand_observation(palm)
        self.assertEqual(self.engine.stage, Stage.BLINK)

    def test_stage_history_is_strictly_forward(self):
        self.pass_face()
        self.pass_blinks()
        self.pass_head()
        self.perform_gesture()
        stages = [s for s, _ in self.engine._state.history]
        self.assertEqual(stages, [Stage.BLINK, Stage.HEAD, Stage.GESTURE, Stage.COMPLETE])
        orders = [STAGE_ORDER[s] for s in stages]
        self.assertEqual(orders, sorted(set(orders)))


class TestScoring(EngineTestCase):

    def _finish_at(self, elapsed):
        self.pass_face()
        self.pass_blinks()
        self.pass_head()
        self.clock.now = 100.0 + elapsed
        self.perform_gesture()

    def test_fifteen_seconds_scores_75_and_passes(self):
        self._finish_at(15.0)
        self.assertEqual(self.engine.score, 75)
        self.verified.assert_called_once_with(75)

    def test_twenty_five_seconds_scores_50_and_withholds_callback(self):
        self._finish_at(25.0)
        self.assertEqual(self.engine.stage, Stage.COMPLETE)
        self.assertEqual(self.engine.score, 50)
        self.assertEqual(self.engine.failure_reason, "low_score")
        self.assertIsNone(self.engine.result)
        self.verified.assert_not_called()
        self.assertIn("50", self.engine.message)

    def test_session_clock_starts_at_first_face(self):
        self.clock.advance(60.0)        # nobody in front of the camera yet
        self.pass_face()
        self.pass_blinks()
        self.pass_head()
        self.perform_gesture()
        self.assertEqual(self.engine.score, 100)


class TestConsistencyFailure(EngineTestCase):

    def test_subject_swap_in_face_stage_is_hard_failure(self):
        self.engine.process_face_observation(make_face(scale=0.5))
        self.assertAlmostEqual(self.engine.signature.eye_distance, 0.10)

        self.engine.process_face_observation(make_face(scale=0.8))   # eye 0.16
        self.assertEqual(self.engine.stage, Stage.COMPLETE)
        self.assertEqual(self.engine.score, 0)
        self.assertEqual(self.engine.failure_reason, "consistency")
        self.assertIn("Face changed", self.engine.message)
        self.verified.assert_not_called()
        self.audit.log_consistency_failure.assert_called_once()
        self.assertEqual(self.audit.log_consistency_failure.call_args.args[0], Stage.FACE)

    def test_consistency_failure_written_as_its_own_event(self):
        with tempfile.TemporaryDirectory() as log_dir:
            audit = VaultLogger(log_dir=log_dir)
            engine = VaultEngine(self.config, clock=self.clock, audit_logger=audit)
            engine.process_face_observation(make_face(scale=0.5))
            engine.process_face_observation(make_face(scale=0.8))
            audit.close()

            with open(audit.log_path, "r", encoding="utf-8") as f:
                entries = [json.loads(line) for line in f]

        failures = [e for e in entries if e["event"] == "consistency_failure"]
        self.assertEqual(len(failures), 1)
        self.assertEqual(failures[0]["level"], "WARN")
        self.assertEqual(failures[0]["data"]["stage"], "FACE")
        self.assertAlmostEqual(failures[0]["data"]["eye_deviation"], 0.6)

    def test_subject_swap_in_blink_stage_is_hard_failure(self):
        self.pass_face()
        self.engine.process_face_observation(make_face(scale=1.5))
        self.assertEqual(self.engine.stage, Stage.COMPLETE)
        self.assertEqual(self.engine.score, 0)

    def test_drift_within_tolerance_never_fails(self):
        rng = random.Random(3)
        self.engine.process_face_observation(make_face())
        for _ in range(50):
            self.engine.process_face_observation(make_face(scale=rng.uniform(0.7, 1.3)))
        self.assertEqual(self.engine.stage, Stage.FACE)
        self.clock.advance(2.0)
        self.engine.process_face_observation(make_face(scale=1.3))
        for _ in range(50):
            self.engine.process_face_observation(make_face(scale=rng.uniform(0.7, 1.3)))
        self.assertEqual(self.engine.stage, Stage.BLINK)

    def test_head_and_gesture_stages_skip_guard(self):
        self.pass_face()
        self.pass_blinks()
        self.engine.process_face_observation(make_face(scale=2.0))
        self.assertEqual(self.engine.stage, Stage.HEAD)
        self.pass_head()
        self.engine.process_face_observation(make_face(scale=0.3))
        self.assertEqual(self.engine.stage, Stage.GESTURE)


class TestResetAndRobustness(EngineTestCase):

    def test_reset_from_every_stage(self):
        drivers = [
            lambda: None,
            self.pass_face,
            lambda: (self.pass_face(), self.pass_blinks()),
            lambda: (self.pass_face(), self.pass_blinks(), self.pass_head()),
            lambda: (self.pass_face(), self.pass_blinks(), self.pass_head(),
                     self.perform_gesture()),
        ]
        for drive in drivers:
            drive()
            with patch.object(self.engine.randomizer, "next_pair",
                              wraps=self.engine.randomizer.next_pair) as picker:
                self.engine.reset()
            picker.assert_called_once()
            self.assertEqual(self.engine.stage, Stage.FACE)
            self.assertEqual(self.engine.blink_count, 0)
            self.assertEqual(self.engine.score, 100)
            self.assertIsNone(self.engine.signature)
            self.assertIsNone(self.engine.result)

    def test_reset_after_consistency_failure_allows_new_session(self):
        self.engine.process_face_observation(make_face(scale=0.5))
        self.engine.process_face_observation(make_face(scale=0.9))
        self.assertEqual(self.engine.score, 0)

        self.engine.reset()
        self.pass_face(scale=0.9)
        self.pass_blinks()
        self.pass_head()
        self.perform_gesture()
        self.verified.assert_called_once_with(100)

    def test_malformed_observations_do_not_raise(self):
        for bad in ([[0.1]], "garbage", [(0.1, 0.2)] * 10, 42):
            self.assertEqual(self.engine.process_face_observation(bad), Stage.FACE)
        self.pass_face()
        self.pass_blinks()
        self.pass_head()
        self.assertEqual(self.engine.process_hand_observation([(0.5, 0.5)] * 3), Stage.GESTURE)

    def test_classifier_error_is_contained_and_audited(self):
        self.pass_face()
        self.pass_blinks()
        collapsed = make_face()
        collapsed[454] = collapsed[234]
        self.assertEqual(self.engine.process_face_observation(collapsed), Stage.HEAD)
        where, exc = self.audit.log_error.call_args.args
        self.assertEqual(where, "face_observation")
        self.assertIsInstance(exc, ValueError)

    def test_callback_exception_is_contained(self):
        self.verified.side_effect = RuntimeError("wallet offline")
        self.pass_face()
        self.pass_blinks()
        self.pass_head()
        self.perform_gesture()
        self.assertEqual(self.engine.stage, Stage.COMPLETE)
        self.assertIsNotNone(self.engine.result)
        where, exc = self.audit.log_error.call_args.args
        self.assertEqual(where, "on_verified")
        self.assertIsInstance(exc, RuntimeError)
        self.audit.log_verdict.assert_called_once_with(True, 100, ANY)

    def test_audit_log_records_transitions(self):
        self.pass_face()
        self.pass_blinks()
        transitions = [c.args[:2] for c in self.audit.log_transition.call_args_list]
        self.assertEqual(transitions, [(Stage.FACE, Stage.BLINK), (Stage.BLINK, Stage.HEAD)])

    def test_summary_exposes_ui_fields(self):
        summary = self.engine.get_summary()
        for key in ("stage", "message", "score", "head_task", "hand_task",
                    "head_instruction", "hand_instruction", "verified"):
            self.assertIn(key, summary)
        self.assertEqual(summary["stage"], "FACE")


if __name__ == '__main__':
    unittest.main()
