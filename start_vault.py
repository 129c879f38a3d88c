"""
Vault Liveness — Launcher
=========================
Runs the liveness gate either live from a webcam or headless from a
recorded landmark trace, and prints the proof-of-life payload on
success.

Usage:
  python start_vault.py --source 0
  python start_vault.py --replay traces/session.jsonl --seed 7

Trace format (one JSON object per line):
  {"t": 0.033, "face": [[x, y], ...] | null, "hand": [[x, y], ...] | null}
  `t` is seconds since the start of the recording.

Live keys: R = restart after failure, Q/ESC = quit.
"""

import argparse
import json
import logging
import random
import sys
import os
import time

import cv2

sys.path.append(os.path.dirname(os.path.abspath(__file__)))

from vault_crypto import build_proof
from vault_engine import VaultEngine
from vault_logger import get_logger
from vault_utils_core import CONFIG, VaultConfig, setup_logger

WINDOW_NAME = "Vault | Proof of Life"

_log = setup_logger("VaultLauncher")


class ReplayClock:
    """Monotonic clock driven by trace timestamps."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now


def iter_trace(path: str):
    """Yield (t, face, hand) tuples from a JSONL trace file."""
    with open(path, "r", encoding="utf-8") as f:
        for lineno, line in enumerate(f, 1):
            line = line.strip()
            if not line:
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError as e:
                raise ValueError(f"{path}:{lineno}: invalid JSON ({e})") from e
            yield float(record["t"]), record.get("face"), record.get("hand")


def run_replay(frames, config: VaultConfig, rng=None, audit_logger=None) -> VaultEngine:
    """Feed (t, face, hand) frames through a fresh engine.

    Stops early once the session reaches COMPLETE.
    """
    clock = ReplayClock()
    engine = VaultEngine(config, clock=clock, rng=rng, audit_logger=audit_logger)
    for t, face, hand in frames:
        clock.now = t
        engine.tick()
        engine.process_face_observation(face)
        engine.process_hand_observation(hand)
        if engine.is_complete:
            break
    return engine


def run_live(args, config: VaultConfig, audit_logger) -> VaultEngine:
    from vault_face_pipeline import VaultLandmarkPipeline
    from vault_hud import VaultHUD

    pipeline_cfg = CONFIG.get("pipeline", {})
    rng = random.Random(args.seed) if args.seed is not None else None
    engine = VaultEngine(config, rng=rng, audit_logger=audit_logger)
    hud = VaultHUD(mirror=True)

    source = int(args.source) if args.source.isdigit() else args.source
    cap = cv2.VideoCapture(source)
    if not cap.isOpened():
        raise RuntimeError(f"Cannot open video source {args.source!r}")

    pipeline = VaultLandmarkPipeline(
        face_model=pipeline_cfg.get("face_landmarker_model", "models/face_landmarker.task"),
        hand_model=pipeline_cfg.get("hand_landmarker_model", "models/hand_landmarker.task"),
        min_detection_confidence=pipeline_cfg.get("min_detection_confidence", 0.5),
    )

    try:
        if not args.headless:
            cv2.namedWindow(WINDOW_NAME, cv2.WINDOW_AUTOSIZE)

        while True:
            key = cv2.waitKey(1) & 0xFF
            if key in (ord('q'), ord('Q'), 27):
                break
            if key in (ord('r'), ord('R')):
                engine.reset()

            ok, frame = cap.read()
            if not ok:
                time.sleep(0.005)
                continue

            engine.tick()
            if not engine.is_complete:
                want_hand = engine.stage.value == "GESTURE"
                face, hand = pipeline.detect(frame, want_hand=want_hand)
                engine.process_face_observation(face)
                engine.process_hand_observation(hand)

            if not args.headless:
                annotated, _ = hud.render(frame, engine.get_summary())
                cv2.imshow(WINDOW_NAME, annotated)

            if engine.result is not None and args.exit_on_verify:
                break
    finally:
        pipeline.release()
        cap.release()
        try:
            cv2.destroyAllWindows()
        except cv2.error:
            pass
    return engine


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Vault liveness gate")
    parser.add_argument("--source", type=str, default="0", help="Camera ID (0, 1, etc.) or video file path")
    parser.add_argument("--replay", type=str, default=None, help="Replay a JSONL landmark trace instead of a camera")
    parser.add_argument("--config", type=str, default=None, help="Path to config.yaml")
    parser.add_argument("--log-dir", type=str, default="logs", help="Directory for the JSONL audit log")
    parser.add_argument("--seed", type=int, default=None, help="Seed for task selection")
    parser.add_argument("--wallet", type=str, default=None, help="Account address to bind the proof to")
    parser.add_argument("--headless", action="store_true", help="Run without UI window")
    parser.add_argument("--exit-on-verify", action="store_true", help="Quit as soon as verification passes")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args(argv)

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    config = VaultConfig.from_yaml(args.config) if args.config else VaultConfig.from_dict(CONFIG.get("liveness"))
    audit = get_logger(args.log_dir)

    try:
        if args.replay:
            rng = random.Random(args.seed) if args.seed is not None else None
            engine = run_replay(iter_trace(args.replay), config, rng=rng, audit_logger=audit)
        else:
            engine = run_live(args, config, audit)
    except KeyboardInterrupt:
        _log.info("Interrupted by user")
        return 130
    finally:
        audit.close()

    summary = engine.get_summary()
    print(f"[VAULT] Stage: {summary['stage']} | {summary['message']}")
    if engine.result is None:
        return 1

    proof = build_proof(engine.result, wallet=args.wallet)
    print(json.dumps(proof.to_dict(), indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
