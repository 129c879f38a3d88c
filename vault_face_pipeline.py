"""
Vault Liveness — Landmark Pipeline
==================================
Owns face and hand landmark inference for the live launcher. Turns a
BGR camera frame into the plain landmark arrays VaultEngine consumes:

  - face: (478, 3) normalized (x, y, z) from MediaPipe FaceLandmarker,
          or None when no face is found
  - hand: (21, 3) normalized (x, y, z) from MediaPipe HandLandmarker,
          or None when no hand is found

Landmarks are measured on the raw (unmirrored) frame. Only the preview
shown to the user is flipped; the head-pose rules account for that.
"""

from __future__ import annotations

import logging
import os
from typing import Optional

import cv2
import numpy as np

_log = logging.getLogger("VaultPipeline")

_SCRIPT_DIR = os.path.dirname(os.path.abspath(__file__))


def _resolve(path: str) -> str:
    return path if os.path.isabs(path) else os.path.join(_SCRIPT_DIR, path)


class VaultLandmarkPipeline:
    """MediaPipe Tasks wrapper producing one face and one hand per frame."""

    def __init__(
        self,
        face_model: str = "models/face_landmarker.task",
        hand_model: str = "models/hand_landmarker.task",
        min_detection_confidence: float = 0.5,
    ) -> None:
        """Initialize both landmarkers in VIDEO mode.

        Args:
            face_model: Path to the FaceLandmarker .task bundle.
            hand_model: Path to the HandLandmarker .task bundle.
            min_detection_confidence: Minimum confidence to accept a detection.

        Raises:
            FileNotFoundError: If a model bundle is missing.
        """
        from mediapipe.tasks import python
        from mediapipe.tasks.python import vision

        face_path = _resolve(face_model)
        hand_path = _resolve(hand_model)
        for path in (face_path, hand_path):
            if not os.path.exists(path):
                raise FileNotFoundError(f"MediaPipe model not found: {path}")

        face_options = vision.FaceLandmarkerOptions(
            base_options=python.BaseOptions(model_asset_path=face_path),
            running_mode=vision.RunningMode.VIDEO,
            num_faces=1,
            min_face_detection_confidence=min_detection_confidence,
            min_face_presence_confidence=min_detection_confidence,
            min_tracking_confidence=0.5,
        )
        hand_options = vision.HandLandmarkerOptions(
            base_options=python.BaseOptions(model_asset_path=hand_path),
            running_mode=vision.RunningMode.VIDEO,
            num_hands=1,
            min_hand_detection_confidence=min_detection_confidence,
            min_hand_presence_confidence=min_detection_confidence,
            min_tracking_confidence=0.5,
        )

        self._face = vision.FaceLandmarker.create_from_options(face_options)
        self._hand = vision.HandLandmarker.create_from_options(hand_options)
        self._frame_timestamp_ms: int = 0
        _log.info("VaultLandmarkPipeline initialized — face=%s hand=%s",
                  os.path.basename(face_path), os.path.basename(hand_path))

    # ── Public API ────────────────────────────────────────────

    def detect(self, frame: np.ndarray, want_hand: bool = True
               ) -> tuple[Optional[np.ndarray], Optional[np.ndarray]]:
        """Run face (and optionally hand) inference on a BGR frame."""
        import mediapipe as mp

        rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        mp_image = mp.Image(image_format=mp.ImageFormat.SRGB, data=rgb)

        # VIDEO mode needs strictly increasing timestamps
        self._frame_timestamp_ms += 33

        face = self._first(self._face, mp_image, "face_landmarks")
        hand = self._first(self._hand, mp_image, "hand_landmarks") if want_hand else None
        return face, hand

    def release(self) -> None:
        """Release both landmarkers."""
        for landmarker in (self._face, self._hand):
            if landmarker is not None:
                landmarker.close()
        self._face = None
        self._hand = None

    def __enter__(self) -> "VaultLandmarkPipeline":
        return self

    def __exit__(self, *args) -> None:
        self.release()

    # ── Private ───────────────────────────────────────────────

    def _first(self, landmarker, mp_image, attr: str) -> Optional[np.ndarray]:
        if landmarker is None:
            _log.error("Landmarker not initialized")
            return None
        try:
            result = landmarker.detect_for_video(mp_image, self._frame_timestamp_ms)
        except Exception as e:
            _log.debug("MediaPipe %s detection failed: %s", attr, e)
            return None

        groups = getattr(result, attr, None)
        if not groups:
            return None
        return np.array([[lm.x, lm.y, lm.z] for lm in groups[0]], dtype=np.float32)
