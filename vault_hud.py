
import time
import logging
import cv2
import numpy as np
from typing import Tuple

from vault_types import Stage

_log = logging.getLogger("VaultHUD")


class VaultHUD:
    """Verification overlay for the live preview.

    Draws the current stage, the status message, the assigned task and
    the final score. Each stage has a distinct color and shape so the
    display stays readable for color-blind users.
    """

    # BGR colors
    COLORS = {
        "FACE":     {"bg": (128, 128, 128), "shape": "circle"},    # Gray
        "BLINK":    {"bg": (0, 200, 255),   "shape": "dash"},      # Amber
        "HEAD":     {"bg": (255, 160, 0),   "shape": "question"},  # Blue
        "GESTURE":  {"bg": (255, 0, 200),   "shape": "question"},  # Magenta
        "VERIFIED": {"bg": (0, 180, 0),     "shape": "checkmark"}, # Green
        "FAILED":   {"bg": (0, 0, 220),     "shape": "x_mark"},    # Red
    }

    def __init__(self, mirror: bool = True):
        self.mirror = mirror
        _log.info("VaultHUD initialized")

    def render(self, frame: np.ndarray, summary: dict) -> Tuple[np.ndarray, float]:
        """Draw overlay onto a copy of the frame.

        Args:
            frame: BGR image (raw, unmirrored).
            summary: VaultEngine.get_summary() output.

        Returns:
            (annotated_frame, hud_render_time_seconds)
        """
        t_hud_start = time.monotonic()

        if frame is None:
            return None, 0.0

        viz = cv2.flip(frame, 1) if self.mirror else frame.copy()
        key = self._get_display_state(summary)
        props = self.COLORS[key]

        self._draw_banner(viz, summary, props["bg"])
        self._draw_shape(viz, props["shape"], (viz.shape[1] - 40, 15), props["bg"])
        self._draw_status_bar(viz, summary)

        return viz, time.monotonic() - t_hud_start

    @staticmethod
    def _get_display_state(summary: dict) -> str:
        stage = summary.get("stage", Stage.FACE.value)
        if stage == Stage.COMPLETE.value:
            return "VERIFIED" if summary.get("verified") else "FAILED"
        return stage if stage in VaultHUD.COLORS else "FACE"

    def _draw_banner(self, frame: np.ndarray, summary: dict, color):
        """Stage name and the current instruction across the top."""
        w = frame.shape[1]
        cv2.rectangle(frame, (0, 0), (w, 60), (0, 0, 0), -1)
        cv2.rectangle(frame, (0, 0), (w, 60), color, 2)
        cv2.putText(frame, summary.get("stage", ""), (10, 24),
            cv2.FONT_HERSHEY_SIMPLEX, 0.7, color, 2)
        cv2.putText(frame, summary.get("message", ""), (10, 50),
            cv2.FONT_HERSHEY_SIMPLEX, 0.6, (255, 255, 255), 1)

    def _draw_shape(self, frame: np.ndarray, shape: str, pos: Tuple[int, int], color: Tuple[int, int, int]):
        """Draw accessible shape icon."""
        x, y = pos
        size = 20
        if shape == "checkmark":
            pts = np.array([[x, y+10], [x+7, y+17], [x+20, y]], dtype=np.int32)
            cv2.polylines(frame, [pts], False, color, 3)
        elif shape == "x_mark":
            cv2.line(frame, (x, y), (x+size, y+size), color, 3)
            cv2.line(frame, (x+size, y), (x, y+size), color, 3)
        elif shape == "question":
            cv2.putText(frame, "?", (x, y+size), cv2.FONT_HERSHEY_SIMPLEX, 0.8, color, 2)
        elif shape == "circle":
            cv2.circle(frame, (x+10, y+10), 10, color, 2)
        elif shape == "dash":
            cv2.line(frame, (x, y+10), (x+20, y+10), color, 3)

    def _draw_status_bar(self, frame: np.ndarray, summary: dict):
        """Bottom bar: blink count, tasks, score."""
        h, w = frame.shape[:2]
        bar_h = 40
        overlay = frame.copy()
        cv2.rectangle(overlay, (0, h - bar_h), (w, h), (0, 0, 0), -1)
        alpha = 0.6
        cv2.addWeighted(overlay, alpha, frame, 1 - alpha, 0, frame)

        left = f"BLINKS: {summary.get('blink_count', 0)} | HEAD: {summary.get('head_task', '-')} | HAND: {summary.get('hand_task', '-')}"
        cv2.putText(frame, left, (10, h - 12),
            cv2.FONT_HERSHEY_SIMPLEX, 0.5, (255, 255, 255), 1)

        if summary.get("stage") == Stage.COMPLETE.value:
            score_text = f"SCORE: {summary.get('score', 0)}"
            text_w = cv2.getTextSize(score_text, cv2.FONT_HERSHEY_SIMPLEX, 0.6, 1)[0][0]
            cv2.putText(frame, score_text, (w - text_w - 10, h - 12),
                cv2.FONT_HERSHEY_SIMPLEX, 0.6, (200, 200, 200), 1)
