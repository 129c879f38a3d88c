"""
Vault Liveness — Session Audit Log
==================================
Append-only JSONL record of what happened in each verification session,
for post-mortem review of rejected or disputed attempts.

Events written:
  session_reset          new session, freshly drawn tasks
  face_acquired          baseline FaceSignature captured
  stage_transition       forward stage change with context
  consistency_failure    baseline drift in FACE/BLINK (level WARN)
  verification_complete  final score and verdict
  processing_error       exception contained by an engine entry point (level ERROR)

Each line: {"timestamp", "level", "event", "data"}. Writes are locked
and flushed per line; NumPy scalars and Enums serialize transparently.
"""

import json
import os
import sys
import threading
import time
from enum import Enum
from typing import Any, Dict, Optional

import numpy as np


class VaultJSONEncoder(json.JSONEncoder):
    """NumPy arrays/scalars → lists/floats/ints, Enums → their value."""
    def default(self, obj):
        if isinstance(obj, np.ndarray):
            return obj.tolist()
        if isinstance(obj, np.floating):
            return float(obj)
        if isinstance(obj, np.integer):
            return int(obj)
        if isinstance(obj, Enum):
            return obj.value
        return super().default(obj)


class VaultLogger:
    """JSONL audit sink for VaultEngine sessions."""

    def __init__(self, log_dir: str = "logs", filename: str = "vault_audit.jsonl"):
        self.log_dir = log_dir
        os.makedirs(self.log_dir, exist_ok=True)

        self.log_path = os.path.join(self.log_dir, filename)
        self._file = open(self.log_path, "a", encoding="utf-8")
        self._lock = threading.Lock()
        self.entries_written = 0

        self.log({"python_version": sys.version, "platform": sys.platform},
                 level="SYSTEM", event="audit_open")

    def log(self, data: Dict[str, Any], level: str = "AUDIT", event: Optional[str] = None):
        """Append one entry; silently dropped once the log is closed."""
        line = json.dumps({
            "timestamp": time.time(),
            "level": level,
            "event": event or data.get("event", "unknown"),
            "data": data,
        }, cls=VaultJSONEncoder) + "\n"

        with self._lock:
            if self._file.closed:
                return
            self._file.write(line)
            self._file.flush()
            self.entries_written += 1

    def log_transition(self, old_stage, new_stage, **context):
        self.log({"from": old_stage, "to": new_stage, **context}, event="stage_transition")

    def log_consistency_failure(self, stage, eye_deviation: float, width_deviation: float):
        self.log({
            "stage": stage,
            "eye_deviation": eye_deviation,
            "width_deviation": width_deviation,
        }, level="WARN", event="consistency_failure")

    def log_verdict(self, verified: bool, score: int, elapsed: float):
        self.log({"verified": verified, "score": score, "elapsed": elapsed},
                 event="verification_complete")

    def log_error(self, where: str, exception: BaseException):
        """Record an exception the engine contained (already logged to the console)."""
        self.log({
            "where": where,
            "type": type(exception).__name__,
            "exception": str(exception),
        }, level="ERROR", event="processing_error")

    def close(self):
        with self._lock:
            closed = self._file.closed
        if not closed:
            self.log({"entries": self.entries_written + 1}, level="SYSTEM", event="audit_close")
            with self._lock:
                self._file.close()


# Process-wide instance for the launcher
_logger = None


def get_logger(log_dir="logs"):
    global _logger
    if _logger is None:
        _logger = VaultLogger(log_dir)
    return _logger
