"""
Vault Liveness — Challenge Classifiers Package
==============================================
Per-stage decision logic used by VaultEngine.
"""
from .blink_detector import BlinkDetector, BlinkStep
from .challenge_response import TaskRandomizer
from .consistency_guard import ConsistencyGuard, GuardVerdict
from .hand_gesture import FingerState, HandGestureClassifier, finger_states
from .head_pose import HeadPoseClassifier, PoseReading
from .scoring import ScoreCalculator, compute_score, is_passing
