"""
Snapshot Sources - Pull-based providers of hand feature vectors.

The XR runtime owns the actual measurement of finger features; this module
only fixes which features are sent, in which order, and what is sent when a
feature is unavailable.
"""

import logging
import math
import time
from typing import Callable, Optional, Sequence, Tuple

import numpy as np

from .message import NEUTRAL_DEFAULT, ONE_HAND_NUM_FEATURES, TWO_HAND_NUM_FEATURES

logger = logging.getLogger(__name__)

# Any zero-argument callable returning the current feature vector
SnapshotSource = Callable[[], Sequence[float]]

# (finger, feature) -> value, or None when the runtime cannot provide it
FeatureProvider = Callable[[str, str], Optional[float]]

FeatureKey = Tuple[str, str]

# ============================================================================
# Feature Layouts
# ============================================================================

# Thumb has no flexion/opposition, pinky has no abduction
ONE_HAND_LAYOUT: Tuple[FeatureKey, ...] = (
    ("thumb", "curl"), ("thumb", "abduction"),
    ("index", "curl"), ("index", "abduction"), ("index", "flexion"), ("index", "opposition"),
    ("middle", "curl"), ("middle", "abduction"), ("middle", "flexion"), ("middle", "opposition"),
    ("ring", "curl"), ("ring", "abduction"), ("ring", "flexion"), ("ring", "opposition"),
    ("pinky", "curl"), ("pinky", "flexion"), ("pinky", "opposition"),
)

RELATIVE_POSE_NUM_FEATURES = TWO_HAND_NUM_FEATURES - 2 * ONE_HAND_NUM_FEATURES


class HandFeatureSource:
    """
    Snapshot source reading one hand's features from a provider.

    Missing features (None, or a provider error) become NEUTRAL_DEFAULT,
    so a partially tracked hand still yields a full-length vector.
    """

    def __init__(
        self,
        provider: FeatureProvider,
        layout: Sequence[FeatureKey] = ONE_HAND_LAYOUT,
    ):
        self.provider = provider
        self.layout = tuple(layout)

    def _value(self, finger: str, feature: str) -> float:
        try:
            value = self.provider(finger, feature)
        except Exception as e:
            logger.debug(f"Feature {finger}.{feature} unavailable: {e}")
            return NEUTRAL_DEFAULT
        if value is None:
            return NEUTRAL_DEFAULT
        return float(value)

    def __call__(self) -> Tuple[float, ...]:
        return tuple(self._value(finger, feature) for finger, feature in self.layout)


def relative_pose_features(
    left_pos: Sequence[float],
    right_pos: Sequence[float],
    left_euler: Sequence[float],
    right_euler: Sequence[float],
) -> Tuple[float, ...]:
    """
    Relative pose of the right hand with respect to the left.

    Returns 10 values: position difference (x, y, z), distance, then
    (sin, cos) of the rotation difference about x, y and z. Euler angles are
    passed to sin/cos as given.
    """
    diff = np.asarray(right_pos, dtype=np.float64) - np.asarray(left_pos, dtype=np.float64)
    rot = np.asarray(right_euler, dtype=np.float64) - np.asarray(left_euler, dtype=np.float64)
    if diff.shape != (3,) or rot.shape != (3,):
        raise ValueError("positions and euler angles must have 3 components")

    distance = float(np.linalg.norm(diff))
    trig = np.column_stack((np.sin(rot), np.cos(rot))).ravel()
    return tuple(diff.tolist()) + (distance,) + tuple(trig.tolist())


class TwoHandSource:
    """
    Snapshot source for the 44-feature two-hand vector.

    Layout: 17 right-hand features, 17 left-hand features, 10 relative pose
    features. The pose callable returns (left_pos, right_pos, left_euler,
    right_euler) or None when tracking is lost, in which case the relative
    features are all NEUTRAL_DEFAULT.
    """

    def __init__(
        self,
        right: SnapshotSource,
        left: SnapshotSource,
        pose: Callable[[], Optional[Tuple[Sequence[float], ...]]],
    ):
        self.right = right
        self.left = left
        self.pose = pose

    def __call__(self) -> Tuple[float, ...]:
        pose = self.pose()
        if pose is None:
            relative = (NEUTRAL_DEFAULT,) * RELATIVE_POSE_NUM_FEATURES
        else:
            relative = relative_pose_features(*pose)
        return tuple(self.right()) + tuple(self.left()) + relative


class SyntheticSource:
    """Deterministic sinusoidal vectors, for running without a headset."""

    def __init__(
        self,
        size: int = ONE_HAND_NUM_FEATURES,
        period_s: float = 2.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.size = size
        self.period_s = period_s
        self.clock = clock
        self._phases = np.linspace(0.0, 2 * math.pi, num=size, endpoint=False)

    def __call__(self) -> Tuple[float, ...]:
        omega = 2 * math.pi / self.period_s
        values = 0.5 + 0.5 * np.sin(omega * self.clock() + self._phases)
        return tuple(values.tolist())
