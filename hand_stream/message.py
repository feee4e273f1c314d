"""
Frame Schema and Validation for hand telemetry messages.

Defines the JSON frame format sent from the client to the robot-control
server and validates feature vectors before transmission.

Wire format:
    {"type": "<tag>", "handData": [<float>, ...]}
"""

import json
import logging
import math
from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence, Tuple

import numpy as np

logger = logging.getLogger(__name__)

# Field names expected by the server
TYPE_FIELD = "type"
DATA_FIELD = "handData"

# Known frame tags
RIGHT_HAND_TAG = "rightHandData"
LEFT_HAND_TAG = "leftHandData"
TWO_HANDS_TAG = "twoHandsData"

# Known vector shapes
ONE_HAND_NUM_FEATURES = 17
TWO_HAND_NUM_FEATURES = 44

# Value substituted for missing or non-finite features
NEUTRAL_DEFAULT = 0.0


def _as_floats(vector: Iterable[float]) -> Tuple[float, ...]:
    """Coerce any float sequence (list, tuple, numpy array) to a tuple of floats."""
    if not isinstance(vector, np.ndarray):
        vector = list(vector)
    arr = np.asarray(vector, dtype=np.float64)
    if arr.ndim != 1:
        raise ValueError(f"vector must be one-dimensional, got shape {arr.shape}")
    return tuple(arr.tolist())


@dataclass(frozen=True)
class Frame:
    """
    One snapshot of sensor features.

    Attributes:
        tag: Discriminator sent in the ``type`` field
        vector: Ordered feature values sent in the ``handData`` field
    """
    tag: str
    vector: Tuple[float, ...] = field(default_factory=tuple)

    def __post_init__(self):
        if not isinstance(self.tag, str):
            raise TypeError(f"tag must be a string, got {type(self.tag).__name__}")
        object.__setattr__(self, "vector", _as_floats(self.vector))

    def __len__(self) -> int:
        return len(self.vector)

    def to_json(self) -> str:
        """Serialize to JSON string."""
        return json.dumps(
            {TYPE_FIELD: self.tag, DATA_FIELD: list(self.vector)},
            allow_nan=False,
        )

    @classmethod
    def from_json(cls, data: str) -> 'Frame':
        """Deserialize from JSON string."""
        d = json.loads(data)
        if not isinstance(d, dict):
            raise ValueError("frame must be a JSON object")
        tag = d.get(TYPE_FIELD)
        values = d.get(DATA_FIELD)
        if not isinstance(tag, str):
            raise ValueError(f"frame is missing a string '{TYPE_FIELD}' field")
        if not isinstance(values, list):
            raise ValueError(f"frame is missing a '{DATA_FIELD}' array")
        for v in values:
            if isinstance(v, bool) or not isinstance(v, (int, float)):
                raise ValueError(f"'{DATA_FIELD}' must contain only numbers, got {v!r}")
        return cls(tag=tag, vector=tuple(float(v) for v in values))


def encode(tag: str, vector: Iterable[float]) -> str:
    """
    Encode a tagged feature vector into a wire message.

    Stateless and safe to call from any thread or task.

    Raises:
        ValueError: If the vector contains NaN or infinite values
    """
    return Frame(tag=tag, vector=vector).to_json()


def decode(text: str) -> Frame:
    """
    Decode a wire message back into a Frame.

    Raises:
        ValueError: If the text is not a well-formed frame
    """
    return Frame.from_json(text)


class FrameValidator:
    """
    Validates outgoing frames before transmission.

    Ensures:
    - Every value is finite (not NaN/Inf)
    - The vector has the expected length, when one is configured
    """

    def __init__(self, expected_length: Optional[int] = None):
        """
        Initialize validator.

        Args:
            expected_length: Required vector length, or None to accept any
        """
        self.expected_length = expected_length
        self._dropped_count: int = 0
        self._validated_count: int = 0

    def validate(self, frame: Frame) -> Tuple[bool, str]:
        """
        Validate a frame.

        Args:
            frame: The frame to validate

        Returns:
            Tuple of (is_valid, reason_string)
        """
        if self.expected_length is not None and len(frame) != self.expected_length:
            self._dropped_count += 1
            logger.warning(
                f"Invalid frame: length {len(frame)} != expected {self.expected_length}"
            )
            return False, "wrong_length"

        for i, v in enumerate(frame.vector):
            if not math.isfinite(v):
                self._dropped_count += 1
                logger.warning(f"Invalid frame: value {v} at index {i} is not finite")
                return False, "value_not_finite"

        self._validated_count += 1
        return True, "ok"

    def sanitize_and_validate(self, frame: Frame) -> Tuple[Frame, bool, str]:
        """
        Replace non-finite values with the neutral default, then validate.

        Returns:
            Tuple of (sanitized_frame, is_valid, reason)
        """
        values = np.asarray(frame.vector, dtype=np.float64)
        if values.size and not np.all(np.isfinite(values)):
            values = np.where(np.isfinite(values), values, NEUTRAL_DEFAULT)
            frame = Frame(tag=frame.tag, vector=values)

        valid, reason = self.validate(frame)
        return frame, valid, reason

    def get_stats(self) -> dict:
        """Get validation statistics."""
        total = self._validated_count + self._dropped_count
        return {
            "total_frames": total,
            "validated": self._validated_count,
            "dropped": self._dropped_count,
            "drop_rate": self._dropped_count / total if total > 0 else 0.0,
        }

    def reset_stats(self) -> None:
        """Reset statistics counters."""
        self._dropped_count = 0
        self._validated_count = 0


def create_frame(vector: Sequence[float], tag: str = RIGHT_HAND_TAG) -> Frame:
    """Create a frame, defaulting to the right-hand tag."""
    return Frame(tag=tag, vector=vector)
