"""Tests for the frame encoder and validator."""

import json
import math

import numpy as np
import pytest

from hand_stream.message import (
    ONE_HAND_NUM_FEATURES,
    RIGHT_HAND_TAG,
    TWO_HAND_NUM_FEATURES,
    Frame,
    FrameValidator,
    create_frame,
    decode,
    encode,
)


class TestEncoding:
    """Wire format."""

    @pytest.mark.parametrize("length", [0, ONE_HAND_NUM_FEATURES, TWO_HAND_NUM_FEATURES])
    def test_round_trip(self, length: int) -> None:
        vector = [0.1 * i - 1.7 for i in range(length)]
        frame = decode(encode("twoHandsData", vector))
        assert frame.tag == "twoHandsData"
        assert frame.vector == tuple(vector)

    def test_field_names_match_server(self) -> None:
        payload = json.loads(encode(RIGHT_HAND_TAG, [1.0, 2.0]))
        assert payload == {"type": "rightHandData", "handData": [1.0, 2.0]}

    def test_integers_are_sent_as_floats(self) -> None:
        payload = json.loads(encode("t", [1, 2, 3]))
        assert all(isinstance(v, float) for v in payload["handData"])

    def test_numpy_vector(self) -> None:
        vector = np.arange(ONE_HAND_NUM_FEATURES, dtype=np.float32)
        frame = decode(encode(RIGHT_HAND_TAG, vector))
        assert frame.vector == tuple(float(v) for v in range(ONE_HAND_NUM_FEATURES))

    def test_non_finite_values_are_not_encodable(self) -> None:
        with pytest.raises(ValueError):
            encode("t", [1.0, math.nan])
        with pytest.raises(ValueError):
            encode("t", [math.inf])

    def test_nested_vector_is_rejected(self) -> None:
        with pytest.raises(ValueError):
            Frame(tag="t", vector=[[1.0, 2.0]])

    def test_tag_must_be_string(self) -> None:
        with pytest.raises(TypeError):
            Frame(tag=3, vector=[])

    @pytest.mark.parametrize(
        "text",
        [
            "[]",
            '{"handData": [1.0]}',
            '{"type": "t"}',
            '{"type": "t", "handData": "1.0"}',
            '{"type": "t", "handData": [true]}',
            '{"type": "t", "handData": ["1.0"]}',
            "not json",
        ],
    )
    def test_decode_rejects_malformed(self, text: str) -> None:
        with pytest.raises(ValueError):
            decode(text)

    def test_frame_is_immutable(self) -> None:
        frame = create_frame([1.0])
        assert frame.tag == RIGHT_HAND_TAG
        with pytest.raises(AttributeError):
            frame.tag = "other"


class TestFrameValidator:
    """Validation before transmission."""

    def test_valid_frame(self) -> None:
        validator = FrameValidator(expected_length=3)
        valid, reason = validator.validate(Frame("t", [1.0, 2.0, 3.0]))
        assert valid
        assert reason == "ok"

    def test_wrong_length(self) -> None:
        validator = FrameValidator(expected_length=ONE_HAND_NUM_FEATURES)
        valid, reason = validator.validate(Frame("t", [1.0]))
        assert not valid
        assert reason == "wrong_length"

    def test_non_finite(self) -> None:
        validator = FrameValidator()
        valid, reason = validator.validate(Frame("t", [1.0, math.nan]))
        assert not valid
        assert reason == "value_not_finite"

    def test_sanitize_replaces_non_finite_with_neutral_default(self) -> None:
        validator = FrameValidator(expected_length=3)
        frame, valid, reason = validator.sanitize_and_validate(
            Frame("t", [math.nan, 2.0, -math.inf])
        )
        assert valid
        assert frame.vector == (0.0, 2.0, 0.0)
        assert frame.tag == "t"

    def test_stats(self) -> None:
        validator = FrameValidator(expected_length=1)
        validator.validate(Frame("t", [1.0]))
        validator.validate(Frame("t", []))
        stats = validator.get_stats()
        assert stats["total_frames"] == 2
        assert stats["dropped"] == 1
        assert stats["drop_rate"] == 0.5

        validator.reset_stats()
        assert validator.get_stats()["total_frames"] == 0
