"""
Streamer configuration.

Environment Variables:
    URL: WebSocket server URL (required unless passed on the command line)
    STREAM_TOKEN: Optional Bearer token
    STREAM_RATE: Tick rate in Hz (default: 72)
    STREAM_TAG: Frame type tag (default: rightHandData)
    STREAM_SIZE: Feature vector length (default: 17)
    RECONNECT_DELAY: Seconds between reconnect attempts (default: 5)
    MAX_RECONNECT_ATTEMPTS: Give up after this many failed reconnects
        (default: unset, retry forever)
"""

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from .message import ONE_HAND_NUM_FEATURES, RIGHT_HAND_TAG
from .streamer import DEFAULT_RATE_HZ
from .ws_client import DEFAULT_RECONNECT_DELAY


@dataclass
class StreamerConfig:
    """Settings for one streaming link."""
    url: Optional[str] = None
    token: Optional[str] = None
    rate: float = DEFAULT_RATE_HZ
    tag: str = RIGHT_HAND_TAG
    size: int = ONE_HAND_NUM_FEATURES
    reconnect_delay: float = DEFAULT_RECONNECT_DELAY
    max_reconnect_attempts: Optional[int] = None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'StreamerConfig':
        """
        Load configuration from environment variables.

        Raises:
            ValueError: If a numeric variable cannot be parsed
        """
        env = os.environ if environ is None else environ

        max_attempts = env.get("MAX_RECONNECT_ATTEMPTS")
        return cls(
            url=env.get("URL") or None,
            token=env.get("STREAM_TOKEN") or None,
            rate=float(env.get("STREAM_RATE", str(DEFAULT_RATE_HZ))),
            tag=env.get("STREAM_TAG", RIGHT_HAND_TAG),
            size=int(env.get("STREAM_SIZE", str(ONE_HAND_NUM_FEATURES))),
            reconnect_delay=float(env.get("RECONNECT_DELAY", str(DEFAULT_RECONNECT_DELAY))),
            max_reconnect_attempts=int(max_attempts) if max_attempts else None,
        )

    def validate(self) -> None:
        """
        Check the settings are usable.

        Raises:
            ValueError: On a missing URL or out-of-range value
        """
        if not self.url:
            raise ValueError("URL is required (set the URL environment variable or --url)")
        if not self.url.startswith(("ws://", "wss://")):
            raise ValueError(f"URL must start with ws:// or wss://, got {self.url}")
        if self.rate <= 0:
            raise ValueError(f"rate must be positive, got {self.rate}")
        if self.size < 0:
            raise ValueError(f"size must not be negative, got {self.size}")
        if self.reconnect_delay < 0:
            raise ValueError(f"reconnect_delay must not be negative, got {self.reconnect_delay}")
        if self.max_reconnect_attempts is not None and self.max_reconnect_attempts < 0:
            raise ValueError("max_reconnect_attempts must not be negative")
