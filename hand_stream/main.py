#!/usr/bin/env python3
"""
Hand Telemetry Streamer - Main Entry Point

Streams hand feature vectors to a robot-control server over WebSocket. Run
standalone it streams synthetic vectors, which is useful for bench testing
a server without a headset.

Usage:
    URL=ws://127.0.0.1:8765 python -m hand_stream.main
    python -m hand_stream.main --url ws://127.0.0.1:8765 --rate 72 --size 17
    python -m hand_stream.main --url ws://127.0.0.1:8765 --tag twoHandsData --size 44
"""

import argparse
import asyncio
import logging
import signal
import sys
from typing import Optional

from .config import StreamerConfig
from .dispatcher import InboundDispatcher, InboundMessage
from .message import FrameValidator
from .snapshot import SnapshotSource, SyntheticSource
from .streamer import FixedRateTicker, StreamingLoop
from .ws_client import WebSocketClient

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


class TelemetryStreamer:
    """
    Main streamer that integrates all components:
    - Snapshot source
    - Frame validation
    - Streaming loop
    - WebSocket communication
    - Inbound message dispatch
    """

    def __init__(self, config: StreamerConfig, source: Optional[SnapshotSource] = None):
        """
        Initialize the streamer.

        Args:
            config: Streamer settings
            source: Snapshot source, synthetic vectors when omitted
        """
        self.config = config
        self.source = source or SyntheticSource(size=config.size)

        # Components
        self.dispatcher = InboundDispatcher()
        self.client = WebSocketClient(
            server_url=config.url,
            token=config.token,
            reconnect_delay=config.reconnect_delay,
            max_reconnect_attempts=config.max_reconnect_attempts,
            dispatcher=self.dispatcher,
            on_connected=self._on_connected,
            on_disconnected=self._on_disconnected,
        )
        self.streaming = StreamingLoop(
            self.client,
            source=self.source,
            tag=config.tag,
            validator=FrameValidator(expected_length=config.size),
        )
        self.dispatcher.subscribe(self._log_inbound, key="diagnostics")

    async def start(self) -> None:
        """Start the streamer."""
        logger.info("Starting Telemetry Streamer...")
        if not await self.client.start():
            logger.warning("Server unavailable, frames are dropped until connected")
        logger.info("Telemetry Streamer started")

    async def run(self) -> None:
        """Main streaming loop."""
        await self.streaming.run(FixedRateTicker(self.config.rate))

    def request_stop(self) -> None:
        self.streaming.stop()

    async def stop(self) -> None:
        """Stop the streamer and close the connection."""
        logger.info("Stopping Telemetry Streamer...")
        await self.streaming.shutdown()
        await self.client.close()
        logger.info(f"Telemetry Streamer stopped: {self.streaming.get_stats()}")

    async def _on_connected(self) -> None:
        """Callback when WebSocket connects."""
        logger.info("Connected to server")

    async def _on_disconnected(self) -> None:
        """Callback when WebSocket disconnects."""
        logger.warning("Disconnected from server")

    def _log_inbound(self, message: InboundMessage) -> None:
        logger.info(f"Server: {message.text}")


async def main_async(config: StreamerConfig) -> None:
    """Async main entry point."""
    streamer = TelemetryStreamer(config)

    # Handle shutdown signals
    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("Shutdown signal received")
        streamer.request_stop()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    try:
        await streamer.start()
        await streamer.run()
    finally:
        await streamer.stop()


def parse_args(argv=None) -> StreamerConfig:
    """Build configuration from the environment, overridden by arguments."""
    env = StreamerConfig.from_env()

    parser = argparse.ArgumentParser(
        description="Hand Telemetry Streamer",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "--url",
        type=str,
        default=env.url,
        help="WebSocket server URL (env: URL)",
    )
    parser.add_argument(
        "--token",
        type=str,
        default=env.token,
        help="Optional Bearer token (env: STREAM_TOKEN)",
    )
    parser.add_argument(
        "--rate",
        type=float,
        default=env.rate,
        help="Tick rate (Hz)",
    )
    parser.add_argument(
        "--tag",
        type=str,
        default=env.tag,
        help="Frame type tag",
    )
    parser.add_argument(
        "--size",
        type=int,
        default=env.size,
        help="Feature vector length",
    )
    parser.add_argument(
        "--reconnect-delay",
        type=float,
        default=env.reconnect_delay,
        help="Seconds between reconnect attempts",
    )
    parser.add_argument(
        "--max-reconnect-attempts",
        type=int,
        default=env.max_reconnect_attempts,
        help="Give up after this many failed reconnects (default: retry forever)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )

    args = parser.parse_args(argv)

    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    return StreamerConfig(
        url=args.url,
        token=args.token,
        rate=args.rate,
        tag=args.tag,
        size=args.size,
        reconnect_delay=args.reconnect_delay,
        max_reconnect_attempts=args.max_reconnect_attempts,
    )


def main() -> None:
    """Main entry point."""
    try:
        config = parse_args()
        config.validate()
    except ValueError as e:
        logger.error(str(e))
        sys.exit(1)

    try:
        asyncio.run(main_async(config))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(0)


if __name__ == "__main__":
    main()
