"""
Hand Stream - Resilient hand-tracking telemetry streamer.

This package samples hand-tracking feature vectors from a snapshot source
once per tick and streams them as JSON frames to a robot-control server
over a single outbound WebSocket, reconnecting after failures.

NO XR SDK DEPENDENCIES.
"""

__version__ = "1.0.0"
