"""Error types raised by the streaming client."""


class StreamError(Exception):
    """Base class for all streaming errors."""


class ConnectError(StreamError):
    """DNS failure, refused connection, timeout or rejected handshake."""


class SendError(StreamError):
    """Not connected, send already in flight, or transport write failure."""


class ReceiveError(StreamError):
    """Transport read failure other than a graceful close."""


class PeerClosed(StreamError):
    """
    The server closed the connection with a close frame.

    Expected terminal condition, deliberately not a ReceiveError.
    """

    def __init__(self, code: int = 1000, reason: str = ""):
        super().__init__(f"closed by peer (code={code}, reason={reason!r})")
        self.code = code
        self.reason = reason


__all__ = ["StreamError", "ConnectError", "SendError", "ReceiveError", "PeerClosed"]
