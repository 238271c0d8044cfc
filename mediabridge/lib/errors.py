"""
Exception types for the bridge.

Only connectivity errors change the broker ConnectionState; the rest are
contained by the component that raises them (logged, dropped, or turned into
a failed CommandResponse).
"""


class BridgeError(Exception):
    """Base class for all bridge errors."""


class ConfigurationInvalid(BridgeError):
    """Broker host or port missing."""


class TransportFailure(BridgeError):
    """Handshake rejected or session dropped."""


class HelperUnavailable(BridgeError):
    """The media-control helper binary was not found."""

    def __init__(self, searched=()):
        self.searched = list(searched)
        where = ", ".join(self.searched) or "no paths"
        super().__init__(
            f"media-control not found (searched: {where}). Install with: "
            "brew tap ungive/media-control && brew install media-control"
        )


class StreamFailure(BridgeError):
    """The helper subprocess crashed or could not be started."""


class ExecutionFailed(StreamFailure):
    """A process exited with a non-zero code."""

    def __init__(self, exit_code: int, stderr_text: str = ""):
        self.exit_code = exit_code
        self.stderr_text = stderr_text
        super().__init__(f"Process exited with code {exit_code}: {stderr_text.strip()}")


class MalformedPayload(BridgeError):
    """A helper line or command payload could not be decoded."""


class ExecutorUnavailable(BridgeError):
    """A media command was issued but the helper binary is missing."""

    def __init__(self, message: str = "media-control not found"):
        super().__init__(message)


class VolumeUnavailable(BridgeError):
    """The system volume endpoint could not be read or written."""
