"""Receiver error types.

Negotiation errors are surfaced to the sender as ``playbackerror`` messages
and leave the current stream playing.  Malformed commands are answered with
a plain ``error`` message.  A missing subtitle track is only logged.
"""


class ReceiverError(Exception):
    """Base class for everything the receiver raises on purpose."""


class PlaybackNegotiationError(ReceiverError):
    """A renegotiation was aborted; ``code`` is what the sender gets to see."""

    message_type = "playbackerror"

    def __init__(self, code: str, detail: str | None = None):
        super().__init__(detail or code)
        self.code = code


class ProtocolValidationError(PlaybackNegotiationError):
    """Playback info came back carrying an ErrorCode."""


class NoCompatibleSourceError(PlaybackNegotiationError):
    def __init__(self, detail: str | None = None):
        super().__init__("NoCompatibleSource", detail)


class NoCompatibleStreamError(PlaybackNegotiationError):
    def __init__(self, detail: str | None = None):
        super().__init__("NoCompatibleStream", detail)


class MalformedCommandError(ReceiverError):
    message_type = "error"


class TrackNotFoundError(ReceiverError):
    def __init__(self, index: int):
        super().__init__(f"subtitle stream {index} not found")
        self.index = index


class InvalidTransitionError(ReceiverError):
    pass


class CatalogError(ReceiverError):
    """The catalog server could not be reached or answered with an HTTP error."""

    message_type = "connectionerror"

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status
