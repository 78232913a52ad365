"""Error taxonomy for the relay.

Per-viewer and per-session failures are contained where they happen; only
``StartupFailure`` is allowed to end the process.
"""


class RelayError(Exception):
    """Base class for relay errors."""


class AdmissionRejected(RelayError):
    """Rate limit or concurrency cap hit; the caller answers 429."""

    def __init__(self, reason: str) -> None:
        super().__init__(f"Too many requests ({reason})")
        self.reason = reason


class ChannelFailure(RelayError):
    """The stream to the transcription service failed mid-session."""


class DeliveryFailure(RelayError):
    """A single viewer could not accept a payload."""


class StartupFailure(RelayError):
    """Required startup resource missing (TLS material, listening port)."""
