"""
Fault taxonomy for the live session engine.

- AcquisitionError: microphone or location denied/unavailable. Session never opens.
- TransportError: the streaming connection failed or closed. Full teardown, no retry.
- ToolHandlerError: a capability handler failed. Becomes an error-valued tool result.
- DecodeError: an inbound audio segment is malformed. The segment is skipped.

Only acquisition and transport faults reach the user, as a short status string.
"""
from typing import Optional


class LiveSessionError(Exception):
    """Base class for engine faults."""


class AcquisitionError(LiveSessionError):
    """A capture device or the location could not be acquired."""

    def __init__(self, resource: str, detail: str = ""):
        self.resource = resource
        self.detail = detail
        super().__init__(f"{resource} unavailable: {detail}" if detail else f"{resource} unavailable")


class TransportError(LiveSessionError):
    """The session connection failed."""


class ToolHandlerError(LiveSessionError):
    """A tool handler rejected its arguments or failed."""


class DecodeError(LiveSessionError):
    """An inbound audio payload could not be decoded."""


class FaultCategory:
    """Stable fault categories used in logs and events."""

    MICROPHONE_UNAVAILABLE = "acquisition.microphone"
    LOCATION_UNAVAILABLE = "acquisition.location"
    OUTPUT_UNAVAILABLE = "acquisition.audio_output"

    AUTH_FAILED = "transport.auth_failed"
    NETWORK_ERROR = "transport.network_error"
    RATE_LIMITED = "transport.rate_limited"
    CLOSED = "transport.closed"
    UNKNOWN_ERROR = "transport.unknown_error"


class FaultHandler:
    """Maps engine exceptions to categories and user-facing status text."""

    @staticmethod
    def classify_acquisition_error(error: AcquisitionError) -> str:
        if error.resource == "location":
            return FaultCategory.LOCATION_UNAVAILABLE
        if error.resource == "audio_output":
            return FaultCategory.OUTPUT_UNAVAILABLE
        return FaultCategory.MICROPHONE_UNAVAILABLE

    @staticmethod
    def classify_transport_error(error: Optional[BaseException]) -> str:
        """
        Classify a connection failure from its message.
        A missing error means the remote side closed the channel.
        """
        if error is None:
            return FaultCategory.CLOSED

        error_str = str(error).lower()

        if "auth" in error_str or "api key" in error_str or "401" in error_str or "403" in error_str:
            return FaultCategory.AUTH_FAILED

        if "rate limit" in error_str or "429" in error_str or "quota" in error_str or "resource_exhausted" in error_str:
            return FaultCategory.RATE_LIMITED

        if (
            "network" in error_str
            or "timeout" in error_str
            or "connection" in error_str
            or isinstance(error, (ConnectionError, TimeoutError))
        ):
            return FaultCategory.NETWORK_ERROR

        return FaultCategory.UNKNOWN_ERROR

    @staticmethod
    def redact(detail: str) -> str:
        """Drop details that may carry credentials."""
        lowered = detail.lower()
        if "secret" in lowered or "password" in lowered or "key" in lowered or "token" in lowered:
            return "[redacted: potential secret]"
        return detail

    @staticmethod
    def get_user_message(category: str) -> str:
        """Short status shown to the user for a fault category."""
        if category.startswith("acquisition."):
            return "System fault."
        return "Connection fault."
