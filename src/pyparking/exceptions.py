"""Custom exception hierarchy for pyparking."""

from __future__ import annotations


class ParkingError(Exception):
    """Base exception for all pyparking errors."""


class ParkingConfigError(ParkingError):
    """Invalid or missing configuration."""


class ParkingTransportError(ParkingError):
    """Backbone or downstream connection failure."""

    def __init__(
        self,
        message: str,
        *,
        host: str = "",
        port: int | None = None,
    ) -> None:
        self.host = host
        self.port = port
        super().__init__(message)


class EnvelopeFormatError(ParkingError):
    """A bridge envelope could not be parsed.

    Raised by :func:`pyparking.ingestion.envelope.parse_envelope`.  The
    consumer catches it, logs the frame and drops it; the next well-formed
    envelope supersedes whatever was lost.
    """

    def __init__(self, message: str, *, raw: str = "") -> None:
        self.raw = raw
        super().__init__(message)
