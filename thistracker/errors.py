"""Exception hierarchy shared by the ThisTracker data layer.

All errors raised by the transport, provisioning, synchronisation and service
layers derive from :class:`TrackerError` so that the service façade can turn
any of them into a failed :class:`~thistracker.models.ServiceResult` without
inspecting the concrete type.
"""

from __future__ import annotations

from typing import Optional


class TrackerError(Exception):
    """Base error raised when the tracker cannot complete an action."""


class AuthRequiredError(TrackerError):
    """Raised when no valid credential is available for the principal."""


class NotFoundError(TrackerError):
    """Raised when an entity or a referenced parent entity does not exist."""


class ValidationError(TrackerError):
    """Raised when input data is missing a required field or is malformed."""


class TransportError(TrackerError):
    """Raised when a request against the spreadsheet backend fails."""

    def __init__(self, message: str, *, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status

    def __str__(self) -> str:
        message = super().__str__()
        if self.status:
            return f"{message} (HTTP {self.status})"
        return message


class TabNotFoundError(TransportError):
    """Raised when a range cannot be addressed because its tab does not exist."""


class IntegrityError(TrackerError):
    """Raised when a required tab is missing and cannot be recreated."""


__all__ = [
    "AuthRequiredError",
    "IntegrityError",
    "NotFoundError",
    "TabNotFoundError",
    "TrackerError",
    "TransportError",
    "ValidationError",
]
