"""Exceptions raised inside the accident detection and alerting core."""

from typing import Any, Dict, Optional


class AccidentMonitorError(Exception):
    """Base exception for all accident monitor errors."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.cause = cause


class LocationError(AccidentMonitorError):
    """Raised when no position could be resolved for an accident."""
    kind = "location"


class LocationUnavailable(LocationError):
    """Both the last-known lookup and the active request returned no position."""
    kind = "unavailable"


class LocationProviderFailure(LocationError):
    """The location provider call itself failed."""
    kind = "provider_failure"


class SendError(AccidentMonitorError):
    """Raised by a messenger when a text could not be handed off."""

    def __init__(self, destination: str, message: str = "", cause: Optional[Exception] = None) -> None:
        super().__init__(message or f"Failed to send to {destination}", {"destination": destination}, cause)
        self.destination = destination


class PermissionDenied(AccidentMonitorError):
    """Raised when a capability is used without a granted permission."""

    def __init__(self, capability: str, label: Optional[str] = None) -> None:
        super().__init__(f"{label or capability} permission is not granted", {"capability": capability})
        self.capability = capability
