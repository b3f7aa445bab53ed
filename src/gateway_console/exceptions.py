"""Domain exception hierarchy for the gateway console."""

from __future__ import annotations


class GatewayConsoleError(RuntimeError):
    """Base class for all domain-level console errors."""


class SendValidationError(GatewayConsoleError):
    """Raised when a turn is rejected before any network call is made."""


class DispatchBusyError(GatewayConsoleError):
    """Raised when a send is attempted while another send is in flight."""


class GatewayConnectionError(GatewayConsoleError):
    """Raised when the gateway host cannot be reached."""


class GatewayHTTPError(GatewayConnectionError):
    """Raised when the gateway answers with a non-success status code."""

    def __init__(self, message: str, status_code: int = 0) -> None:
        super().__init__(message)
        self.status_code = status_code


class ProtocolError(GatewayConsoleError):
    """Raised for a malformed event-stream frame."""


class UpstreamModelError(GatewayConsoleError):
    """Raised when a model reports an explicit error event mid-stream."""


class AggregateSendError(GatewayConsoleError):
    """Raised when every channel of a dispatch failed."""

    def __init__(self, reasons: dict[str, str]) -> None:
        self.reasons = dict(reasons)
        detail = "; ".join(f"{model}: {reason}" for model, reason in reasons.items())
        super().__init__(f"All models failed to respond ({detail})")


class ConfigValidationError(GatewayConsoleError):
    """Raised when configuration cannot be validated safely."""
