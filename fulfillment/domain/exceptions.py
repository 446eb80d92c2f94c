"""
Domain exceptions with API error codes.
"""
from __future__ import annotations

from enum import Enum


class FulfillmentError(Exception):
    """Base error for the fulfillment core."""
    code = "INTERNAL_ERROR"

    def __init__(self, message: str, code: str | None = None):
        self.message = message
        if code:
            self.code = code
        super().__init__(self.message)


class ValidationError(FulfillmentError):
    """Bad input rejected before any state change."""
    code = "VALIDATION_ERROR"


class InvalidTransition(ValidationError):
    """Item status move not allowed by the state machine."""
    code = "INVALID_STATE"


class NotFound(FulfillmentError):
    code = "NOT_FOUND"


class Forbidden(FulfillmentError):
    """Actor is not allowed to touch the resource."""
    code = "FORBIDDEN"


class PayoutConfigMissing(FulfillmentError):
    """Vendor has no usable mobile money destination."""
    code = "PAYOUT_CONFIG_MISSING"


class GatewayErrorKind(str, Enum):
    """Disbursement failure taxonomy."""
    INVALID_DESTINATION = "invalid_destination"
    UNSUPPORTED_CARRIER = "unsupported_carrier"
    INVALID_AMOUNT = "invalid_amount"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    UNKNOWN = "unknown"


class GatewayError(FulfillmentError):
    """Disbursement rejected by the payout gateway."""
    code = "GATEWAY_ERROR"

    def __init__(
        self,
        message: str,
        kind: GatewayErrorKind = GatewayErrorKind.UNKNOWN,
        gateway_code: str | None = None,
    ):
        self.kind = kind
        self.gateway_code = gateway_code
        super().__init__(message)

    def __str__(self) -> str:
        if self.gateway_code:
            return f"[{self.kind.value}/{self.gateway_code}] {self.message}"
        return f"[{self.kind.value}] {self.message}"


class TransientGatewayError(GatewayError):
    """Timeout, connection failure or 5xx; safe to retry."""
