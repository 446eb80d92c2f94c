"""
Error handling for API responses.
"""
import logging

from django.http import JsonResponse

from fulfillment.domain.exceptions import FulfillmentError

logger = logging.getLogger(__name__)


class ErrorHandler:
    """Error handler for API responses."""

    ERROR_CODES = {
        "VALIDATION_ERROR": 400,
        "PAYOUT_CONFIG_MISSING": 400,
        "FORBIDDEN": 403,
        "NOT_FOUND": 404,
        "INVALID_STATE": 409,
        "DUPLICATE_REQUEST": 409,
        "GATEWAY_ERROR": 502,
        "INTERNAL_ERROR": 500,
    }

    @classmethod
    def status_for(cls, code: str) -> int:
        return cls.ERROR_CODES.get(code, 400)

    @classmethod
    def error_response(cls, code: str, message: str) -> JsonResponse:
        return JsonResponse(
            {
                "error": {
                    "code": code,
                    "message": message,
                }
            },
            status=cls.status_for(code),
        )

    @classmethod
    def handle_error(cls, error: Exception) -> JsonResponse:
        """Handle error and return JSON response."""
        if isinstance(error, FulfillmentError):
            return cls.error_response(error.code, error.message)

        # Log unexpected errors
        logger.error(
            "unexpected_error",
            extra={
                "operation": type(error).__name__,
                "error": str(error),
            },
            exc_info=True,
        )
        return cls.error_response("INTERNAL_ERROR", "An internal error occurred")
