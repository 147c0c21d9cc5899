"""
Error handling for the webhook and email endpoints.

Payment provider errors keep their own code in the response body. Anything
unexpected is logged and answered with INTERNAL_ERROR.
"""
import logging

from django.http import JsonResponse

from funding.payment_providers.base import PaymentIntentRequiresAction, PaymentProviderError

logger = logging.getLogger(__name__)


class ValidationError(Exception):
    """Error returned to the caller with its code."""
    def __init__(self, message: str, code: str = "VALIDATION_ERROR"):
        self.message = message
        self.code = code
        super().__init__(self.message)


class ErrorHandler:
    """Error handler for API responses."""

    ERROR_CODES = {
        "VALIDATION_ERROR": 400,
        "UNAUTHORIZED": 401,
        "PAYMENT_ERROR": 402,
        "REQUIRES_ACTION": 402,
        "NOT_FOUND": 404,
        "DUPLICATE_REQUEST": 409,
        "INTERNAL_ERROR": 500,
        "PAYPAL_ERROR": 502,
    }

    @classmethod
    def error_response(cls, code: str, message: str, **details) -> JsonResponse:
        return JsonResponse(
            {"error": {"code": code, "message": message, **details}},
            status=cls.ERROR_CODES.get(code, 400),
        )

    @classmethod
    def handle_error(cls, error: Exception) -> JsonResponse:
        """Map an error raised by an endpoint to its JSON response."""
        if isinstance(error, ValidationError):
            return cls.error_response(error.code, error.message)

        if isinstance(error, PaymentIntentRequiresAction):
            # The client confirms the intent with the stripe account and response
            logger.info("payment_requires_action", extra={"status": error.code})
            return cls.error_response(
                error.code,
                error.message,
                stripeAccount=error.stripe_account,
                stripeResponse=error.stripe_response,
            )

        if isinstance(error, PaymentProviderError):
            logger.warning("payment_provider_error", extra={"status": error.code, "error": error.message})
            return cls.error_response(error.code, error.message)

        logger.error(
            "unexpected_error",
            extra={"error": f"{type(error).__name__}: {error}"},
            exc_info=True,
        )
        return cls.error_response("INTERNAL_ERROR", "An internal error occurred")
