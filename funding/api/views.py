"""
Webhook and email endpoints.

Webhook deliveries are deduplicated on the event id through IdempotencyKey:
a delivery already handled gets the stored response back.
"""
import hashlib
import json
import logging
from uuid import uuid4

import stripe
from django.conf import settings
from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods

from funding.api.middleware import ErrorHandler, ValidationError
from funding.infra.models import IdempotencyKey
from funding.infra.pii_masker import mask_email, mask_pii_in_dict
from funding.infra.repositories import CollectiveRepository
from funding.payment_providers.stripe_creditcard import StripeCreditCardProvider
from funding.services import email as email_service
from funding.services import paypal

logger = logging.getLogger(__name__)


def _request_hash(body: bytes) -> str:
    return hashlib.sha256(body).hexdigest()


def _cached_response(event_id: str, operation: str, body: bytes, request_id: str):
    """Stored response of a delivery already handled, or None."""
    existing = IdempotencyKey.objects.filter(key=event_id, operation=operation).first()
    if existing is None:
        return None
    if existing.request_hash != _request_hash(body):
        logger.warning(
            "idempotency_key_conflict",
            extra={"request_id": request_id, "event_id": event_id},
        )
        raise ValidationError("Event id already used with a different payload", "DUPLICATE_REQUEST")

    logger.info(
        "idempotent_request_cached",
        extra={"request_id": request_id, "event_id": event_id},
    )
    return JsonResponse(existing.response_payload)


def _store_response(event_id: str, operation: str, body: bytes, payload: dict) -> JsonResponse:
    IdempotencyKey.objects.create(
        key=event_id,
        operation=operation,
        request_hash=_request_hash(body),
        response_payload=payload,
    )
    return JsonResponse(payload)


@csrf_exempt
@require_http_methods(["POST"])
def stripe_webhook_view(request):
    """Stripe events, checked against the webhook signing secret."""
    request_id = request.headers.get("X-Request-ID") or str(uuid4())
    logger.info("webhook_request", extra=mask_pii_in_dict({"request_id": request_id, "service": "stripe"}))
    try:
        try:
            event = stripe.Webhook.construct_event(
                request.body,
                request.headers.get("Stripe-Signature", ""),
                settings.STRIPE_WEBHOOK_SIGNING_SECRET,
            )
        except (ValueError, stripe.SignatureVerificationError) as e:
            logger.warning("stripe_webhook_rejected", extra={"request_id": request_id, "error": str(e)})
            raise ValidationError("Invalid webhook signature", "UNAUTHORIZED") from e

        cached = _cached_response(event["id"], "STRIPE_WEBHOOK", request.body, request_id)
        if cached is not None:
            return cached

        StripeCreditCardProvider().webhook(event)
        return _store_response(event["id"], "STRIPE_WEBHOOK", request.body, {"received": True})
    except Exception as e:
        return ErrorHandler.handle_error(e)


@csrf_exempt
@require_http_methods(["POST"])
def paypal_webhook_view(request, host_id):
    """PayPal events of one host, verified through the PayPal API."""
    request_id = request.headers.get("X-Request-ID") or str(uuid4())
    logger.info(
        "webhook_request",
        extra=mask_pii_in_dict({"request_id": request_id, "service": "paypal", "host_id": str(host_id)}),
    )
    try:
        try:
            event = json.loads(request.body)
        except json.JSONDecodeError as e:
            raise ValidationError("Invalid JSON") from e
        event_id = event.get("id") if isinstance(event, dict) else None
        if not event_id:
            raise ValidationError("Missing event id")

        host = CollectiveRepository().get_by_id(host_id)
        if host is None:
            raise ValidationError(f"Host {host_id} not found", "NOT_FOUND")
        connected_account = paypal.get_host_paypal_account(host)
        if connected_account is None:
            raise ValidationError(f"Host {host.slug} is not connected to PayPal", "NOT_FOUND")

        try:
            paypal.validate_webhook_event(connected_account, request.headers, event)
        except paypal.PaypalError as e:
            raise ValidationError(e.message, "UNAUTHORIZED") from e

        cached = _cached_response(event_id, "PAYPAL_WEBHOOK", request.body, request_id)
        if cached is not None:
            return cached

        logger.info(
            "paypal_webhook_received",
            extra={
                "request_id": request_id,
                "host_id": str(host.id),
                "event_id": event_id,
                "event_type": event.get("event_type"),
            },
        )
        return _store_response(event_id, "PAYPAL_WEBHOOK", request.body, {"received": True})
    except Exception as e:
        return ErrorHandler.handle_error(e)


@require_http_methods(["GET"])
def unsubscribe_view(request, email, slug, type, token):
    """Unsubscribe link of the notification emails."""
    try:
        try:
            email_service.unsubscribe(email, slug, type, token)
        except email_service.UnsubscribeError as e:
            logger.info(
                "email_unsubscribe_rejected",
                extra={"recipient": mask_email(email), "error": e.message},
            )
            raise ValidationError(e.message, e.code) from e
        return JsonResponse({"response": "ok"})
    except Exception as e:
        return ErrorHandler.handle_error(e)
