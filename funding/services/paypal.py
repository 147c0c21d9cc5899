"""
PayPal REST API client: payouts, webhook verification, webhook management and
catalog products.

Every host connects its own PayPal REST application; calls are made with the
client id / secret stored on the host's connected account.
"""
from __future__ import annotations

import json
import logging
from decimal import Decimal

import requests
from django.conf import settings

from funding.domain.fees import round_half_up
from funding.infra.models import PaypalProductORM
from funding.infra.repositories import ConnectedAccountRepository
from funding.infra.retry import retry_with_backoff
from funding.payment_providers.base import PaymentProviderError

logger = logging.getLogger(__name__)

# Event types handled by the PayPal webhook endpoint
WATCHED_EVENT_TYPES = (
    # Payouts
    "PAYMENT.PAYOUTSBATCH.DENIED",
    "PAYMENT.PAYOUTSBATCH.PROCESSING",
    "PAYMENT.PAYOUTSBATCH.SUCCESS",
    "PAYMENT.PAYOUTS-ITEM.BLOCKED",
    "PAYMENT.PAYOUTS-ITEM.CANCELED",
    "PAYMENT.PAYOUTS-ITEM.DENIED",
    "PAYMENT.PAYOUTS-ITEM.FAILED",
    "PAYMENT.PAYOUTS-ITEM.HELD",
    "PAYMENT.PAYOUTS-ITEM.REFUNDED",
    "PAYMENT.PAYOUTS-ITEM.RETURNED",
    "PAYMENT.PAYOUTS-ITEM.SUCCEEDED",
    "PAYMENT.PAYOUTS-ITEM.UNCLAIMED",
    # Subscriptions
    "BILLING.SUBSCRIPTION.CANCELLED",
    "BILLING.SUBSCRIPTION.SUSPENDED",
    "BILLING.SUBSCRIPTION.ACTIVATED",
    "PAYMENT.SALE.COMPLETED",
)

SIGNATURE_HEADERS = {
    "auth_algo": "PAYPAL-AUTH-ALGO",
    "cert_url": "PAYPAL-CERT-URL",
    "transmission_id": "PAYPAL-TRANSMISSION-ID",
    "transmission_sig": "PAYPAL-TRANSMISSION-SIG",
    "transmission_time": "PAYPAL-TRANSMISSION-TIME",
}

_connected_account_repo = ConnectedAccountRepository()


class PaypalError(PaymentProviderError):
    def __init__(self, message: str):
        super().__init__(message, code="PAYPAL_ERROR")


def get_api_url() -> str:
    if settings.APP_ENV == "production":
        return settings.PAYPAL_LIVE_API_URL
    return settings.PAYPAL_SANDBOX_API_URL


def get_webhook_url(host) -> str:
    # PayPal does not accept localhost URLs
    if settings.APP_ENV == "development":
        return settings.PAYPAL_DEV_WEBHOOK_URL
    return f"{settings.API_URL}/webhooks/paypal/{host.id}"


def parse_error(body: str) -> str:
    """Message of a PayPal error body, or the body itself when it is not PayPal JSON."""
    try:
        return json.loads(body)["message"]
    except (ValueError, KeyError, TypeError):
        return body


def paypal_amount_to_cents(amount: str) -> int:
    """
    >>> paypal_amount_to_cents("12.50")
    1250
    """
    return round_half_up(Decimal(amount) * 100)


def _check(response: requests.Response) -> dict:
    if not response.ok:
        raise PaypalError(parse_error(response.text))
    if response.status_code == 204 or not response.content:
        return {}
    return response.json()


@retry_with_backoff(max_retries=2, initial_delay=0.5, exceptions=(requests.ConnectionError, requests.Timeout))
def retrieve_access_token(client_id: str, client_secret: str) -> str:
    """OAuth client credentials token of a PayPal REST application."""
    response = requests.post(
        f"{get_api_url()}/v1/oauth2/token",
        auth=(client_id, client_secret),
        data={"grant_type": "client_credentials"},
        headers={"Accept": "application/json"},
        timeout=settings.PAYPAL_REQUEST_TIMEOUT,
    )
    return _check(response)["access_token"]


@retry_with_backoff(max_retries=2, initial_delay=0.5, exceptions=(requests.ConnectionError, requests.Timeout))
def execute_request(connected_account, method: str, path: str, body=None, params: dict | None = None) -> dict:
    """Authenticated call to ``{api}/{path}`` with the credentials of ``connected_account``."""
    token = retrieve_access_token(connected_account.client_id, connected_account.token)
    response = requests.request(
        method,
        f"{get_api_url()}/{path}",
        json=body,
        params=params,
        headers={"Authorization": f"Bearer {token}", "Content-Type": "application/json"},
        timeout=settings.PAYPAL_REQUEST_TIMEOUT,
    )
    logger.info(
        "paypal_request",
        extra={"event_type": f"{method} {path}", "status": response.status_code},
    )
    return _check(response)


def get_host_paypal_account(host):
    """Most recent PayPal account of ``host`` holding API credentials, or None."""
    account = _connected_account_repo.get_latest(host.id, "paypal", with_credentials=True)
    if account is None or not account.client_id or not account.token:
        return None
    return account


def paypal_request(path: str, body, host, method: str = "POST") -> dict:
    return _host_request(f"v1/{path}", body, host, method)


def paypal_request_v2(path: str, host, method: str = "POST", body=None) -> dict:
    return _host_request(f"v2/{path}", body, host, method)


def _host_request(path: str, body, host, method: str) -> dict:
    connected_account = get_host_paypal_account(host)
    if connected_account is None:
        raise PaypalError(f"Host {host.slug} is not connected to PayPal")
    return execute_request(connected_account, method, path, body=body)


def execute_payouts(connected_account, request_body: dict) -> dict:
    return execute_request(connected_account, "POST", "v1/payments/payouts", body=request_body)


def get_batch_info(connected_account, batch_id: str) -> dict:
    return execute_request(
        connected_account,
        "GET",
        f"v1/payments/payouts/{batch_id}",
        params={"page": 1, "page_size": 100, "total_required": "true"},
    )


def validate_connected_account(client_id: str, token: str) -> None:
    """Raise PaypalError when the credentials are refused."""
    retrieve_access_token(client_id, token)


def validate_webhook_event(connected_account, headers, event: dict) -> None:
    """Check the signature of a webhook call through the PayPal API."""
    body = {key: headers.get(header) for key, header in SIGNATURE_HEADERS.items()}
    body["webhook_id"] = (connected_account.settings or {}).get("webhookId")
    body["webhook_event"] = event

    result = execute_request(connected_account, "POST", "v1/notifications/verify-webhook-signature", body=body)
    if result.get("verification_status") != "SUCCESS":
        logger.warning(
            "paypal_webhook_rejected",
            extra={"webhook_id": body["webhook_id"], "status": result.get("verification_status")},
        )
        raise PaypalError("Invalid webhook request")


# Webhooks management

def list_paypal_webhooks(host) -> list[dict]:
    return paypal_request("notifications/webhooks", None, host, "GET").get("webhooks", [])


def create_paypal_webhook(host, webhook_data: dict) -> dict:
    return paypal_request("notifications/webhooks", webhook_data, host, "POST")


def update_paypal_webhook(host, webhook_id: str, patch_request: list) -> dict:
    return paypal_request(f"notifications/webhooks/{webhook_id}", patch_request, host, "PATCH")


def get_paypal_webhook(host, webhook_id: str) -> dict:
    return paypal_request(f"notifications/webhooks/{webhook_id}", None, host, "GET")


def delete_paypal_webhook(host, webhook_id: str) -> None:
    paypal_request(f"notifications/webhooks/{webhook_id}", None, host, "DELETE")


def is_platform_webhook(webhook: dict, host) -> bool:
    return webhook.get("url") == get_webhook_url(host)


def is_compatible_webhook(webhook: dict, host) -> bool:
    """Whether a webhook points to us and listens to every watched event."""
    if not is_platform_webhook(webhook, host):
        return False
    webhook_events = {event["name"] for event in webhook.get("event_types", [])}
    return set(WATCHED_EVENT_TYPES) <= webhook_events


def host_paypal_webhook_is_ready(host) -> bool:
    connected_account = get_host_paypal_account(host)
    webhook_id = (connected_account.settings or {}).get("webhookId") if connected_account else None
    if not webhook_id:
        return False
    webhook = get_paypal_webhook(host, webhook_id)
    return is_compatible_webhook(webhook, host) if webhook else False


def _watched_event_types() -> list[dict]:
    return [{"name": name} for name in WATCHED_EVENT_TYPES]


def setup_paypal_webhook_for_host(host) -> None:
    """Create or fix the webhook of a host and link it to its PayPal account."""
    if host_paypal_webhook_is_ready(host):
        logger.debug("paypal_webhook_ready", extra={"host_id": str(host.id)})
        return

    connected_account = get_host_paypal_account(host)
    existing_webhooks = list_paypal_webhooks(host)
    existing = next((w for w in existing_webhooks if is_platform_webhook(w, host)), None)

    if existing and is_compatible_webhook(existing, host):
        logger.info("paypal_webhook_linked", extra={"host_id": str(host.id), "webhook_id": existing["id"]})
        webhook = existing
    elif existing:
        logger.info("paypal_webhook_updated", extra={"host_id": str(host.id), "webhook_id": existing["id"]})
        patch_request = [{"op": "replace", "path": "/event_types", "value": _watched_event_types()}]
        webhook = update_paypal_webhook(host, existing["id"], patch_request)
    else:
        logger.info("paypal_webhook_created", extra={"host_id": str(host.id)})
        webhook = create_paypal_webhook(host, {"url": get_webhook_url(host), "event_types": _watched_event_types()})

    if (connected_account.settings or {}).get("webhookId") != webhook["id"]:
        _connected_account_repo.update_settings(connected_account, webhookId=webhook["id"])


def remove_unused_paypal_webhooks(host) -> int:
    """Delete our webhooks that are not linked to the host account. Returns how many were deleted."""
    connected_account = get_host_paypal_account(host)
    current_webhook_id = (connected_account.settings or {}).get("webhookId") if connected_account else None
    deleted_count = 0

    for webhook in list_paypal_webhooks(host):
        if is_platform_webhook(webhook, host) and webhook["id"] != current_webhook_id:
            delete_paypal_webhook(host, webhook["id"])
            deleted_count += 1

    logger.info("paypal_webhooks_removed", extra={"host_id": str(host.id), "count": deleted_count})
    return deleted_count


# Catalog products

def get_or_create_product(host, collective, tier=None) -> PaypalProductORM:
    """PayPal catalog product billed for contributions to ``collective`` (and ``tier``)."""
    tier_id = getattr(tier, "id", None)
    product = PaypalProductORM.objects.filter(
        collective_id=collective.id,
        tier_id=tier_id,
        deleted_at__isnull=True,
    ).first()
    if product is not None:
        return product

    body = {
        "name": f"Financial contribution to {collective.name}",
        "description": f"Financial contribution to {collective.name}",
        "type": "DIGITAL",
        "category": "NONPROFIT",
        "home_url": f"{settings.WEBSITE_URL}/{collective.slug}",
    }
    paypal_product = paypal_request("catalogs/products", body, host, "POST")
    logger.info("paypal_product_created", extra={"collective_id": str(collective.id), "host_id": str(host.id)})
    return PaypalProductORM.objects.create(id=paypal_product["id"], collective_id=collective.id, tier_id=tier_id)
