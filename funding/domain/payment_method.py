"""
Payment method value objects and the legacy type mapping.
"""
from __future__ import annotations

import logging
from datetime import datetime
from enum import Enum
from uuid import UUID

logger = logging.getLogger(__name__)


class PaymentMethodService(str, Enum):
    STRIPE = "stripe"
    PAYPAL = "paypal"
    OPENCOLLECTIVE = "opencollective"
    BRAINTREE = "braintree"


class PaymentMethodType(str, Enum):
    CREDITCARD = "creditcard"
    PAYMENT = "payment"
    MANUAL = "manual"
    COLLECTIVE = "collective"
    HOST = "host"
    GIFT_CARD = "giftcard"
    PREPAID = "prepaid"
    PAYPAL = "paypal"


class PaymentMethodLegacyType(str, Enum):
    """Flat payment method names still accepted by older API clients."""
    CREDIT_CARD = "CREDIT_CARD"
    GIFT_CARD = "GIFT_CARD"
    PREPAID_BUDGET = "PREPAID_BUDGET"
    ACCOUNT_BALANCE = "ACCOUNT_BALANCE"
    PAYPAL = "PAYPAL"
    BRAINTREE_PAYPAL = "BRAINTREE_PAYPAL"
    BANK_TRANSFER = "BANK_TRANSFER"
    ADDED_FUNDS = "ADDED_FUNDS"


_LEGACY_TYPES = {
    ("stripe", "creditcard"): PaymentMethodLegacyType.CREDIT_CARD,
    ("opencollective", "giftcard"): PaymentMethodLegacyType.GIFT_CARD,
    ("opencollective", "host"): PaymentMethodLegacyType.ADDED_FUNDS,
    ("opencollective", "collective"): PaymentMethodLegacyType.ACCOUNT_BALANCE,
    ("opencollective", "prepaid"): PaymentMethodLegacyType.PREPAID_BUDGET,
    ("braintree", "paypal"): PaymentMethodLegacyType.BRAINTREE_PAYPAL,
    ("paypal", "payment"): PaymentMethodLegacyType.PAYPAL,
}

# BANK_TRANSFER only maps one way: manual payment methods are reported without a legacy type
_SERVICE_TYPES = {legacy: pair for pair, legacy in _LEGACY_TYPES.items()}
_SERVICE_TYPES[PaymentMethodLegacyType.BANK_TRANSFER] = ("opencollective", "manual")


class PaymentMethod:
    """Payment method used to pay an order."""

    def __init__(
        self,
        id: UUID | None = None,
        service: str | None = None,
        type: str | None = None,
        name: str | None = None,
        token: str | None = None,
        customer_id: str | None = None,
        collective_id: UUID | None = None,
        source_payment_method_id: UUID | None = None,
        data: dict | None = None,
        saved: bool = False,
        confirmed_at: datetime | None = None,
        expiry_date: datetime | None = None,
        paid: bool = False,
    ):
        self.id = id
        self.service = service
        self.type = type
        self.name = name
        self.token = token
        self.customer_id = customer_id
        self.collective_id = collective_id
        self.source_payment_method_id = source_payment_method_id
        self.data = data or {}
        self.saved = saved
        self.confirmed_at = confirmed_at
        self.expiry_date = expiry_date
        # Set in memory when an admin marks a manual order as paid, never persisted
        self.paid = paid

    @classmethod
    def manual_paid(cls) -> "PaymentMethod":
        return cls(service=PaymentMethodService.OPENCOLLECTIVE.value, type=PaymentMethodType.MANUAL.value, paid=True)

    @property
    def fqn(self) -> str:
        return f"{self.service}.{self.type or 'default'}"

    def confirm(self, confirmed_at: datetime) -> None:
        self.confirmed_at = confirmed_at


def is_provider(fqn: str, payment_method) -> bool:
    """
    Check whether a payment method has the given fully qualified name.

    Names are ``service.type``, with ``default`` standing in for a missing type:
    ``is_provider("stripe.creditcard", pm)`` is true for a stripe credit card.
    """
    return fqn == f"{payment_method.service}.{payment_method.type or 'default'}"


def get_legacy_payment_method_type(service: str | None, type: str | None) -> PaymentMethodLegacyType | None:
    legacy = _LEGACY_TYPES.get((service, type))
    if legacy is None:
        logger.warning(
            "unknown_payment_method_type",
            extra={"service": service, "payment_method_type": type},
        )
    return legacy


def get_service_type_from_legacy_payment_method_type(legacy_type) -> dict | None:
    try:
        service, type = _SERVICE_TYPES[PaymentMethodLegacyType(legacy_type)]
    except (KeyError, ValueError):
        return None
    return {"service": service, "type": type}
