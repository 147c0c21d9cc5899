"""
Base class and errors shared by the payment providers.
"""
from __future__ import annotations

from uuid import UUID

from funding.domain.plans import get_host_fee_share_percent, get_host_plan
from funding.domain.transaction import Transaction
from funding.infra.repositories import CollectiveRepository
from funding.services.ledger import LedgerService


class PaymentProviderError(Exception):
    """Error raised while charging or refunding through a provider."""

    def __init__(self, message: str, code: str = "PAYMENT_ERROR"):
        self.message = message
        self.code = code
        super().__init__(self.message)


class PaymentIntentRequiresAction(PaymentProviderError):
    """The contributor must confirm the payment (3D Secure) before it can go through."""

    def __init__(self, message: str, stripe_account: str | None = None, stripe_response: dict | None = None):
        super().__init__(message, code="REQUIRES_ACTION")
        self.stripe_account = stripe_account
        self.stripe_response = stripe_response or {}


class PaymentProvider:
    """
    A way of paying an order.

    ``features["wait_to_charge"]`` providers only charge once the order was
    marked as paid by a host admin.
    """

    features = {"recurring": False, "wait_to_charge": False}

    def __init__(
        self,
        ledger: LedgerService | None = None,
        collective_repo: CollectiveRepository | None = None,
    ):
        self.ledger = ledger or LedgerService()
        self.collective_repo = collective_repo or self.ledger.collective_repo

    def process_order(self, order) -> Transaction | None:
        raise NotImplementedError

    def refund_transaction(self, transaction: Transaction, user_id: UUID | None = None) -> Transaction:
        raise PaymentProviderError("This payment method provider does not support refunds")

    def get_host(self, order):
        host = self.collective_repo.get_host(order.collective)
        if host is None:
            raise PaymentProviderError(f"Cannot find the host of {order.collective.slug}")
        return host

    def get_shared_revenue(self, host, service: str | None = None):
        """Host fee share percent of the host plan, and whether revenue is shared at all."""
        host_fee_share_percent = get_host_fee_share_percent(get_host_plan(host), service)
        return host_fee_share_percent, bool(host_fee_share_percent)

    def build_payload(self, order, **values) -> Transaction:
        """Ledger payload of a charge received for ``order``."""
        return Transaction(
            created_by_user_id=order.created_by_user_id,
            from_collective_id=order.from_collective_id,
            collective_id=order.collective_id,
            payment_method_id=order.payment_method_id,
            order_id=order.id,
            amount=order.total_amount,
            currency=order.currency,
            tax_amount=order.tax_amount,
            description=order.description,
            **values,
        )
