"""
Payment providers settled on the platform itself: bank transfers marked as
paid by the host, account balances, gift cards and funds added by a host.
"""
from __future__ import annotations

import logging
from uuid import UUID

from django.utils import timezone

from funding.domain.payment_method import is_provider
from funding.domain.transaction import Transaction, TransactionKind
from funding.infra.repositories import PaymentMethodRepository
from funding.payment_providers.base import PaymentProvider, PaymentProviderError
from funding.services import fees

logger = logging.getLogger(__name__)


class ManualProvider(PaymentProvider):
    """
    Bank transfer. The contributor wires the money and a host admin marks the
    order as paid; only then are ledger entries written. No processor fee.
    """

    features = {"recurring": False, "wait_to_charge": True}

    def process_order(self, order) -> Transaction:
        if not is_provider("opencollective.manual", order.payment_method):
            raise PaymentProviderError("Can only use the manual payment method to mark an order as paid")

        host = self.get_host(order)
        host_fee_share_percent, is_shared_revenue = self.get_shared_revenue(host)
        platform_tip = order.platform_tip

        host_fee = fees.get_host_fee(order.total_amount, order, host)
        if is_shared_revenue:
            platform_fee = platform_tip
        else:
            platform_fee = fees.get_platform_fee(order.total_amount, order, host)

        payload = self.build_payload(
            order,
            kind=TransactionKind.CONTRIBUTION,
            host_currency=order.currency,
            host_currency_fx_rate=1,
            amount_in_host_currency=order.total_amount,
            host_fee_in_host_currency=host_fee,
            platform_fee_in_host_currency=platform_fee,
            payment_processor_fee_in_host_currency=0,
            data={
                "isFeesOnTop": order.is_fees_on_top,
                "isSharedRevenue": is_shared_revenue,
                "platformTip": platform_tip,
                "hostFeeSharePercent": host_fee_share_percent,
            },
        )
        logger.info(
            "manual_order_paid",
            extra={"order_id": str(order.id), "host_id": str(host.id), "amount": order.total_amount},
        )
        return self.ledger.create_from_payload(payload)

    def refund_transaction(self, transaction: Transaction, user_id: UUID | None = None) -> Transaction:
        # Nothing was kept by a processor
        refunded_fee = abs(transaction.payment_processor_fee_in_host_currency or 0)
        return self.ledger.create_refund_transaction(transaction, refunded_fee, None, user_id)


class CollectiveProvider(PaymentProvider):
    """Pay with the balance of another account on the platform."""

    features = {"recurring": True, "wait_to_charge": False}

    def process_order(self, order) -> Transaction:
        source_collective_id = order.payment_method.collective_id or order.from_collective_id
        balance = self.ledger.transaction_repo.get_balance(source_collective_id, order.currency)
        if balance < order.total_amount:
            raise PaymentProviderError(
                f"Not enough funds available ({balance} {order.currency} left) "
                f"to execute this order ({order.total_amount} {order.currency})"
            )

        host = self.get_host(order)
        payload = self.build_payload(
            order,
            kind=TransactionKind.CONTRIBUTION,
            host_currency=order.currency,
            host_currency_fx_rate=1,
            amount_in_host_currency=order.total_amount,
            host_fee_in_host_currency=fees.get_host_fee(order.total_amount, order, host),
            platform_fee_in_host_currency=fees.get_platform_fee(order.total_amount, order, host),
            payment_processor_fee_in_host_currency=0,
            data={"isFeesOnTop": order.is_fees_on_top, "platformTip": order.platform_tip},
        )
        return self.ledger.create_from_payload(payload)

    def refund_transaction(self, transaction: Transaction, user_id: UUID | None = None) -> Transaction:
        return self.ledger.create_refund_transaction(transaction, 0, None, user_id)


class HostProvider(PaymentProvider):
    """Funds added by a host to one of its collectives."""

    features = {"recurring": False, "wait_to_charge": False}

    def process_order(self, order) -> Transaction:
        host = self.get_host(order)
        if order.payment_method.collective_id != host.id:
            raise PaymentProviderError("Can only use the Host payment method to Add Funds to an hosted Collective")

        payload = self.build_payload(
            order,
            kind=TransactionKind.ADDED_FUNDS,
            host_currency=host.currency,
            host_currency_fx_rate=1,
            amount_in_host_currency=order.total_amount,
            host_fee_in_host_currency=fees.get_host_fee(order.total_amount, order, host),
            platform_fee_in_host_currency=0,
            payment_processor_fee_in_host_currency=0,
        )
        return self.ledger.create_from_payload(payload)

    def refund_transaction(self, transaction: Transaction, user_id: UUID | None = None) -> Transaction:
        return self.ledger.create_refund_transaction(transaction, 0, None, user_id)


class GiftCardProvider(PaymentProvider):
    """
    Gift card emitted by an organization for someone else to spend.

    The order is charged on the source payment method of the emitter and the
    ledger entries remember who emitted the card.
    """

    features = {"recurring": True, "wait_to_charge": False}

    def __init__(self, ledger=None, collective_repo=None, payment_method_repo: PaymentMethodRepository | None = None):
        super().__init__(ledger, collective_repo)
        self.payment_method_repo = payment_method_repo or PaymentMethodRepository()

    def get_balance(self, gift_card) -> int:
        initial_balance = gift_card.data.get("initialBalance") or 0
        return initial_balance - self.ledger.transaction_repo.get_amount_spent_with(gift_card.id)

    def get_source(self, gift_card):
        source = self.payment_method_repo.get_by_id(gift_card.source_payment_method_id)
        if source is None:
            raise PaymentProviderError("This gift card has no source payment method")
        return source

    def process_order(self, order) -> Transaction:
        # Imported here: the provider registry imports this module
        from funding.services.payments import find_payment_method_provider

        gift_card = order.payment_method
        if gift_card.expiry_date and gift_card.expiry_date < timezone.now():
            raise PaymentProviderError("This gift card has expired")

        balance = self.get_balance(gift_card)
        if order.total_amount > balance:
            raise PaymentProviderError(
                f"You don't have enough funds available ({balance} {order.currency} left) "
                f"to execute this order ({order.total_amount} {order.currency})"
            )

        source = self.get_source(gift_card)
        source_provider = find_payment_method_provider(source)
        if source_provider.features.get("wait_to_charge"):
            raise PaymentProviderError("Gift cards can't be charged on a payment method paid by bank transfer")

        order.payment_method = source
        try:
            credit = source_provider.process_order(order)
        finally:
            order.payment_method = gift_card

        self.ledger.transaction_repo.set_gift_card_emitter(credit.transaction_group, source.collective_id)
        credit.using_gift_card_from_collective_id = source.collective_id
        logger.info(
            "gift_card_charged",
            extra={
                "order_id": str(order.id),
                "payment_method": str(gift_card.id),
                "collective_id": str(source.collective_id),
                "amount": order.total_amount,
            },
        )
        return credit

    def refund_transaction(self, transaction: Transaction, user_id: UUID | None = None) -> Transaction:
        from funding.services.payments import find_payment_method_provider

        gift_card = self.payment_method_repo.get_by_id(transaction.payment_method_id)
        if gift_card is None:
            raise PaymentProviderError("Cannot find the gift card of this transaction")
        return find_payment_method_provider(self.get_source(gift_card)).refund_transaction(transaction, user_id)
