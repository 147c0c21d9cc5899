"""
Order execution: picks the payment provider of an order, charges it and
records what follows (memberships, saved cards, notifications, subscriptions).
"""
from __future__ import annotations

import logging
from uuid import UUID

from django.db import transaction
from django.utils import timezone

from funding.domain.order import Order, OrderStatus, validate_payment
from funding.domain.payment_method import PaymentMethod
from funding.domain.subscription import get_next_charge_and_period_start_dates
from funding.domain.transaction import Transaction
from funding.infra.locks import order_lock
from funding.infra.models import UserORM
from funding.infra.repositories import (
    CollectiveRepository,
    MemberRepository,
    OrderRepository,
    PaymentMethodRepository,
    SubscriptionRepository,
)
from funding.payment_providers.base import PaymentProviderError
from funding.payment_providers.opencollective import CollectiveProvider, GiftCardProvider, HostProvider, ManualProvider
from funding.payment_providers.paypal_payment import PaypalPaymentProvider
from funding.payment_providers.stripe_creditcard import StripeCreditCardProvider
from funding.services.notifications import NotificationService

logger = logging.getLogger(__name__)

PAYMENT_PROVIDERS = {
    "opencollective": {
        "default": CollectiveProvider,
        "collective": CollectiveProvider,
        "manual": ManualProvider,
        "host": HostProvider,
        "giftcard": GiftCardProvider,
    },
    "stripe": {
        "default": StripeCreditCardProvider,
        "creditcard": StripeCreditCardProvider,
    },
    "paypal": {
        "default": PaypalPaymentProvider,
        "payment": PaypalPaymentProvider,
    },
}


def find_payment_method_provider(payment_method):
    service = payment_method.service or "opencollective"
    method_type = payment_method.type or "default"

    provider_types = PAYMENT_PROVIDERS.get(service)
    if provider_types is None:
        raise PaymentProviderError(f"No payment provider found for {service}")

    provider = provider_types.get(method_type)
    if provider is None:
        raise PaymentProviderError(f"No payment provider found for {service}:{method_type}")
    return provider()


def process_order(order) -> Transaction | None:
    """
    Charge ``order`` through its provider. Providers that wait to charge (bank
    transfers) do nothing until the payment method was marked as paid.
    """
    provider = find_payment_method_provider(order.payment_method)
    if provider.features.get("wait_to_charge") and not order.payment_method.paid:
        logger.info("order_waiting_for_payment", extra={"order_id": str(order.id)})
        return None
    return provider.process_order(order)


def refund_transaction(transaction: Transaction, user_id: UUID | None = None, message: str | None = None) -> Transaction:
    payment_method = PaymentMethodRepository().get_by_id(transaction.payment_method_id)
    provider = find_payment_method_provider(payment_method) if payment_method else ManualProvider()

    logger.info(
        "transaction_refund_requested",
        extra={"transaction_id": str(transaction.id), "error": message},
    )
    return provider.refund_transaction(transaction, user_id)


class OrderService:
    """Service for order payments."""

    def __init__(
        self,
        order_repo: OrderRepository | None = None,
        payment_method_repo: PaymentMethodRepository | None = None,
        member_repo: MemberRepository | None = None,
        subscription_repo: SubscriptionRepository | None = None,
        collective_repo: CollectiveRepository | None = None,
        notification_service: NotificationService | None = None,
    ):
        self.collective_repo = collective_repo or CollectiveRepository()
        self.payment_method_repo = payment_method_repo or PaymentMethodRepository()
        self.order_repo = order_repo or OrderRepository(self.collective_repo, self.payment_method_repo)
        self.member_repo = member_repo or MemberRepository()
        self.subscription_repo = subscription_repo or SubscriptionRepository()
        self.notification_service = notification_service or NotificationService(self.collective_repo)

    def execute_order(self, user, order, options: dict | None = None) -> Transaction | None:
        """
        Charge an order and record everything that follows a successful payment.

        Returns the ledger entry credited to the collective, or None when the
        payment is still pending.
        """
        if not isinstance(user, UserORM):
            raise ValueError("user should be an instance of the User model")
        if not isinstance(order, Order):
            raise ValueError("order should be an instance of the Order model")
        order.ensure_not_processed()
        validate_payment(order.total_amount, order.interval)

        logger.info(
            "order_execution_started",
            extra={"order_id": str(order.id), "amount": order.total_amount, "currency": order.currency},
        )
        self.order_repo.populate(order)
        tx = process_order(order)

        if tx is not None:
            with transaction.atomic():
                order.mark_paid(timezone.now())
                self.order_repo.save(order)
                self._add_backers(user, order)
        elif order.status == OrderStatus.NEW:
            order.mark_pending()
            self.order_repo.save(order)

        if order.data.get("savePaymentMethod") and order.payment_method and order.payment_method.id:
            order.payment_method.saved = True
            self.payment_method_repo.save(order.payment_method)

        self.notification_service.send_email_notifications(order, tx)

        if tx is not None and tx.using_gift_card_from_collective_id:
            self.member_repo.find_or_add(
                tx.using_gift_card_from_collective_id,
                order.collective_id,
                "BACKER",
                tier_id=order.tier_id,
                created_by_user_id=user.id,
            )

        if tx is not None and order.interval:
            self.create_subscription(order)

        logger.info(
            "order_executed",
            extra={"order_id": str(order.id), "status": order.status.value},
        )
        return tx

    def _add_backers(self, user, order) -> None:
        self.member_repo.find_or_add(
            order.from_collective_id,
            order.collective_id,
            "BACKER",
            tier_id=order.tier_id,
            created_by_user_id=user.id,
        )
        if order.is_fees_on_top and order.platform_tip:
            self.member_repo.find_or_add(
                order.from_collective_id,
                self.collective_repo.get_platform().id,
                "BACKER",
                created_by_user_id=user.id,
            )

    @transaction.atomic
    def create_subscription(self, order) -> None:
        """Start the recurring contribution of a paid order."""
        now = timezone.now()
        dates = get_next_charge_and_period_start_dates("new", order.interval, order.created_at or now)
        subscription = self.subscription_repo.create(
            amount=order.total_amount,
            interval=order.interval,
            currency=order.currency,
            next_charge_date=dates["next_charge_date"],
            next_period_start=dates["next_period_start"],
            activated_at=now,
        )
        order.activate(subscription.id)
        self.order_repo.save(order)
        logger.info(
            "subscription_created",
            extra={"order_id": str(order.id), "subscription_id": str(subscription.id)},
        )

    @transaction.atomic
    def mark_as_paid(self, user, order_id: UUID) -> Transaction:
        """Record a bank transfer received by the host."""
        with order_lock(order_id):
            order = self.order_repo.get_by_id(order_id)
            if order is None:
                raise ValueError(f"Order {order_id} not found")
            if order.status not in (OrderStatus.PENDING, OrderStatus.EXPIRED):
                raise ValueError("The order's status must be PENDING or EXPIRED")

            order.payment_method = PaymentMethod.manual_paid()
            return self.execute_order(user, order)

    @transaction.atomic
    def mark_as_expired(self, order_id: UUID) -> Order:
        order = self.order_repo.get_by_id(order_id)
        if order is None:
            raise ValueError(f"Order {order_id} not found")
        order.mark_expired()
        self.order_repo.save(order)
        logger.info("order_expired", extra={"order_id": str(order.id)})
        return order
