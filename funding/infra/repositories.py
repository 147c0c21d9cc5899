"""
Infrastructure repositories for domain entities.
"""
from __future__ import annotations

import logging
from uuid import UUID

from django.conf import settings
from django.db.models import Exists, OuterRef, Q, Sum

from funding.domain.collective import Collective, CollectiveType
from funding.domain.connected_account import Service
from funding.domain.order import Order, OrderStatus
from funding.domain.payment_method import PaymentMethod
from funding.domain.settlement import SettlementStatus
from funding.domain.transaction import Transaction, TransactionKind, TransactionType
from funding.infra.models import (
    CollectiveORM,
    ConnectedAccountORM,
    MemberORM,
    OrderORM,
    PaymentMethodORM,
    SubscriptionORM,
    TierORM,
    TransactionORM,
    TransactionSettlementORM,
    UserORM,
)

logger = logging.getLogger(__name__)


class CollectiveRepository:
    """Repository for Collective entities."""

    def get_by_id(self, collective_id: UUID | None) -> Collective | None:
        if not collective_id:
            return None
        collective_orm = CollectiveORM.objects.filter(id=collective_id).first()
        return self._to_domain(collective_orm) if collective_orm else None

    def get_by_slug(self, slug: str) -> Collective | None:
        collective_orm = CollectiveORM.objects.filter(slug=slug).first()
        return self._to_domain(collective_orm) if collective_orm else None

    def get_host(self, collective: Collective) -> Collective | None:
        """Host of a collective; a host account is its own host."""
        if collective.host_id:
            return self.get_by_id(collective.host_id)
        if collective.is_host_account:
            return collective
        return None

    def get_platform(self) -> Collective:
        platform = self.get_by_slug(settings.PLATFORM_COLLECTIVE_SLUG)
        if platform is None:
            raise ValueError(f"Platform account {settings.PLATFORM_COLLECTIVE_SLUG} not found")
        return platform

    def get_admin_emails(self, collective_id: UUID) -> list[str]:
        return list(
            UserORM.objects
            .filter(
                collective__memberships__collective_id=collective_id,
                collective__memberships__role="ADMIN",
            )
            .values_list("email", flat=True)
            .distinct()
        )

    def get_emails(self, collective_id: UUID) -> list[str]:
        """Email of the user behind a profile, or the emails of the account admins."""
        user_emails = list(UserORM.objects.filter(collective_id=collective_id).values_list("email", flat=True))
        return user_emails or self.get_admin_emails(collective_id)

    def count_active_hosted_collectives(self, host_id: UUID) -> int:
        return (
            CollectiveORM.objects
            .filter(
                host_id=host_id,
                is_active=True,
                deleted_at__isnull=True,
                type__in=(CollectiveType.COLLECTIVE.value, CollectiveType.FUND.value),
            )
            .exclude(id=host_id)
            .count()
        )

    def _to_domain(self, collective_orm: CollectiveORM) -> Collective:
        return Collective(
            id=collective_orm.id,
            slug=collective_orm.slug,
            name=collective_orm.name,
            type=CollectiveType(collective_orm.type),
            host_id=collective_orm.host_id,
            parent_id=collective_orm.parent_id,
            is_host_account=collective_orm.is_host_account,
            is_active=collective_orm.is_active,
            currency=collective_orm.currency,
            host_fee_percent=collective_orm.host_fee_percent,
            platform_fee_percent=collective_orm.platform_fee_percent,
            plan=collective_orm.plan,
            data=collective_orm.data,
            settings=collective_orm.settings,
        )


class PaymentMethodRepository:
    """Repository for PaymentMethod entities."""

    def get_by_id(self, payment_method_id: UUID | None) -> PaymentMethod | None:
        if not payment_method_id:
            return None
        pm_orm = PaymentMethodORM.objects.filter(id=payment_method_id).first()
        return self._to_domain(pm_orm) if pm_orm else None

    def save(self, payment_method: PaymentMethod) -> None:
        """Persist the mutable fields of a stored payment method."""
        if payment_method.id is None:
            return
        PaymentMethodORM.objects.filter(id=payment_method.id).update(
            customer_id=payment_method.customer_id,
            data=payment_method.data,
            saved=payment_method.saved,
            confirmed_at=payment_method.confirmed_at,
        )

    def _to_domain(self, pm_orm: PaymentMethodORM) -> PaymentMethod:
        return PaymentMethod(
            id=pm_orm.id,
            service=pm_orm.service,
            type=pm_orm.type,
            name=pm_orm.name,
            token=pm_orm.token,
            customer_id=pm_orm.customer_id,
            collective_id=pm_orm.collective_id,
            source_payment_method_id=pm_orm.source_payment_method_id,
            data=pm_orm.data,
            saved=pm_orm.saved,
            confirmed_at=pm_orm.confirmed_at,
            expiry_date=pm_orm.expiry_date,
        )


class OrderRepository:
    """Repository for Order aggregate."""

    def __init__(
        self,
        collective_repo: CollectiveRepository | None = None,
        payment_method_repo: PaymentMethodRepository | None = None,
    ):
        self.collective_repo = collective_repo or CollectiveRepository()
        self.payment_method_repo = payment_method_repo or PaymentMethodRepository()

    def get_by_id(self, order_id: UUID) -> Order | None:
        try:
            order_orm = OrderORM.objects.get(id=order_id)
        except OrderORM.DoesNotExist:
            return None
        return self._to_domain(order_orm)

    def populate(self, order: Order) -> Order:
        """Load the records an order points to, keeping those already set."""
        if order.collective is None:
            order.collective = self.collective_repo.get_by_id(order.collective_id)
        if order.from_collective is None:
            order.from_collective = self.collective_repo.get_by_id(order.from_collective_id)
        if order.payment_method is None:
            order.payment_method = self.payment_method_repo.get_by_id(order.payment_method_id)
        if order.tier is None and order.tier_id:
            order.tier = TierORM.objects.filter(id=order.tier_id).first()
        if order.created_by_user is None and order.created_by_user_id:
            order.created_by_user = UserORM.objects.filter(id=order.created_by_user_id).first()
        return order

    def save(self, order: Order) -> None:
        OrderORM.objects.filter(id=order.id).update(
            status=order.status.value,
            processed_at=order.processed_at,
            data=order.data,
            subscription_id=order.subscription_id,
            payment_method_id=order.payment_method_id,
        )

    def get_pending(self, created_before=None) -> list[Order]:
        queryset = OrderORM.objects.filter(status=OrderStatus.PENDING.value)
        if created_before is not None:
            queryset = queryset.filter(created_at__lt=created_before)
        return [self._to_domain(order_orm) for order_orm in queryset.order_by("created_at")]

    def _to_domain(self, order_orm: OrderORM) -> Order:
        return Order(
            id=order_orm.id,
            created_by_user_id=order_orm.created_by_user_id,
            from_collective_id=order_orm.from_collective_id,
            collective_id=order_orm.collective_id,
            tier_id=order_orm.tier_id,
            payment_method_id=order_orm.payment_method_id,
            subscription_id=order_orm.subscription_id,
            total_amount=order_orm.total_amount,
            currency=order_orm.currency,
            quantity=order_orm.quantity,
            tax_amount=order_orm.tax_amount,
            description=order_orm.description,
            public_message=order_orm.public_message,
            private_message=order_orm.private_message,
            interval=order_orm.interval,
            status=OrderStatus(order_orm.status),
            data=order_orm.data,
            processed_at=order_orm.processed_at,
            created_at=order_orm.created_at,
            updated_at=order_orm.updated_at,
        )


class TransactionRepository:
    """Repository for ledger entries."""

    def get_by_id(self, transaction_id: UUID) -> Transaction | None:
        transaction_orm = TransactionORM.objects.filter(id=transaction_id, deleted_at__isnull=True).first()
        return self._to_domain(transaction_orm) if transaction_orm else None

    def create(self, transaction: Transaction) -> Transaction:
        transaction_orm = TransactionORM.objects.create(**self._to_fields(transaction))
        return self._to_domain(transaction_orm)

    def get_by_group(self, transaction_group: UUID, kind: TransactionKind | None = None) -> list[Transaction]:
        queryset = TransactionORM.objects.filter(transaction_group=transaction_group, deleted_at__isnull=True)
        if kind is not None:
            queryset = queryset.filter(kind=TransactionKind(kind).value)
        return [self._to_domain(t) for t in queryset.order_by("created_at")]

    def get_other_entry(self, transaction: Transaction) -> Transaction | None:
        """The mirror entry of ``transaction`` in its group."""
        transaction_orm = (
            TransactionORM.objects
            .filter(transaction_group=transaction.transaction_group, deleted_at__isnull=True)
            .filter(Q(kind=transaction.kind.value) if transaction.kind else Q(kind__isnull=True))
            .exclude(id=transaction.id)
            .first()
        )
        return self._to_domain(transaction_orm) if transaction_orm else None

    def get_platform_tip(self, transaction: Transaction) -> Transaction | None:
        transaction_orm = TransactionORM.objects.filter(
            transaction_group=transaction.transaction_group,
            kind=TransactionKind.PLATFORM_TIP.value,
            type=TransactionType.CREDIT.value,
            deleted_at__isnull=True,
        ).first()
        return self._to_domain(transaction_orm) if transaction_orm else None

    def get_balance(self, collective_id: UUID, currency: str | None = None) -> int:
        queryset = TransactionORM.objects.filter(collective_id=collective_id, deleted_at__isnull=True)
        if currency:
            queryset = queryset.filter(currency=currency)
        return queryset.aggregate(balance=Sum("net_amount_in_collective_currency"))["balance"] or 0

    def get_amount_spent_with(self, payment_method_id: UUID) -> int:
        """Total credited to collectives with a payment method, refunds excluded."""
        queryset = TransactionORM.objects.filter(
            payment_method_id=payment_method_id,
            type=TransactionType.CREDIT.value,
            kind=TransactionKind.CONTRIBUTION.value,
            refund_transaction__isnull=True,
            is_refund=False,
            deleted_at__isnull=True,
        )
        return queryset.aggregate(spent=Sum("amount"))["spent"] or 0

    def set_gift_card_emitter(self, transaction_group: UUID, collective_id: UUID) -> None:
        TransactionORM.objects.filter(transaction_group=transaction_group).update(
            using_gift_card_from_collective_id=collective_id
        )

    def link_refund(self, transaction_id: UUID, refund_id: UUID, data: dict | None = None) -> None:
        fields = {"refund_transaction_id": refund_id}
        if data is not None:
            fields["data"] = data
        TransactionORM.objects.filter(id=transaction_id).update(**fields)

    def _to_fields(self, transaction: Transaction) -> dict:
        fields = {
            "type": TransactionType(transaction.type).value,
            "kind": TransactionKind(transaction.kind).value if transaction.kind else None,
            "transaction_group": transaction.transaction_group,
            "description": transaction.description,
            "amount": transaction.amount,
            "currency": transaction.currency,
            "amount_in_host_currency": transaction.amount_in_host_currency,
            "host_currency": transaction.host_currency,
            "host_currency_fx_rate": transaction.host_currency_fx_rate,
            "host_fee_in_host_currency": transaction.host_fee_in_host_currency or 0,
            "platform_fee_in_host_currency": transaction.platform_fee_in_host_currency or 0,
            "payment_processor_fee_in_host_currency": transaction.payment_processor_fee_in_host_currency or 0,
            "tax_amount": transaction.tax_amount,
            "net_amount_in_collective_currency": transaction.net_amount_in_collective_currency,
            "collective_id": transaction.collective_id,
            "from_collective_id": transaction.from_collective_id,
            "host_collective_id": transaction.host_collective_id,
            "using_gift_card_from_collective_id": transaction.using_gift_card_from_collective_id,
            "payment_method_id": transaction.payment_method_id,
            "order_id": transaction.order_id,
            "expense_id": transaction.expense_id,
            "created_by_user_id": transaction.created_by_user_id,
            "refund_transaction_id": transaction.refund_transaction_id,
            "is_refund": transaction.is_refund,
            "is_debt": transaction.is_debt,
            "data": transaction.data,
        }
        if transaction.id:
            fields["id"] = transaction.id
        return fields

    def _to_domain(self, transaction_orm: TransactionORM) -> Transaction:
        return Transaction(
            id=transaction_orm.id,
            type=TransactionType(transaction_orm.type),
            kind=TransactionKind(transaction_orm.kind) if transaction_orm.kind else None,
            transaction_group=transaction_orm.transaction_group,
            description=transaction_orm.description,
            amount=transaction_orm.amount,
            currency=transaction_orm.currency,
            amount_in_host_currency=transaction_orm.amount_in_host_currency,
            host_currency=transaction_orm.host_currency,
            host_currency_fx_rate=transaction_orm.host_currency_fx_rate,
            host_fee_in_host_currency=transaction_orm.host_fee_in_host_currency,
            platform_fee_in_host_currency=transaction_orm.platform_fee_in_host_currency,
            payment_processor_fee_in_host_currency=transaction_orm.payment_processor_fee_in_host_currency,
            tax_amount=transaction_orm.tax_amount,
            net_amount_in_collective_currency=transaction_orm.net_amount_in_collective_currency,
            collective_id=transaction_orm.collective_id,
            from_collective_id=transaction_orm.from_collective_id,
            host_collective_id=transaction_orm.host_collective_id,
            using_gift_card_from_collective_id=transaction_orm.using_gift_card_from_collective_id,
            payment_method_id=transaction_orm.payment_method_id,
            order_id=transaction_orm.order_id,
            expense_id=transaction_orm.expense_id,
            created_by_user_id=transaction_orm.created_by_user_id,
            refund_transaction_id=transaction_orm.refund_transaction_id,
            is_refund=transaction_orm.is_refund,
            is_debt=transaction_orm.is_debt,
            data=transaction_orm.data,
            created_at=transaction_orm.created_at,
        )


class MemberRepository:
    """Repository for memberships."""

    def find_or_add(
        self,
        member_collective_id: UUID,
        collective_id: UUID,
        role: str,
        tier_id: UUID | None = None,
        created_by_user_id: UUID | None = None,
    ) -> MemberORM:
        member, created = MemberORM.objects.get_or_create(
            member_collective_id=member_collective_id,
            collective_id=collective_id,
            role=role,
            tier_id=tier_id,
            defaults={"created_by_user_id": created_by_user_id},
        )
        if created:
            logger.info(
                "member_added",
                extra={"collective_id": str(collective_id), "status": role},
            )
        return member


class ConnectedAccountRepository:
    """Repository for accounts connected to third party services."""

    def get_latest(self, collective_id: UUID, service: str, with_credentials: bool = False) -> ConnectedAccountORM | None:
        queryset = ConnectedAccountORM.objects.filter(
            collective_id=collective_id,
            service=Service(service).value,
            deleted_at__isnull=True,
        )
        if with_credentials:
            queryset = queryset.filter(client_id__isnull=False, token__isnull=False)
        return queryset.order_by("-created_at").first()

    def exists(self, collective_id: UUID, service: str) -> bool:
        return ConnectedAccountORM.objects.filter(
            collective_id=collective_id,
            service=Service(service).value,
            deleted_at__isnull=True,
        ).exists()

    def update_settings(self, connected_account: ConnectedAccountORM, **values) -> ConnectedAccountORM:
        connected_account.settings = {**(connected_account.settings or {}), **values}
        connected_account.save(update_fields=["settings", "updated_at"])
        return connected_account


class TransactionSettlementRepository:
    """Repository for debts between hosts and the platform."""

    def __init__(self, transaction_repo: TransactionRepository | None = None):
        self.transaction_repo = transaction_repo or TransactionRepository()

    def create(
        self,
        transaction_group: UUID,
        kind: TransactionKind,
        status: SettlementStatus = SettlementStatus.OWED,
        expense_id: UUID | None = None,
    ) -> TransactionSettlementORM:
        return TransactionSettlementORM.objects.create(
            transaction_group=transaction_group,
            kind=TransactionKind(kind).value,
            status=SettlementStatus(status).value,
            expense_id=expense_id,
        )

    def get_transactions_by_settlement_status(self, status: SettlementStatus) -> list[Transaction]:
        """Ledger entries whose settlement (same group and kind) has ``status``."""
        settlements = TransactionSettlementORM.objects.filter(
            transaction_group=OuterRef("transaction_group"),
            kind=OuterRef("kind"),
            status=SettlementStatus(status).value,
            deleted_at__isnull=True,
        )
        queryset = (
            TransactionORM.objects
            .filter(deleted_at__isnull=True)
            .filter(Exists(settlements))
            .order_by("created_at")
        )
        return [self.transaction_repo._to_domain(t) for t in queryset]

    def get_owed_transactions(self) -> list[Transaction]:
        return self.get_transactions_by_settlement_status(SettlementStatus.OWED)

    def update_status(
        self,
        transaction_groups: list,
        status: SettlementStatus,
        expense_id: UUID | None = None,
        current_status: SettlementStatus | None = None,
    ) -> int:
        queryset = TransactionSettlementORM.objects.filter(
            transaction_group__in=transaction_groups,
            deleted_at__isnull=True,
        )
        if current_status is not None:
            queryset = queryset.filter(status=SettlementStatus(current_status).value)
        return queryset.update(status=SettlementStatus(status).value, expense_id=expense_id)


class SubscriptionRepository:
    """Repository for recurring contributions."""

    def create(
        self,
        amount: int,
        interval: str,
        currency: str,
        next_charge_date,
        next_period_start,
        activated_at,
    ) -> SubscriptionORM:
        return SubscriptionORM.objects.create(
            amount=amount,
            interval=interval,
            currency=currency,
            is_active=True,
            activated_at=activated_at,
            next_charge_date=next_charge_date,
            next_period_start=next_period_start,
            charge_number=1,
        )
