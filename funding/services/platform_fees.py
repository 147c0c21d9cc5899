"""
Monthly settlement of the platform fees and tips collected by hosts.

Hosts that are not paid through the platform Stripe account keep the platform
fees and tips of their contributions. Once a month each of them is credited
with what it collected and receives an expense (invoice) covering it, plus
the shared revenue and fixed fees of its plan.
"""
from __future__ import annotations

import logging
import secrets
from collections import OrderedDict
from datetime import date, datetime, time, timezone as dt_timezone
from uuid import uuid4

from django.conf import settings
from django.core.files.base import ContentFile
from django.core.files.storage import default_storage
from django.db import transaction
from django.db.models import Q
from django.utils import timezone

from funding.domain.collective import CollectiveType
from funding.domain.fees import round_half_up
from funding.domain.plans import SHARED_REVENUE_PLANS, get_host_plan
from funding.domain.settlement import (
    SettlementRow,
    SettlementSource,
    SettlementStatus,
    apply_shared_revenue,
    fixed_fee_item,
    group_items,
    previous_month_bounds,
    previous_month_label,
    rows_to_csv,
    total_amount_charged,
    total_amount_credited,
)
from funding.domain.transaction import Transaction, TransactionKind, TransactionType
from funding.infra.models import (
    ExpenseAttachedFileORM,
    ExpenseItemORM,
    ExpenseORM,
    PayoutMethodORM,
    TransactionORM,
    UserORM,
)
from funding.infra.repositories import (
    CollectiveRepository,
    ConnectedAccountRepository,
    TransactionRepository,
    TransactionSettlementRepository,
)

logger = logging.getLogger(__name__)

TIPPED_KINDS = (TransactionKind.CONTRIBUTION.value, TransactionKind.ADDED_FUNDS.value)

HOST_ACCOUNT_FILTER = Q(host_collective__type=CollectiveType.ORGANIZATION.value, host_collective__is_host_account=True)

PAID_WITH_STRIPE = Q(payment_method__service="stripe") | Q(payment_method__source_payment_method__service="stripe")


def _month_range(day: date) -> tuple[datetime, datetime]:
    start, end = previous_month_bounds(day)
    return (
        datetime.combine(start, time.min, tzinfo=dt_timezone.utc),
        datetime.combine(end, time.min, tzinfo=dt_timezone.utc),
    )


def _str_or_none(value) -> str | None:
    return str(value) if value is not None else None


class PlatformFeeService:
    """Invoices hosts for the platform fees and tips they collected."""

    def __init__(
        self,
        collective_repo: CollectiveRepository | None = None,
        transaction_repo: TransactionRepository | None = None,
        settlement_repo: TransactionSettlementRepository | None = None,
        connected_account_repo: ConnectedAccountRepository | None = None,
    ):
        self.collective_repo = collective_repo or CollectiveRepository()
        self.transaction_repo = transaction_repo or TransactionRepository()
        self.settlement_repo = settlement_repo or TransactionSettlementRepository(self.transaction_repo)
        self.connected_account_repo = connected_account_repo or ConnectedAccountRepository()

    def get_platform_fees_past_month_transactions(self, day: date, ignore_new_format: bool = True) -> list[SettlementRow]:
        """
        Rows owed to the platform for the calendar month before ``day``.

        With ``ignore_new_format`` only entries with no ``is_debt`` flag are
        read; newer entries carry their debts in the ledger itself.
        """
        platform = self.collective_repo.get_platform()
        start, end = _month_range(day)

        base = (
            TransactionORM.objects
            .filter(created_at__gte=start, created_at__lt=end, deleted_at__isnull=True, type=TransactionType.CREDIT.value)
            .select_related("host_collective", "collective", "payment_method__source_payment_method")
        )
        if ignore_new_format:
            base = base.filter(is_debt__isnull=True)

        rows = []

        platform_fees = (
            base
            .exclude(platform_fee_in_host_currency=0)
            .exclude(host_collective_id=platform.id)
            .exclude(PAID_WITH_STRIPE)
            .filter(HOST_ACCOUNT_FILTER)
        )
        for t in platform_fees:
            rows.append(self._row(t, t, -t.platform_fee_in_host_currency, SettlementSource.PLATFORM_FEES))

        shared_revenue = (
            base
            .exclude(host_fee_in_host_currency=0)
            .filter(platform_fee_in_host_currency=0, data__settled__isnull=True)
            .exclude(host_collective_id=platform.id)
            .filter(HOST_ACCOUNT_FILTER)
            .filter(Q(host_collective__plan__in=SHARED_REVENUE_PLANS) | Q(host_collective__data__plan__hostFeeSharePercent__isnull=False))
        )
        for t in shared_revenue:
            rows.append(self._row(t, t, -t.host_fee_in_host_currency, SettlementSource.SHARED_REVENUE))

        tips = list(base.filter(collective_id=platform.id, kind=TransactionKind.PLATFORM_TIP.value))
        contributions = {
            ot.transaction_group: ot
            for ot in TransactionORM.objects
            .filter(
                transaction_group__in=[t.transaction_group for t in tips],
                type=TransactionType.CREDIT.value,
                kind__in=TIPPED_KINDS,
            )
            .select_related("host_collective", "collective")
        }
        for t in tips:
            ot = contributions.get(t.transaction_group)
            if ot is None or ot.host_collective_id == platform.id or not self._is_host_account(ot.host_collective):
                continue
            fx_rate = (t.data or {}).get("hostToPlatformFxRate") or 1
            if self._paid_with_stripe(t):
                amount = round_half_up(t.payment_processor_fee_in_host_currency / fx_rate)
                rows.append(self._row(t, ot, amount, SettlementSource.TIP_PAYMENT_PROCESSOR_FEE))
            else:
                amount = round_half_up(t.net_amount_in_collective_currency / fx_rate)
                rows.append(self._row(t, ot, amount, SettlementSource.PLATFORM_TIPS))

        rows.sort(key=lambda row: row.created_at)
        return rows

    def _is_host_account(self, host) -> bool:
        return host is not None and host.type == CollectiveType.ORGANIZATION.value and host.is_host_account

    def _paid_with_stripe(self, t: TransactionORM) -> bool:
        payment_method = t.payment_method
        if payment_method is None:
            return False
        source = payment_method.source_payment_method
        return payment_method.service == "stripe" or (source is not None and source.service == "stripe")

    def _row(self, t: TransactionORM, ot: TransactionORM, amount: int, source: SettlementSource) -> SettlementRow:
        """Settlement row of entry ``t``; ``ot`` is the contribution carrying host and collective."""
        host = ot.host_collective
        payment_method = t.payment_method
        source_payment_method = payment_method.source_payment_method if payment_method else None
        return SettlementRow(
            created_at=t.created_at,
            description=t.description,
            amount=amount,
            currency=ot.host_currency,
            collective_id=_str_or_none(ot.collective_id),
            collective_slug=ot.collective.slug if ot.collective else None,
            host_collective_id=str(host.id),
            host_name=host.name,
            order_id=_str_or_none(ot.order_id),
            transaction_id=str(t.id),
            transaction_group=_str_or_none(t.transaction_group),
            payment_service=payment_method.service if payment_method else None,
            source_payment_service=source_payment_method.service if source_payment_method else None,
            source=source,
            plan=host.plan,
            charged_host_id=self.collective_repo._to_domain(host).charged_host_id,
            data=t.data or {},
        )

    def invoice_hosts(self, day: date, host_id: str | None = None) -> list:
        """Settle the debts of every host with rows in the month before ``day``."""
        rows = self.get_platform_fees_past_month_transactions(day)
        by_host: OrderedDict[str, list[SettlementRow]] = OrderedDict()
        for row in rows:
            by_host.setdefault(row.host_collective_id, []).append(row)

        expenses = []
        for current_host_id, host_rows in by_host.items():
            if host_id and current_host_id != str(host_id):
                continue

            host = self.collective_repo.get_by_id(current_host_id)
            first = host_rows[0]
            expense = self.settle_debts_legacy(host, first.currency, host_rows, day, first.charged_host_id)
            if expense is not None:
                expenses.append(expense)
        return expenses

    @transaction.atomic
    def settle_debts_legacy(self, host, currency: str, rows: list[SettlementRow], day: date, charged_host_id):
        """
        Credit ``host`` with the fees and tips it collected and invoice it for
        what it owes. Returns the expense, or None when nothing is invoiced.
        """
        plan = get_host_plan(host)
        rows = apply_shared_revenue(rows, plan.get("hostFeeSharePercent"))
        incurred_at = datetime.combine(day, time.min, tzinfo=dt_timezone.utc)
        items = group_items(rows, incurred_at)

        if plan.get("pricePerCollective"):
            fixed_fee = fixed_fee_item(
                self.collective_repo.count_active_hosted_collectives(host.id),
                plan["pricePerCollective"],
                timezone.now(),
            )
            if fixed_fee is not None:
                items.append(fixed_fee)

        credited = total_amount_credited(items)
        charged = total_amount_charged(items)
        if charged < settings.SETTLEMENT_MINIMUM_AMOUNT:
            logger.warning(
                "settlement_skipped",
                extra={"host_id": str(host.id), "amount": charged, "currency": currency},
            )
            return None

        logger.info(
            "settlement_owed",
            extra={"host_id": str(host.id), "amount": charged, "currency": currency, "count": len(rows)},
        )

        if not charged_host_id:
            logger.error("settlement_without_charged_host", extra={"host_id": str(host.id)})
            return None

        month = previous_month_label(day)
        settlement_collective = self.collective_repo.get_by_slug(
            settings.SETTLEMENT_EXPENSE_PROPERTIES["from_collective_slug"]
        )
        if settlement_collective is None:
            raise ValueError(f"Settlement account {settings.SETTLEMENT_EXPENSE_PROPERTIES['from_collective_slug']} not found")
        settlement_user = UserORM.objects.filter(email=settings.SETTLEMENT_EXPENSE_PROPERTIES["user_email"]).first()
        settlement_user_id = settlement_user.id if settlement_user else None

        if credited > 0:
            self.transaction_repo.create(
                Transaction(
                    type=TransactionType.CREDIT,
                    kind=None,
                    transaction_group=uuid4(),
                    amount=credited,
                    amount_in_host_currency=credited,
                    net_amount_in_collective_currency=credited,
                    currency=currency,
                    host_currency=currency,
                    host_currency_fx_rate=1,
                    collective_id=charged_host_id,
                    from_collective_id=charged_host_id,
                    host_collective_id=host.id,
                    created_by_user_id=settlement_user_id,
                    description=f"Platform Fees and Tips collected in {month}",
                )
            )

        payout_method = self._get_payout_method(host, settlement_collective, currency)
        expense = ExpenseORM.objects.create(
            collective_id=charged_host_id,
            from_collective_id=settlement_collective.id,
            created_by_user_id=settlement_user_id,
            payout_method=payout_method,
            amount=charged,
            currency=currency,
            description=f"Platform settlement for {month}",
            incurred_at=timezone.now(),
            data={"isPlatformTipSettlement": True, "transactionIds": [row.transaction_id for row in rows]},
            type="INVOICE",
            status="PENDING",
        )
        ExpenseItemORM.objects.bulk_create([
            ExpenseItemORM(
                expense=expense,
                created_by_user_id=settlement_user_id,
                amount=item.amount,
                description=item.description,
                incurred_at=item.incurred_at,
            )
            for item in items
        ])

        filename = f"{host.name}-{previous_month_label(day, with_year=True)}.{secrets.token_hex(3)}.csv"
        path = default_storage.save(f"settlements/{filename}", ContentFile(rows_to_csv(rows).encode("utf-8")))
        ExpenseAttachedFileORM.objects.create(
            expense=expense,
            created_by_user_id=settlement_user_id,
            url=default_storage.url(path),
        )

        groups = {row.transaction_group for row in rows if row.transaction_group}
        invoiced = self.settlement_repo.update_status(
            list(groups),
            SettlementStatus.INVOICED,
            expense_id=expense.id,
            current_status=SettlementStatus.OWED,
        )

        logger.info(
            "settlement_invoiced",
            extra={
                "host_id": str(host.id),
                "expense_id": str(expense.id),
                "amount": charged,
                "currency": currency,
                "count": invoiced,
            },
        )
        return expense

    def _get_payout_method(self, host, settlement_collective, currency: str) -> PayoutMethodORM | None:
        """Where the host pays the invoice: another method, a bank account or PayPal."""
        payout_methods: dict[str, list[PayoutMethodORM]] = {}
        for payout_method in PayoutMethodORM.objects.filter(collective_id=settlement_collective.id).order_by("created_at"):
            payout_methods.setdefault(payout_method.type, []).append(payout_method)

        bank_accounts = payout_methods.get("BANK_ACCOUNT") or []
        selected = (payout_methods.get("OTHER") or bank_accounts or [None])[0]

        if self.connected_account_repo.exists(host.id, "transferwise") and bank_accounts:
            selected = next((pm for pm in bank_accounts if pm.data.get("currency") == currency), bank_accounts[0])
        elif (
            self.connected_account_repo.exists(host.id, "paypal")
            and not host.settings.get("disablePaypalPayouts")
            and payout_methods.get("PAYPAL")
        ):
            selected = payout_methods["PAYPAL"][0]

        if selected is None:
            logger.warning("settlement_without_payout_method", extra={"host_id": str(host.id)})
        return selected

