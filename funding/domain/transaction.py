"""
Domain model for ledger transactions.

Every money movement is written twice: one entry on the account that receives
the money (CREDIT) and one on the account that sends it (DEBIT), both sharing a
transaction group. Fees are negative numbers expressed in host currency.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from uuid import UUID, uuid4

from funding.domain.fees import round_half_up


class TransactionType(str, Enum):
    """Ledger entry direction."""
    CREDIT = "CREDIT"
    DEBIT = "DEBIT"


class TransactionKind(str, Enum):
    CONTRIBUTION = "CONTRIBUTION"
    ADDED_FUNDS = "ADDED_FUNDS"
    PLATFORM_TIP = "PLATFORM_TIP"
    EXPENSE = "EXPENSE"
    HOST_FEE = "HOST_FEE"
    PLATFORM_FEE = "PLATFORM_FEE"
    PAYMENT_PROCESSOR_FEE = "PAYMENT_PROCESSOR_FEE"
    PREPAID_PAYMENT_METHOD = "PREPAID_PAYMENT_METHOD"


PLATFORM_TIP_DESCRIPTION = "Financial contribution to Open Collective"


@dataclass
class Transaction:
    """Single ledger entry."""
    collective_id: UUID | None = None
    from_collective_id: UUID | None = None
    host_collective_id: UUID | None = None
    amount: int = 0
    currency: str = "USD"
    type: TransactionType | None = None
    kind: TransactionKind | None = None
    description: str = ""
    id: UUID | None = None
    transaction_group: UUID | None = None
    amount_in_host_currency: int | None = None
    host_currency: str | None = None
    host_currency_fx_rate: float = 1
    host_fee_in_host_currency: int = 0
    platform_fee_in_host_currency: int = 0
    payment_processor_fee_in_host_currency: int = 0
    tax_amount: int | None = None
    net_amount_in_collective_currency: int | None = None
    payment_method_id: UUID | None = None
    order_id: UUID | None = None
    expense_id: UUID | None = None
    created_by_user_id: UUID | None = None
    refund_transaction_id: UUID | None = None
    using_gift_card_from_collective_id: UUID | None = None
    is_refund: bool = False
    is_debt: bool | None = None
    data: dict = field(default_factory=dict)
    created_at: datetime | None = None

    @property
    def is_fees_on_top(self) -> bool:
        return bool(self.data.get("isFeesOnTop"))

    def has_platform_tip(self) -> bool:
        return bool(self.data.get("isFeesOnTop") or self.data.get("platformTip")) and self.kind != TransactionKind.PLATFORM_TIP


def net_amount(transaction: Transaction) -> int:
    """Amount left to the receiving account once fees are taken, in its currency."""
    total_in_host_currency = (
        (transaction.amount_in_host_currency or 0)
        + (transaction.host_fee_in_host_currency or 0)
        + (transaction.platform_fee_in_host_currency or 0)
        + (transaction.payment_processor_fee_in_host_currency or 0)
    )
    fx_rate = transaction.host_currency_fx_rate or 1
    return round_half_up(total_in_host_currency / fx_rate)


def build_double_entry(
    payload: Transaction,
    from_collective_host_id: UUID | None,
    transaction_group: UUID | None = None,
) -> tuple[Transaction, Transaction]:
    """
    Build the entry described by ``payload`` and its mirror entry.

    Returns ``(debit, credit)`` in the order they must be written.
    """
    entry = replace(payload, data=dict(payload.data))
    entry.transaction_group = transaction_group or entry.transaction_group or uuid4()
    entry.host_currency_fx_rate = entry.host_currency_fx_rate or 1
    entry.type = TransactionType.CREDIT if entry.amount > 0 else TransactionType.DEBIT
    if entry.net_amount_in_collective_currency is None:
        entry.net_amount_in_collective_currency = net_amount(entry)
    if entry.amount_in_host_currency is None:
        entry.amount_in_host_currency = round_half_up(entry.amount * entry.host_currency_fx_rate)

    opposite = replace(
        entry,
        data=dict(entry.data),
        type=TransactionType.DEBIT if entry.type == TransactionType.CREDIT else TransactionType.CREDIT,
        collective_id=entry.from_collective_id,
        from_collective_id=entry.collective_id,
        host_collective_id=from_collective_host_id,
        amount=-round_half_up(entry.net_amount_in_collective_currency),
        net_amount_in_collective_currency=-round_half_up(entry.amount),
        amount_in_host_currency=-round_half_up(entry.net_amount_in_collective_currency * entry.host_currency_fx_rate),
    )

    if entry.type == TransactionType.DEBIT:
        return entry, opposite
    return opposite, entry


def split_platform_tip(
    payload: Transaction,
    platform_tip: int,
    platform_collective_id: UUID,
) -> tuple[Transaction, Transaction]:
    """
    Separate a fees-on-top tip from a contribution.

    Returns the tip entry credited to the platform and the contribution with the
    tip removed from its amounts. The processor fee is shared pro rata.
    """
    fx_rate = payload.host_currency_fx_rate or 1
    tip_in_host_currency = round_half_up(platform_tip * fx_rate)
    tip_processor_fee = 0
    if payload.amount and payload.payment_processor_fee_in_host_currency:
        tip_processor_fee = round_half_up(
            payload.payment_processor_fee_in_host_currency * platform_tip / payload.amount
        )

    tip = Transaction(
        collective_id=platform_collective_id,
        from_collective_id=payload.from_collective_id,
        host_collective_id=platform_collective_id,
        amount=platform_tip,
        currency=payload.currency,
        kind=TransactionKind.PLATFORM_TIP,
        description=PLATFORM_TIP_DESCRIPTION,
        amount_in_host_currency=platform_tip,
        host_currency=payload.currency,
        host_currency_fx_rate=1,
        payment_processor_fee_in_host_currency=round_half_up(tip_processor_fee / fx_rate),
        payment_method_id=payload.payment_method_id,
        order_id=payload.order_id,
        created_by_user_id=payload.created_by_user_id,
        data={
            "isFeesOnTop": payload.data.get("isFeesOnTop"),
            "hostToPlatformFxRate": 1 / fx_rate,
            "settled": payload.data.get("settled"),
        },
    )
    tip.net_amount_in_collective_currency = net_amount(tip)

    contribution = replace(payload, data=dict(payload.data))
    contribution.amount = payload.amount - platform_tip
    contribution.amount_in_host_currency = (payload.amount_in_host_currency or 0) - tip_in_host_currency
    contribution.payment_processor_fee_in_host_currency = (
        payload.payment_processor_fee_in_host_currency - tip_processor_fee
    )
    # The tip was the platform fee of this contribution
    contribution.platform_fee_in_host_currency = 0
    contribution.net_amount_in_collective_currency = net_amount(contribution)
    return tip, contribution


def build_refund(
    transaction: Transaction,
    refunded_payment_processor_fee: int,
    data: dict | None,
    created_by_user_id: UUID | None,
) -> Transaction:
    """Payload of the entry reversing ``transaction``."""
    refund = Transaction(
        currency=transaction.currency,
        from_collective_id=transaction.from_collective_id,
        collective_id=transaction.collective_id,
        host_collective_id=transaction.host_collective_id,
        payment_method_id=transaction.payment_method_id,
        order_id=transaction.order_id,
        expense_id=transaction.expense_id,
        host_currency_fx_rate=transaction.host_currency_fx_rate,
        host_currency=transaction.host_currency,
        kind=transaction.kind,
        created_by_user_id=created_by_user_id,
        description=f'Refund of "{transaction.description}"',
    )
    if "isFeesOnTop" in transaction.data:
        refund.data["isFeesOnTop"] = transaction.data["isFeesOnTop"]
    refund.data.update(data or {})

    # Fees go back to the contributor, so they become positive
    refund.host_fee_in_host_currency = -(transaction.host_fee_in_host_currency or 0)
    refund.platform_fee_in_host_currency = -(transaction.platform_fee_in_host_currency or 0)
    refund.payment_processor_fee_in_host_currency = -(transaction.payment_processor_fee_in_host_currency or 0)

    # Processor kept its fee: the host covers it so the contributor gets a full refund
    if refunded_payment_processor_fee == 0:
        refund.host_fee_in_host_currency += refund.payment_processor_fee_in_host_currency
        refund.payment_processor_fee_in_host_currency = 0

    refund.amount = -transaction.amount
    refund.amount_in_host_currency = -(transaction.amount_in_host_currency or 0)
    refund.net_amount_in_collective_currency = -net_amount(transaction)
    refund.is_refund = True
    return refund
