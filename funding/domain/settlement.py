"""
Monthly platform settlement: what a host owes the platform for the previous month.
"""
from __future__ import annotations

import csv
import io
from collections import OrderedDict
from dataclasses import asdict, dataclass, field, replace
from datetime import date, datetime
from enum import Enum

from funding.domain.fees import round_half_up


class SettlementStatus(str, Enum):
    OWED = "OWED"
    INVOICED = "INVOICED"
    SETTLED = "SETTLED"


class SettlementSource(str, Enum):
    PLATFORM_FEES = "Platform Fees"
    PLATFORM_TIPS = "Platform Tips"
    SHARED_REVENUE = "Shared Revenue"
    TIP_PAYMENT_PROCESSOR_FEE = "Reimburse: Payment Processor Fee for collected Platform Tips"


FIXED_FEE_DESCRIPTION = "Fixed Fee per Hosted Collective"

# Items the host keeps money for; the others are only charged
NOT_CREDITED_DESCRIPTIONS = (
    SettlementSource.SHARED_REVENUE.value,
    SettlementSource.TIP_PAYMENT_PROCESSOR_FEE.value,
    FIXED_FEE_DESCRIPTION,
)

ATTACHED_CSV_COLUMNS = (
    "createdAt",
    "description",
    "CollectiveSlug",
    "amount",
    "currency",
    "OrderId",
    "TransactionId",
    "PaymentService",
    "source",
)


@dataclass
class SettlementRow:
    """One past-month transaction the platform collects money for."""
    created_at: datetime
    description: str
    amount: int
    currency: str
    collective_id: str | None
    collective_slug: str | None
    host_collective_id: str
    host_name: str
    order_id: str | None
    transaction_id: str
    transaction_group: str | None
    payment_service: str | None
    source_payment_service: str | None
    source: SettlementSource
    plan: str | None
    charged_host_id: str | None
    data: dict = field(default_factory=dict)

    def as_csv_row(self) -> dict:
        return {
            "createdAt": self.created_at.isoformat(),
            "description": self.description,
            "CollectiveSlug": self.collective_slug,
            "amount": self.amount,
            "currency": self.currency,
            "OrderId": self.order_id,
            "TransactionId": self.transaction_id,
            "PaymentService": self.payment_service,
            "source": self.source.value,
        }


@dataclass
class SettlementItem:
    incurred_at: datetime
    amount: int
    description: str


def previous_month_bounds(day: date) -> tuple[date, date]:
    """First day of the previous month and first day of the month of ``day``."""
    end = day.replace(day=1)
    start = end.replace(year=end.year - 1, month=12) if end.month == 1 else end.replace(month=end.month - 1)
    return start, end


def previous_month_label(day: date, with_year: bool = False) -> str:
    start, _ = previous_month_bounds(day)
    return start.strftime("%B-%Y" if with_year else "%B")


def apply_shared_revenue(rows: list[SettlementRow], host_fee_share_percent) -> list[SettlementRow]:
    """
    Scale shared revenue rows, whose amount is the full host fee, down to the platform share.

    A share percent recorded on the transaction wins over the host plan one.
    """
    result = []
    for row in rows:
        if row.source == SettlementSource.SHARED_REVENUE:
            percent = row.data.get("hostFeeSharePercent") or host_fee_share_percent or 0
            row = replace(row, amount=round_half_up(row.amount * percent / 100))
        result.append(row)
    return result


def group_items(rows: list[SettlementRow], incurred_at: datetime) -> list[SettlementItem]:
    totals: OrderedDict[str, int] = OrderedDict()
    for row in rows:
        totals[row.source.value] = totals.get(row.source.value, 0) + row.amount
    return [
        SettlementItem(incurred_at=incurred_at, amount=round_half_up(amount), description=source)
        for source, amount in totals.items()
    ]


def fixed_fee_item(active_hosted_collectives: int, price_per_collective, incurred_at: datetime) -> SettlementItem | None:
    amount = (active_hosted_collectives or 0) * (price_per_collective or 0)
    if not amount:
        return None
    return SettlementItem(incurred_at=incurred_at, amount=amount, description=FIXED_FEE_DESCRIPTION)


def total_amount_credited(items: list[SettlementItem]) -> int:
    """Fees and tips the host collected on behalf of the platform."""
    return sum(item.amount for item in items if item.description not in NOT_CREDITED_DESCRIPTIONS)


def total_amount_charged(items: list[SettlementItem]) -> int:
    return sum(item.amount for item in items)


def rows_to_csv(rows: list[SettlementRow]) -> str:
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=ATTACHED_CSV_COLUMNS, quoting=csv.QUOTE_NONNUMERIC)
    writer.writeheader()
    for row in rows:
        writer.writerow(row.as_csv_row())
    return buffer.getvalue()


def row_to_dict(row: SettlementRow) -> dict:
    payload = asdict(row)
    payload["created_at"] = row.created_at.isoformat()
    payload["source"] = row.source.value
    return payload
