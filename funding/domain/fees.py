"""
Fee rules: rounding, percentage waterfalls and platform fee computation.

All amounts are integer cents. Percent candidates are tried in order and the
first numeric one wins, so ``0`` is a valid override while ``None`` is not.
"""
from __future__ import annotations

import math
from decimal import Decimal
from numbers import Number


def round_half_up(value) -> int:
    """Round to the nearest integer, halves going up (-2.5 rounds to -2)."""
    return math.floor(Decimal(str(value)) + Decimal("0.5"))


def calc_fee(amount: int, fee_percent) -> int:
    """
    Fee of ``fee_percent`` percent on ``amount`` cents.

    >>> calc_fee(100, 3.5)
    4
    """
    return round_half_up(Decimal(str(amount)) * Decimal(str(fee_percent)) / 100)


def first_number(candidates):
    return next((c for c in candidates if isinstance(c, Number) and not isinstance(c, bool)), None)


def _payment_method_pair(order) -> tuple[str | None, str | None]:
    payment_method = order.payment_method
    return getattr(payment_method, "service", None), getattr(payment_method, "type", None)


def get_platform_fee_percent(order, host, default_percent):
    service, pm_type = _payment_method_pair(order)
    collective = order.collective
    candidates = [order.data.get("platformFeePercent")]

    if service == "opencollective" and pm_type == "manual":
        candidates.append(collective.data.get("bankTransfersPlatformFeePercent"))
        candidates.append(host.data.get("bankTransfersPlatformFeePercent") if host else None)
        candidates.append(0)

    if service == "opencollective" and pm_type in ("collective", "host"):
        candidates.append(0)

    candidates.append(collective.platform_fee_percent)
    candidates.append(default_percent)
    return first_number(candidates)


def get_host_fee_percent(order, host, default_percent):
    collective = order.collective

    # Money going to a host itself is not charged a host fee
    if collective.is_host_account:
        return 0

    service, pm_type = _payment_method_pair(order)
    host_data = host.data if host else {}
    candidates = [order.data.get("hostFeePercent")]

    if service == "opencollective" and pm_type == "manual":
        candidates.append(collective.data.get("bankTransfersHostFeePercent"))
        candidates.append(host_data.get("bankTransfersHostFeePercent"))

    if service == "opencollective" and pm_type in ("collective", "host"):
        candidates.append(0)

    if service == "stripe":
        candidates.append(collective.data.get("creditCardHostFeePercent"))
        candidates.append(host_data.get("creditCardHostFeePercent"))

    if service == "paypal":
        candidates.append(collective.data.get("paypalHostFeePercent"))
        candidates.append(host_data.get("paypalHostFeePercent"))

    candidates.append(collective.host_fee_percent)
    candidates.append(default_percent)
    return first_number(candidates)


def get_host_fee(total_amount: int, order, host, default_percent) -> int:
    host_fee_percent = get_host_fee_percent(order, host, default_percent)
    return calc_fee(total_amount - order.platform_tip, host_fee_percent)


def get_platform_fee(
    total_amount: int,
    order,
    host,
    default_host_percent,
    default_platform_percent,
    host_plan: dict | None = None,
    host_fee_share_percent=None,
) -> int:
    shared_revenue_percent = host_fee_share_percent or (host_plan or {}).get("hostFeeSharePercent")

    # Fees on top can be combined with shared revenue
    if order.is_fees_on_top or shared_revenue_percent:
        shared_revenue = 0
        if shared_revenue_percent:
            host_fee = get_host_fee(total_amount, order, host, default_host_percent)
            shared_revenue = calc_fee(host_fee, shared_revenue_percent)
        return order.platform_tip + shared_revenue

    platform_fee_percent = get_platform_fee_percent(order, host, default_platform_percent)
    return calc_fee(total_amount, platform_fee_percent)
