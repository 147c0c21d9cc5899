"""
Fee computation bound to the configured platform defaults.
"""
from __future__ import annotations

from django.conf import settings

from funding.domain import fees
from funding.domain.fees import calc_fee
from funding.infra.repositories import CollectiveRepository

__all__ = [
    "calc_fee",
    "get_host_fee",
    "get_host_fee_percent",
    "get_platform_fee",
    "get_platform_fee_percent",
]


def _resolve_host(order, host):
    return host or CollectiveRepository().get_host(order.collective)


def get_platform_fee_percent(order, host=None):
    return fees.get_platform_fee_percent(order, _resolve_host(order, host), settings.FEES_DEFAULT_PLATFORM_PERCENT)


def get_host_fee_percent(order, host=None):
    return fees.get_host_fee_percent(order, _resolve_host(order, host), settings.FEES_DEFAULT_HOST_PERCENT)


def get_host_fee(total_amount: int, order, host=None) -> int:
    return fees.get_host_fee(total_amount, order, _resolve_host(order, host), settings.FEES_DEFAULT_HOST_PERCENT)


def get_platform_fee(total_amount: int, order, host=None, host_plan: dict | None = None, host_fee_share_percent=None) -> int:
    return fees.get_platform_fee(
        total_amount,
        order,
        _resolve_host(order, host),
        settings.FEES_DEFAULT_HOST_PERCENT,
        settings.FEES_DEFAULT_PLATFORM_PERCENT,
        host_plan=host_plan,
        host_fee_share_percent=host_fee_share_percent,
    )
