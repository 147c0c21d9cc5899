"""
Host plans and their revenue sharing terms.
"""
from __future__ import annotations

DEFAULT_PLAN = "default"

PLANS = {
    "default": {"hostFeeSharePercent": 0},
    "start-plan-2021": {"hostFeeSharePercent": 15, "pricePerCollective": 0},
    "grow-plan-2021": {"hostFeeSharePercent": 15, "pricePerCollective": 0},
    "single-host-plan": {"hostFeeSharePercent": 0, "pricePerCollective": 0},
    "small-host-plan": {"hostFeeSharePercent": 0, "pricePerCollective": 1000},
    "medium-host-plan": {"hostFeeSharePercent": 0, "pricePerCollective": 1000},
    "large-host-plan": {"hostFeeSharePercent": 0, "pricePerCollective": 1000},
    "network-host-plan": {"hostFeeSharePercent": 0, "pricePerCollective": 1000},
}

SHARED_REVENUE_PLANS = ("start-plan-2021", "grow-plan-2021")


def get_host_plan(host) -> dict:
    """Plan terms of a host, with per-host overrides from ``host.data["plan"]`` applied."""
    name = host.plan if host.plan in PLANS else DEFAULT_PLAN
    plan = {"name": name, **PLANS[name]}
    plan.update(host.data.get("plan") or {})
    return plan


def get_host_fee_share_percent(plan: dict, service: str | None = None):
    """Share of the host fee owed to the platform; credit card payments may use a dedicated rate."""
    if service == "stripe" and isinstance(plan.get("creditCardHostFeeSharePercent"), (int, float)):
        return plan["creditCardHostFeeSharePercent"]
    return plan.get("hostFeeSharePercent")
