"""
Domain model for Collective (account) entities.
"""
from __future__ import annotations

from enum import Enum
from uuid import UUID, uuid4


class CollectiveType(str, Enum):
    """Account type enumeration."""
    USER = "USER"
    ORGANIZATION = "ORGANIZATION"
    COLLECTIVE = "COLLECTIVE"
    EVENT = "EVENT"
    FUND = "FUND"
    PROJECT = "PROJECT"


class Collective:
    """Account that gives or receives money. A host is an organization with a host account."""

    def __init__(
        self,
        id: UUID | None = None,
        slug: str = "",
        name: str = "",
        type: CollectiveType = CollectiveType.COLLECTIVE,
        host_id: UUID | None = None,
        parent_id: UUID | None = None,
        is_host_account: bool = False,
        is_active: bool = True,
        currency: str = "USD",
        host_fee_percent: float | None = None,
        platform_fee_percent: float | None = None,
        plan: str | None = None,
        data: dict | None = None,
        settings: dict | None = None,
    ):
        self.id = id or uuid4()
        self.slug = slug
        self.name = name
        self.type = CollectiveType(type)
        self.host_id = host_id
        self.parent_id = parent_id
        self.is_host_account = is_host_account
        self.is_active = is_active
        self.currency = currency
        self.host_fee_percent = host_fee_percent
        self.platform_fee_percent = platform_fee_percent
        self.plan = plan
        self.data = data or {}
        self.settings = settings or {}

    @property
    def is_host(self) -> bool:
        return self.type == CollectiveType.ORGANIZATION and self.is_host_account

    @property
    def charged_host_id(self) -> str | None:
        """Account that receives the monthly settlement invoice."""
        if self.is_active:
            return str(self.id)
        return (self.settings.get("hostCollective") or {}).get("id")

    @property
    def info(self) -> dict:
        return {
            "id": str(self.id),
            "slug": self.slug,
            "name": self.name,
            "type": self.type.value,
            "currency": self.currency,
            "isHostAccount": self.is_host_account,
        }

    @property
    def minimal(self) -> dict:
        return {"id": str(self.id), "slug": self.slug, "name": self.name}
