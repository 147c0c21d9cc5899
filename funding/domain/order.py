"""
Domain model for Order aggregate (financial contributions).
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from uuid import UUID, uuid4

from funding.domain.collective import CollectiveType


class OrderStatus(str, Enum):
    """Order status enumeration."""
    NEW = "NEW"
    REQUIRE_CLIENT_CONFIRMATION = "REQUIRE_CLIENT_CONFIRMATION"
    PENDING = "PENDING"
    PAID = "PAID"
    ACTIVE = "ACTIVE"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"
    ERROR = "ERROR"
    REJECTED = "REJECTED"


VALID_INTERVALS = ("month", "year")


def validate_payment(amount: int, interval: str | None) -> None:
    """Check the amount and interval of a contribution before charging it."""
    if interval and interval not in VALID_INTERVALS:
        raise ValueError("Interval should be null, month or year.")
    if not amount:
        raise ValueError("payment.amount missing")


def generate_description(collective, amount: int, interval: str | None, tier=None) -> str:
    tier_name = getattr(tier, "name", None)
    tier_info = f" ({tier_name})" if tier_name else ""
    if interval:
        return f"{interval.capitalize()}ly financial contribution to {collective.name}{tier_info}"
    is_registration = amount == 0 or collective.type == CollectiveType.EVENT
    label = "Registration" if is_registration else "Financial contribution"
    return f"{label} to {collective.name}{tier_info}"


class Order:
    """Order aggregate root."""

    def __init__(
        self,
        id: UUID | None = None,
        created_by_user_id: UUID | None = None,
        from_collective_id: UUID | None = None,
        collective_id: UUID | None = None,
        tier_id: UUID | None = None,
        payment_method_id: UUID | None = None,
        subscription_id: UUID | None = None,
        total_amount: int = 0,
        currency: str = "USD",
        quantity: int = 1,
        tax_amount: int | None = None,
        description: str = "",
        public_message: str | None = None,
        private_message: str | None = None,
        interval: str | None = None,
        status: OrderStatus = OrderStatus.NEW,
        data: dict | None = None,
        processed_at: datetime | None = None,
        created_at: datetime | None = None,
        updated_at: datetime | None = None,
    ):
        if total_amount < 0:
            raise ValueError("Total amount must be non-negative")
        if quantity is not None and quantity < 1:
            raise ValueError("Quantity must be at least 1")

        self.id = id or uuid4()
        self.created_by_user_id = created_by_user_id
        self.from_collective_id = from_collective_id
        self.collective_id = collective_id
        self.tier_id = tier_id
        self.payment_method_id = payment_method_id
        self.subscription_id = subscription_id
        self.total_amount = total_amount
        self.currency = currency
        self.quantity = quantity
        self.tax_amount = tax_amount
        self.description = description
        self.public_message = public_message
        self.private_message = private_message
        self.interval = interval
        self._status = OrderStatus(status)
        self.data = data or {}
        self.processed_at = processed_at
        self.created_at = created_at
        self.updated_at = updated_at

        # Related records, filled by OrderRepository.populate()
        self.collective = None
        self.from_collective = None
        self.payment_method = None
        self.tier = None
        self.created_by_user = None

    @property
    def status(self) -> OrderStatus:
        """Get order status."""
        return self._status

    @property
    def is_fees_on_top(self) -> bool:
        return bool(self.data.get("isFeesOnTop"))

    @property
    def platform_tip(self) -> int:
        """Tip added on top of the contribution, in order currency."""
        return self.data.get("platformFee") or 0

    @property
    def net_amount(self) -> int:
        if self.is_fees_on_top and self.platform_tip:
            return self.total_amount - self.platform_tip
        return self.total_amount

    def info(self) -> dict:
        collective_type = getattr(self.collective, "type", None)
        return {
            "id": str(self.id),
            "type": "registration" if collective_type == CollectiveType.EVENT else "donation",
            "CreatedByUserId": _str_or_none(self.created_by_user_id),
            "TierId": _str_or_none(self.tier_id),
            "FromCollectiveId": _str_or_none(self.from_collective_id),
            "CollectiveId": _str_or_none(self.collective_id),
            "currency": self.currency,
            "quantity": self.quantity,
            "interval": self.interval,
            "totalAmount": self.total_amount,
            "description": self.description,
            "privateMessage": self.private_message,
            "publicMessage": self.public_message,
            "SubscriptionId": _str_or_none(self.subscription_id),
            "createdAt": _iso_or_none(self.created_at),
            "updatedAt": _iso_or_none(self.updated_at),
            "isGuest": bool(self.data.get("isGuest")),
        }

    def activity(self) -> dict:
        has_tip = self.is_fees_on_top and bool(self.platform_tip)
        return {
            "id": str(self.id),
            "totalAmount": self.net_amount,
            "netAmount": self.net_amount,
            "platformTipAmount": self.platform_tip if has_tip else None,
            "chargeAmount": self.total_amount,
            "currency": self.currency,
            "description": self.description,
            "publicMessage": self.public_message,
            "interval": self.interval,
            "quantity": self.quantity,
            "createdAt": _iso_or_none(self.created_at),
            "isGuest": bool(self.data.get("isGuest")),
        }

    def ensure_not_processed(self) -> None:
        if self.processed_at:
            raise ValueError(
                f"This order (#{self.id}) has already been processed at {self.processed_at.isoformat()}"
            )

    def mark_paid(self, processed_at: datetime) -> None:
        """Record a successful charge. Any order not processed yet can be paid."""
        self.ensure_not_processed()

        self._status = OrderStatus.PAID
        self.processed_at = processed_at
        self.data.pop("paymentIntent", None)

    def activate(self, subscription_id: UUID) -> None:
        """Attach the recurring subscription created after the first charge."""
        if self._status != OrderStatus.PAID:
            raise ValueError("Can only activate paid orders")

        self._status = OrderStatus.ACTIVE
        self.subscription_id = subscription_id

    def mark_pending(self) -> None:
        if self._status not in (OrderStatus.NEW, OrderStatus.REQUIRE_CLIENT_CONFIRMATION):
            raise ValueError("Can only set new orders as pending")

        self._status = OrderStatus.PENDING

    def mark_expired(self) -> None:
        if self._status != OrderStatus.PENDING:
            raise ValueError("Can only expire pending orders")

        self._status = OrderStatus.EXPIRED

    def mark_error(self) -> None:
        if self._status in (OrderStatus.PAID, OrderStatus.ACTIVE):
            raise ValueError("Cannot set paid orders in error")

        self._status = OrderStatus.ERROR

    def cancel(self) -> None:
        """Cancel order (stops a recurring contribution)."""
        if self._status in (OrderStatus.PAID, OrderStatus.CANCELLED, OrderStatus.REJECTED):
            raise ValueError(f"Cannot cancel {self._status.value} order")

        self._status = OrderStatus.CANCELLED


def _str_or_none(value) -> str | None:
    return str(value) if value is not None else None


def _iso_or_none(value: datetime | None) -> str | None:
    return value.isoformat() if value else None
