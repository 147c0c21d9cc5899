"""
Emails and activities sent when an order is paid or waits for a bank transfer.
"""
from __future__ import annotations

import logging
import re

from django.conf import settings
from django.utils.html import strip_tags

from funding.domain.activities import ActivityType
from funding.domain.collective import CollectiveType
from funding.infra.activities import ActivityRepository
from funding.infra.models import PayoutMethodORM
from funding.infra.repositories import CollectiveRepository
from funding.services import email

logger = logging.getLogger(__name__)

PLACEHOLDER_PATTERN = re.compile(r"{([\s\S]+?)}")

CURRENCY_SYMBOLS = {"USD": "$", "EUR": "€", "GBP": "£", "CAD": "$", "AUD": "$", "JPY": "¥"}


def format_currency(amount: int, currency: str) -> str:
    """
    >>> format_currency(1050, "EUR")
    '€10.50'
    """
    symbol = CURRENCY_SYMBOLS.get(currency)
    value = f"{amount / 100:,.2f}"
    return f"{symbol}{value}" if symbol else f"{value} {currency}"


def format_account_details(data: dict, prefix: str = "") -> str:
    """Bank account details of a payout method, one ``Label: value`` per line."""
    lines = []
    for key, value in data.items():
        if key in ("isManualBankTransfer", "currency") and not prefix:
            continue
        label = f"{prefix}{key[:1].upper()}{key[1:]}"
        if isinstance(value, dict):
            lines.append(format_account_details(value, f"{label} "))
        elif value not in (None, ""):
            lines.append(f"{label}: {value}")
    return "\n".join(line for line in lines if line)


def fill_instructions(instructions: str, values: dict) -> str:
    """
    Substitute ``{placeholder}`` in host payment instructions. Keys match
    exactly. Known values are stripped of markup and highlighted, unknown
    placeholders are left untouched.
    """

    def replace(match):
        value = values.get(match.group(1))
        return f"<strong>{strip_tags(str(value))}</strong>" if value else match.group(0)

    return PLACEHOLDER_PATTERN.sub(replace, strip_tags(instructions))


def _no_reply_sender(collective) -> str:
    return f"{collective.name} <no-reply@{collective.slug}.{settings.PLATFORM_DOMAIN}>"


def _subscriptions_link(from_collective) -> str:
    return f"{settings.WEBSITE_URL}/{from_collective.slug}/recurring-contributions"


def _user_info(user) -> dict:
    return {"id": str(user.id), "email": user.email}


def _transaction_info(transaction) -> dict:
    return {
        "id": str(transaction.id),
        "uuid": str(transaction.id),
        "type": transaction.type.value if transaction.type else None,
        "amount": transaction.amount,
        "currency": transaction.currency,
        "createdAt": transaction.created_at.isoformat() if transaction.created_at else None,
    }


class NotificationService:
    """Notifies contributors and host admins about orders."""

    def __init__(
        self,
        collective_repo: CollectiveRepository | None = None,
        activity_repo: ActivityRepository | None = None,
    ):
        self.collective_repo = collective_repo or CollectiveRepository()
        self.activity_repo = activity_repo or ActivityRepository()

    def send_email_notifications(self, order, transaction=None) -> None:
        if transaction is not None:
            self.send_order_confirmed_email(order, transaction)
        elif order.status.value == "PENDING":
            self.send_order_processing_email(order)
            self.send_manual_pending_order_email(order)

    def send_order_confirmed_email(self, order, transaction) -> None:
        collective = order.collective
        from_collective = order.from_collective
        user = order.created_by_user
        tier = order.tier
        host = self.collective_repo.get_host(collective)

        if tier is not None and tier.type == "TICKET":
            self.activity_repo.add(
                ActivityType.TICKET_CONFIRMED,
                collective.id,
                {
                    "EventCollectiveId": str(collective.id),
                    "UserId": str(user.id) if user else None,
                    "recipient": {"name": from_collective.name},
                    "order": order.activity(),
                    "tier": tier.info,
                    "host": host.info if host else {},
                },
                user_id=user.id if user else None,
            )
            return

        if user is None:
            logger.warning("order_confirmed_without_user", extra={"order_id": str(order.id)})
            return

        data = {
            "order": order.info(),
            "transaction": _transaction_info(transaction),
            "user": _user_info(user),
            "collective": collective.info,
            "host": host.info if host else {},
            "fromCollective": from_collective.minimal,
            "interval": order.interval,
            "monthlyInterval": order.interval == "month",
            "firstPayment": True,
            "subscriptionsLink": order.interval and _subscriptions_link(from_collective),
        }
        if order.is_fees_on_top and order.platform_tip:
            data["platformTipAmount"] = {"value": order.platform_tip, "currency": order.currency}

        email.send("thankyou", user.email, data, {"from": _no_reply_sender(collective)})

    def send_order_processing_email(self, order) -> None:
        """Tell the contributor how to pay a pending bank transfer."""
        collective = order.collective
        from_collective = order.from_collective
        user = order.created_by_user
        host = self.collective_repo.get_host(collective)
        parent = self.collective_repo.get_by_id(collective.parent_id)
        account = self._manual_bank_account(host) if host else None

        data = {
            "account": account,
            "order": order.info(),
            "user": _user_info(user) if user else {},
            "collective": collective.info,
            "host": host.info if host else {},
            "fromCollective": from_collective.minimal,
            "subscriptionsLink": _subscriptions_link(from_collective),
        }

        instructions = ((host.settings if host else {}).get("paymentMethods") or {}).get("manual", {}).get("instructions")
        if instructions:
            tier = order.tier
            data["instructions"] = fill_instructions(
                instructions,
                {
                    "account": account,
                    "reference": str(order.id),
                    "amount": format_currency(order.total_amount, order.currency),
                    "collective": f"{parent.slug} event" if parent else collective.slug,
                    "tier": (tier.slug or tier.name) if tier else None,
                    "OrderId": str(order.id),
                },
            )

        email.send("order.processing", user.email if user else None, data, {"from": _no_reply_sender(collective)})

    def _manual_bank_account(self, host) -> str | None:
        payout_method = PayoutMethodORM.objects.filter(
            collective_id=host.id,
            type="BANK_ACCOUNT",
            data__isManualBankTransfer=True,
        ).first()
        return format_account_details(payout_method.data) if payout_method else None

    def _pending_order_data(self, order, host, link_key: str) -> dict:
        if host.type == CollectiveType.COLLECTIVE:
            link = f"{settings.WEBSITE_URL}/{host.slug}/edit/pending-orders?searchTerm=%23{order.id}"
        else:
            link = f"{settings.WEBSITE_URL}/{host.slug}/dashboard/donations?searchTerm=%23{order.id}"
        return {
            "order": order.info(),
            "collective": order.collective.info,
            "host": host.info,
            "fromCollective": order.from_collective.minimal,
            link_key: link,
            "replyTo": self.collective_repo.get_emails(order.from_collective_id),
            "isSystem": True,
        }

    def send_manual_pending_order_email(self, order) -> None:
        host = self.collective_repo.get_host(order.collective)
        if host is None:
            return
        self.activity_repo.add(
            ActivityType.ORDER_PENDING_CREATED,
            host.id,
            self._pending_order_data(order, host, "pendingOrderLink"),
        )

    def send_reminder_pending_order_email(self, order) -> None:
        host = self.collective_repo.get_host(order.collective)
        if host is None:
            return
        self.activity_repo.add(
            ActivityType.ORDER_PENDING_REMINDER,
            host.id,
            self._pending_order_data(order, host, "viewDetailsLink"),
        )

    def send_expiring_credit_card_update_email(self, data: dict) -> None:
        data = {
            **data,
            "updateDetailsLink": f"{settings.WEBSITE_URL}/{data['slug']}/paymentmethod/{data['id']}/update",
        }
        email.send("payment.creditcard.expiring", data.get("email"), data)
