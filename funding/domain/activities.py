"""
Platform activity types recorded in the activity outbox.
"""
from enum import Enum


class ActivityType(str, Enum):
    TICKET_CONFIRMED = "ticket.confirmed"
    ORDER_PENDING_CREATED = "order.new.pendingFinancialContribution"
    ORDER_PENDING_REMINDER = "order.reminder.pendingFinancialContribution"


# Activities mailed to the admins of the host instead of the contributor
HOST_ADMIN_ACTIVITIES = (
    ActivityType.ORDER_PENDING_CREATED,
    ActivityType.ORDER_PENDING_REMINDER,
)
