"""
Dispatcher sending the notifications of recorded activities.
"""
from __future__ import annotations

import logging

from funding.domain.activities import HOST_ADMIN_ACTIVITIES, ActivityType
from funding.infra.activities import ActivityORM, ActivityRepository
from funding.infra.models import UserORM
from funding.infra.repositories import CollectiveRepository
from funding.services import email

logger = logging.getLogger(__name__)


class ActivityDispatcher:
    """Sends the emails of unprocessed outbox activities."""

    def __init__(
        self,
        activity_repo: ActivityRepository | None = None,
        collective_repo: CollectiveRepository | None = None,
    ):
        self.activity_repo = activity_repo or ActivityRepository()
        self.collective_repo = collective_repo or CollectiveRepository()

    def process_activities(self, limit: int = 100) -> int:
        """Dispatch unprocessed activities. Failed ones are retried on the next run."""
        activities = self.activity_repo.get_unprocessed(limit=limit)
        processed_count = 0

        for activity in activities:
            try:
                self._dispatch(activity)
                self.activity_repo.mark_processed(activity.id)
                processed_count += 1
            except Exception as e:
                self.activity_repo.increment_retry(activity.id)
                logger.error(
                    "activity_dispatch_failed",
                    extra={
                        "activity_id": str(activity.id),
                        "event_type": activity.type,
                        "error": str(e),
                    },
                    exc_info=True,
                )

        return processed_count

    def _dispatch(self, activity: ActivityORM) -> None:
        activity_type = ActivityType(activity.type)
        if activity_type in HOST_ADMIN_ACTIVITIES:
            self._notify_admins(activity)
        elif activity_type == ActivityType.TICKET_CONFIRMED:
            self._notify_ticket_holder(activity)

    def _notify_admins(self, activity: ActivityORM) -> None:
        recipients = self.collective_repo.get_admin_emails(activity.collective_id)
        if not recipients:
            logger.warning(
                "activity_without_recipients",
                extra={"activity_id": str(activity.id), "collective_id": str(activity.collective_id)},
            )
            return

        options = {"collective": activity.data.get("host")}
        reply_to = activity.data.get("replyTo")
        if reply_to:
            options["replyTo"] = ", ".join(reply_to)

        for recipient in recipients:
            email.send(activity.type, recipient, dict(activity.data), options)

    def _notify_ticket_holder(self, activity: ActivityORM) -> None:
        user = UserORM.objects.filter(id=activity.data.get("UserId")).first()
        if user is None:
            logger.warning("activity_without_recipients", extra={"activity_id": str(activity.id)})
            return

        event = self.collective_repo.get_by_id(activity.data.get("EventCollectiveId"))
        data = {
            **activity.data,
            "user": {"id": str(user.id), "email": user.email},
            "collective": event.info if event else {},
            "event": event.info if event else {},
        }
        email.send(activity.type, user.email, data, {"collective": data["collective"]})
