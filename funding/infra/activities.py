"""
Activity outbox: activities are written in the same database transaction as
the change that caused them and dispatched later by ActivityDispatcher.
"""
from __future__ import annotations

import logging
from uuid import UUID, uuid4

from django.db import models
from django.db.models import F
from django.core.serializers.json import DjangoJSONEncoder
from django.utils import timezone

from funding.domain.activities import ActivityType
from funding.infra.models import CollectiveORM, TimeStampedModel, UserORM

logger = logging.getLogger(__name__)


class ActivityORM(TimeStampedModel):
    """Platform activity waiting to be dispatched."""
    id = models.UUIDField(primary_key=True, default=uuid4, editable=False)
    type = models.CharField(max_length=100)
    collective = models.ForeignKey(
        CollectiveORM,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="activities",
    )
    user = models.ForeignKey(
        UserORM,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="activities",
    )
    data = models.JSONField(default=dict, encoder=DjangoJSONEncoder)
    processed = models.BooleanField(default=False)
    processed_at = models.DateTimeField(null=True, blank=True)
    retry_count = models.IntegerField(default=0)

    class Meta:
        indexes = [
            models.Index(fields=("processed", "created_at")),
            models.Index(fields=("collective", "type")),
        ]


class ActivityRepository:
    """Repository for outbox activities."""

    max_retries = 5

    def add(
        self,
        activity_type: ActivityType,
        collective_id: UUID | None,
        data: dict,
        user_id: UUID | None = None,
    ) -> UUID:
        """Record an activity (call within the caller's transaction)."""
        activity = ActivityORM.objects.create(
            type=ActivityType(activity_type).value,
            collective_id=collective_id,
            user_id=user_id,
            data=data,
        )
        logger.info(
            "activity_recorded",
            extra={"activity_id": str(activity.id), "event_type": activity.type},
        )
        return activity.id

    def get_unprocessed(self, limit: int = 100) -> list[ActivityORM]:
        """Oldest unprocessed activities that still have retries left."""
        return list(
            ActivityORM.objects
            .filter(processed=False, retry_count__lt=self.max_retries)
            .order_by("created_at")[:limit]
        )

    def mark_processed(self, activity_id: UUID) -> None:
        ActivityORM.objects.filter(id=activity_id).update(
            processed=True,
            processed_at=timezone.now(),
        )

    def increment_retry(self, activity_id: UUID) -> None:
        ActivityORM.objects.filter(id=activity_id).update(
            retry_count=F("retry_count") + 1,
        )
