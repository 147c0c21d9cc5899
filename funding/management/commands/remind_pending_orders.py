"""
Management command reminding host admins of bank transfers still pending.
"""
from datetime import timedelta

from django.core.management.base import BaseCommand
from django.utils import timezone

from funding.infra.repositories import OrderRepository
from funding.services.notifications import NotificationService


class Command(BaseCommand):
    help = 'Remind hosts of pending financial contributions'

    def add_arguments(self, parser):
        parser.add_argument(
            '--days',
            type=int,
            default=7,
            help='Only remind about orders pending for at least this many days',
        )

    def handle(self, *args, **options):
        order_repo = OrderRepository()
        notification_service = NotificationService()

        created_before = timezone.now() - timedelta(days=options['days'])
        orders = order_repo.get_pending(created_before=created_before)
        for order in orders:
            order_repo.populate(order)
            notification_service.send_reminder_pending_order_email(order)

        self.stdout.write(
            self.style.SUCCESS(f'Recorded reminders for {len(orders)} pending orders')
        )
