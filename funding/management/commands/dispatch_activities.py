"""
Management command sending the notifications of recorded activities.
"""
import time

from django.core.management.base import BaseCommand

from funding.services.activities import ActivityDispatcher


class Command(BaseCommand):
    help = 'Dispatch outbox activities (notification emails)'

    def add_arguments(self, parser):
        parser.add_argument(
            '--limit',
            type=int,
            default=100,
            help='Maximum number of activities to dispatch in one run',
        )
        parser.add_argument(
            '--loop',
            action='store_true',
            help='Run in loop (for production)',
        )
        parser.add_argument(
            '--interval',
            type=int,
            default=3,
            help='Interval between loops in seconds',
        )

    def handle(self, *args, **options):
        limit = options['limit']
        interval = options['interval']

        dispatcher = ActivityDispatcher()

        if options['loop']:
            self.stdout.write(f'Starting dispatcher in loop mode (interval: {interval}s)')
            while True:
                try:
                    processed = dispatcher.process_activities(limit=limit)
                    if processed > 0:
                        self.stdout.write(
                            self.style.SUCCESS(f'Dispatched {processed} activities')
                        )
                    time.sleep(interval)
                except KeyboardInterrupt:
                    self.stdout.write(self.style.WARNING('Stopped by user'))
                    break
        else:
            processed = dispatcher.process_activities(limit=limit)
            self.stdout.write(
                self.style.SUCCESS(f'Dispatched {processed} activities')
            )
