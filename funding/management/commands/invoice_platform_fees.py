"""
Management command invoicing hosts for the platform fees and tips of last month.
"""
import json
from datetime import date

from django.conf import settings
from django.core.management.base import BaseCommand, CommandError
from django.utils import timezone

from funding.domain.settlement import previous_month_label, row_to_dict
from funding.services.platform_fees import PlatformFeeService


class Command(BaseCommand):
    help = 'Invoice hosts for the platform fees and tips collected during the previous month'

    def add_arguments(self, parser):
        parser.add_argument(
            '--start-date',
            type=str,
            default=None,
            help='Day the run is made for (YYYY-MM-DD), defaults to today',
        )
        parser.add_argument(
            '--dry',
            action='store_true',
            help='Print the rows that would be invoiced without writing anything',
        )
        parser.add_argument(
            '--host-id',
            type=str,
            default=None,
            help='Only invoice this host',
        )
        parser.add_argument(
            '--offcycle',
            action='store_true',
            help='Allow a production run on another day than the 1st',
        )

    def handle(self, *args, **options):
        try:
            day = date.fromisoformat(options['start_date']) if options['start_date'] else timezone.now().date()
        except ValueError as e:
            raise CommandError(f"Invalid --start-date: {options['start_date']}") from e

        if settings.APP_ENV == 'production' and day.day != 1 and not options['offcycle']:
            self.stdout.write(self.style.WARNING(
                'APP_ENV is production and today is not the 1st of month, script aborted!'
            ))
            return

        service = PlatformFeeService()
        self.stdout.write(
            f'Invoicing hosts pending fees and tips for {previous_month_label(day)}.'
        )

        if options['dry']:
            self.stdout.write('Running dry, changes are not going to be persisted to the DB.')
            rows = service.get_platform_fees_past_month_transactions(day)
            for row in rows:
                if options['host_id'] and row.host_collective_id != options['host_id']:
                    continue
                self.stdout.write(json.dumps(row_to_dict(row)))
            return

        expenses = service.invoice_hosts(day, host_id=options['host_id'])
        self.stdout.write(
            self.style.SUCCESS(f'Created {len(expenses)} settlement expenses')
        )
