"""
Management command to clear all scheduling data (rules and sessions)
"""

from django.core.management.base import BaseCommand
from scheduling.models import RecurrenceRule, SessionInstance


class Command(BaseCommand):
    help = 'Clear all scheduling data (recurrence rules and sessions)'

    def add_arguments(self, parser):
        parser.add_argument(
            '--confirm',
            action='store_true',
            help='Confirm that you want to delete all data',
        )

    def handle(self, *args, **options):
        if not options['confirm']:
            self.stdout.write(
                self.style.WARNING(
                    'This will delete ALL scheduling data. Use --confirm to proceed.'
                )
            )
            return

        # Sessions first so none are left detached by SET_NULL
        session_count, _ = SessionInstance.objects.all().delete()
        rule_count, _ = RecurrenceRule.objects.all().delete()

        self.stdout.write(
            self.style.SUCCESS(
                f'Successfully cleared {rule_count} recurrence rules and {session_count} sessions'
            )
        )
