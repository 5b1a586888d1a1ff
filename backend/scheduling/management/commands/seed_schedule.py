"""
Management command to seed the schedule with sample data.
Creates recurring rules of each shape, a one-off session and a moved session.
"""

from datetime import time, timedelta

from django.core.management.base import BaseCommand
from django.utils import timezone

from scheduling.choices import EndType, Frequency
from scheduling.exceptions import ConflictError
from scheduling.models import RecurrenceRule
from scheduling.services.series import create_single_instance, materialize_rule, reschedule_instance


class Command(BaseCommand):
    help = 'Seed the schedule with sample recurrence rules and sessions'

    def handle(self, *args, **options):
        # Check if data already exists
        if RecurrenceRule.objects.exists():
            self.stdout.write(
                self.style.WARNING(
                    f'Schedule already has {RecurrenceRule.objects.count()} rules. '
                    'Skipping seed to avoid duplicates. Use clear_schedule command first if needed.'
                )
            )
            return

        self.stdout.write('Seeding schedule data...')

        today = timezone.localdate()
        # Find next Monday for weekly rules
        next_monday = today + timedelta(days=(7 - today.weekday()) % 7 or 7)

        rules = [
            # 1. Monday/Wednesday strength sessions, 12 occurrences
            RecurrenceRule(
                professor_id=1, student_id=101,
                start_date=next_monday, start_time=time(7, 0), end_time=time(8, 0),
                freq=Frequency.WEEKLY, interval=1, week_days=['monday', 'wednesday'],
                end_type=EndType.COUNT, end_count=12,
                location='Studio A', value=15000, service='Strength training',
            ),
            # 2. Fortnightly Friday assessment until a date
            RecurrenceRule(
                professor_id=1, student_id=102,
                start_date=next_monday + timedelta(days=4), start_time=time(18, 0), end_time=time(19, 0),
                freq=Frequency.WEEKLY, interval=2, week_days=['friday'],
                end_type=EndType.DATE, end_date=next_monday + timedelta(days=90),
                location='Studio B', value=20000, service='Assessment',
            ),
            # 3. Daily mobility, open-ended (bounded by the horizon)
            RecurrenceRule(
                professor_id=2, student_id=103,
                start_date=today, start_time=time(6, 30), end_time=time(7, 0),
                freq=Frequency.DAILY, interval=1,
                location='Park', value=5000, service='Mobility',
            ),
            # 4. Monthly nutrition review
            RecurrenceRule(
                professor_id=2, student_id=104,
                start_date=today, start_time=time(12, 0), end_time=time(12, 45),
                freq=Frequency.MONTHLY, interval=1,
                end_type=EndType.COUNT, end_count=6,
                location='Online', value=8000, service='Nutrition review',
            ),
        ]

        created = []
        for rule in rules:
            try:
                rule, instances = materialize_rule(rule)
            except ConflictError as exc:
                self.stdout.write(
                    self.style.WARNING(f'Skipped {rule.service}: {len(exc.conflicts)} conflicts')
                )
                continue
            created.append(instances)
            self.stdout.write(f'Created {rule.get_freq_display()} {rule.service} with {len(instances)} sessions')

        # 5. One-off session
        tomorrow = timezone.now().replace(hour=15, minute=0, second=0, microsecond=0) + timedelta(days=1)
        try:
            one_off = create_single_instance({
                'start_time': tomorrow,
                'end_time': tomorrow + timedelta(hours=1),
                'professor_id': 3,
                'student_id': 105,
                'location': 'Studio A',
                'value': 12000,
                'service': 'Trial class',
            })
            self.stdout.write(f'Created one-off session at {one_off.start_time}')
        except ConflictError as exc:
            self.stdout.write(self.style.WARNING(f'Skipped one-off session: {len(exc.conflicts)} conflicts'))

        # 6. Move the second strength session by +2 hours
        if created and len(created[0]) > 1:
            second = created[0][1]
            try:
                moved = reschedule_instance(second.pk, {
                    'start_time': second.start_time + timedelta(hours=2),
                    'end_time': second.end_time + timedelta(hours=2),
                    'notes': 'Moved 2 hours later at student request',
                })
                self.stdout.write(f'Moved session {moved.pk} from {moved.original_start_time} to {moved.start_time}')
            except ConflictError as exc:
                self.stdout.write(self.style.WARNING(f'Could not move session: {len(exc.conflicts)} conflicts'))

        self.stdout.write(
            self.style.SUCCESS(
                f'Successfully seeded schedule with {RecurrenceRule.objects.count()} recurrence rules'
            )
        )
