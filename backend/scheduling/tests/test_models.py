"""
Test cases for scheduling models.
"""

from datetime import date, datetime, time, timezone as dt_timezone

from django.core.exceptions import ValidationError
from django.test import TestCase

from scheduling.choices import EndType, Frequency, SessionStatus
from scheduling.models import RecurrenceRule, SessionInstance
from scheduling.services.rules import EndsAfterCount, EndsOnDate, NeverEnds


class RecurrenceRuleModelTest(TestCase):
    """Test RecurrenceRule model"""

    def setUp(self):
        self.rule = RecurrenceRule.objects.create(
            professor_id=1,
            student_id=2,
            start_date=date(2024, 1, 2),
            start_time=time(9, 0),
            end_time=time(10, 0),
            freq=Frequency.WEEKLY,
            week_days=['tuesday', 'thursday'],
            end_type=EndType.COUNT,
            end_count=10,
            service='Pilates',
        )

    def test_rule_creation(self):
        """Test basic rule creation"""
        self.assertEqual(self.rule.interval, 1)
        self.assertTrue(self.rule.active)
        self.assertEqual(self.rule.value, 0)
        self.assertIn('Pilates', str(self.rule))

    def test_pattern(self):
        pattern = self.rule.pattern
        self.assertEqual(pattern.freq, Frequency.WEEKLY)
        self.assertEqual(pattern.week_days, ('tuesday', 'thursday'))

    def test_end_condition(self):
        self.assertEqual(self.rule.end_condition, EndsAfterCount(10))

        self.rule.end_type = EndType.DATE
        self.rule.end_date = date(2024, 3, 1)
        self.assertEqual(self.rule.end_condition, EndsOnDate(date(2024, 3, 1)))

        self.rule.end_type = EndType.NEVER
        self.assertEqual(self.rule.end_condition, NeverEnds())

    def test_clean_valid(self):
        self.rule.full_clean()

    def test_clean_rejects_bad_interval(self):
        self.rule.interval = 0
        with self.assertRaises(ValidationError):
            self.rule.clean()

    def test_clean_rejects_count_without_value(self):
        self.rule.end_count = None
        with self.assertRaises(ValidationError) as ctx:
            self.rule.clean()
        self.assertIn('end_count', ctx.exception.message_dict)

    def test_clean_rejects_unknown_weekday(self):
        self.rule.week_days = ['someday']
        with self.assertRaises(ValidationError):
            self.rule.clean()


class SessionInstanceModelTest(TestCase):
    """Test SessionInstance model"""

    def setUp(self):
        self.rule = RecurrenceRule.objects.create(
            professor_id=1, student_id=2, start_date=date(2024, 1, 2),
            start_time=time(9, 0), end_time=time(10, 0),
        )
        self.instance = SessionInstance.objects.create(
            recurrence_rule=self.rule,
            start_time=datetime(2024, 1, 2, 9, 0, tzinfo=dt_timezone.utc),
            end_time=datetime(2024, 1, 2, 10, 0, tzinfo=dt_timezone.utc),
            professor_id=1,
            student_id=2,
            is_series_anchor=True,
        )

    def test_defaults(self):
        self.assertEqual(self.instance.status, SessionStatus.SCHEDULED)
        self.assertFalse(self.instance.is_modified)
        self.assertIsNone(self.instance.original_start_time)
        self.assertEqual(list(self.rule.instances.all()), [self.instance])

    def test_clean_rejects_inverted_window(self):
        self.instance.end_time = self.instance.start_time
        with self.assertRaises(ValidationError):
            self.instance.clean()

    def test_clean_requires_originals_when_modified(self):
        self.instance.is_modified = True
        with self.assertRaises(ValidationError):
            self.instance.clean()

        self.instance.original_start_time = self.instance.start_time
        self.instance.original_end_time = self.instance.end_time
        self.instance.clean()

    def test_rule_delete_keeps_instances(self):
        """Deleting the rule row directly leaves standalone sessions"""
        self.rule.delete()
        self.instance.refresh_from_db()
        self.assertIsNone(self.instance.recurrence_rule)
