"""
Test cases for recurrence expansion service.
Tests each recurrence shape, end conditions and the horizon ceiling.
"""

from datetime import date, datetime, time, timedelta, timezone as dt_timezone

from django.test import SimpleTestCase, override_settings

from scheduling.choices import EndType, Frequency
from scheduling.exceptions import ValidationError
from scheduling.models import RecurrenceRule
from scheduling.services.expand import expand, get_weekday_name
from scheduling.services.rules import Horizon


def make_rule(**overrides):
    fields = {
        'professor_id': 1,
        'student_id': 2,
        'start_date': date(2024, 1, 1),
        'start_time': time(9, 0),
        'end_time': time(10, 0),
        'freq': Frequency.WEEKLY,
        'interval': 1,
        'week_days': [],
        'end_type': EndType.NEVER,
        'location': 'Studio A',
        'value': 15000,
        'service': 'Personal training',
        'notes': 'Bring water',
    }
    fields.update(overrides)
    return RecurrenceRule(**fields)


HORIZON = Horizon(max_occurrences=365)


def start_dates(occurrences):
    return [occ.start_time.date() for occ in occurrences]


class RecurrenceExpansionTest(SimpleTestCase):
    """Test recurrence pattern expansion"""

    def test_weekly_end_to_end(self):
        """Weekly on Tuesday, three occurrences from a Tuesday anchor"""
        rule = make_rule(
            start_date=date(2024, 1, 2),
            week_days=['tuesday'],
            end_type=EndType.COUNT,
            end_count=3,
        )

        occurrences = expand(rule, HORIZON)

        self.assertEqual(start_dates(occurrences), [date(2024, 1, 2), date(2024, 1, 9), date(2024, 1, 16)])
        for occ in occurrences:
            self.assertEqual(occ.start_time.time(), time(9, 0))
            self.assertEqual(occ.end_time.time(), time(10, 0))
            self.assertEqual(occ.start_time.utcoffset(), timedelta(0))
        self.assertEqual([occ.is_series_anchor for occ in occurrences], [True, False, False])

    def test_descriptive_fields_copied(self):
        rule = make_rule(end_type=EndType.COUNT, end_count=2)

        for occ in expand(rule, HORIZON):
            self.assertEqual(occ.professor_id, 1)
            self.assertEqual(occ.student_id, 2)
            self.assertEqual(occ.location, 'Studio A')
            self.assertEqual(occ.value, 15000)
            self.assertEqual(occ.service, 'Personal training')
            self.assertEqual(occ.notes, 'Bring water')
            self.assertEqual(occ.status, 'scheduled')

    def test_daily_frequency(self):
        """Daily with interval 3"""
        rule = make_rule(freq=Frequency.DAILY, interval=3, end_type=EndType.COUNT, end_count=3)

        occurrences = expand(rule, HORIZON)
        self.assertEqual(start_dates(occurrences), [date(2024, 1, 1), date(2024, 1, 4), date(2024, 1, 7)])

    def test_weekly_inferred_weekday(self):
        """Weekly without weekdays keeps the anchor's weekday"""
        rule = make_rule(start_date=date(2024, 1, 2), interval=2, end_type=EndType.COUNT, end_count=3)

        occurrences = expand(rule, HORIZON)
        self.assertEqual(start_dates(occurrences), [date(2024, 1, 2), date(2024, 1, 16), date(2024, 1, 30)])

    def test_weekly_weekday_filter(self):
        """Monday and Wednesday over four weeks gives exactly eight sessions"""
        rule = make_rule(
            week_days=['wednesday', 'monday'],
            end_type=EndType.DATE,
            end_date=date(2024, 1, 28),
        )

        occurrences = expand(rule, HORIZON)
        self.assertEqual(len(occurrences), 8)
        for occ in occurrences:
            self.assertIn(get_weekday_name(occ.start_time), ['monday', 'wednesday'])

        # Emitted in date order regardless of the listed weekday order
        dates = start_dates(occurrences)
        self.assertEqual(dates, sorted(dates))

    def test_interval_skips_whole_weeks(self):
        """Every other Friday never lands on odd weeks"""
        anchor = date(2024, 1, 5)
        rule = make_rule(
            start_date=anchor,
            interval=2,
            week_days=['friday'],
            end_type=EndType.COUNT,
            end_count=4,
        )

        occurrences = expand(rule, HORIZON)
        weeks = [(day - anchor).days // 7 for day in start_dates(occurrences)]
        self.assertEqual(weeks, [0, 2, 4, 6])

    def test_interval_window_starts_at_anchor(self):
        """The 7-day window runs from the anchor, so Monday after a Wednesday anchor is in week 0"""
        rule = make_rule(
            start_date=date(2024, 1, 3),
            interval=2,
            week_days=['monday', 'wednesday'],
            end_type=EndType.COUNT,
            end_count=4,
        )

        occurrences = expand(rule, HORIZON)
        self.assertEqual(
            start_dates(occurrences),
            [date(2024, 1, 3), date(2024, 1, 8), date(2024, 1, 17), date(2024, 1, 22)],
        )

    def test_anchor_not_matching_weekdays(self):
        """First occurrence is the first matching day after the anchor"""
        rule = make_rule(
            start_date=date(2024, 1, 2),
            week_days=['thursday'],
            end_type=EndType.COUNT,
            end_count=2,
        )

        occurrences = expand(rule, HORIZON)
        self.assertEqual(start_dates(occurrences), [date(2024, 1, 4), date(2024, 1, 11)])
        self.assertTrue(occurrences[0].is_series_anchor)

    def test_monthly_clamps_to_month_end(self):
        """Day 31 lands on the last day of shorter months without drifting"""
        rule = make_rule(
            freq=Frequency.MONTHLY,
            start_date=date(2024, 1, 31),
            end_type=EndType.COUNT,
            end_count=4,
        )

        occurrences = expand(rule, HORIZON)
        self.assertEqual(
            start_dates(occurrences),
            [date(2024, 1, 31), date(2024, 2, 29), date(2024, 3, 31), date(2024, 4, 30)],
        )

    def test_yearly_leap_day(self):
        rule = make_rule(
            freq=Frequency.YEARLY,
            start_date=date(2024, 2, 29),
            end_type=EndType.COUNT,
            end_count=3,
        )

        occurrences = expand(rule, HORIZON)
        self.assertEqual(
            start_dates(occurrences),
            [date(2024, 2, 29), date(2025, 2, 28), date(2026, 2, 28)],
        )


class TimeZoneTest(SimpleTestCase):
    """Rule times are wall-clock times in the project time zone"""

    @override_settings(TIME_ZONE='America/Sao_Paulo')
    def test_project_time_zone(self):
        rule = make_rule(start_date=date(2024, 1, 2), end_type=EndType.COUNT, end_count=1)

        occurrence = expand(rule, HORIZON)[0]

        self.assertEqual(occurrence.start_time.time(), time(9, 0))
        self.assertEqual(occurrence.start_time, datetime(2024, 1, 2, 12, 0, tzinfo=dt_timezone.utc))
        self.assertEqual(occurrence.end_time, datetime(2024, 1, 2, 13, 0, tzinfo=dt_timezone.utc))

    def test_explicit_time_zone(self):
        rule = make_rule(start_date=date(2024, 1, 2), end_type=EndType.COUNT, end_count=1)

        occurrence = expand(rule, HORIZON, tz=dt_timezone(timedelta(hours=2)))[0]

        self.assertEqual(occurrence.start_time, datetime(2024, 1, 2, 7, 0, tzinfo=dt_timezone.utc))


class EndConditionTest(SimpleTestCase):
    """Test end conditions and the safety horizon"""

    def test_count_bound(self):
        rule = make_rule(freq=Frequency.DAILY, end_type=EndType.COUNT, end_count=5)
        self.assertEqual(len(expand(rule, HORIZON)), 5)

    def test_end_date_inclusive(self):
        rule = make_rule(freq=Frequency.DAILY, end_type=EndType.DATE, end_date=date(2024, 1, 3))

        occurrences = expand(rule, HORIZON)
        self.assertEqual(start_dates(occurrences), [date(2024, 1, 1), date(2024, 1, 2), date(2024, 1, 3)])

    def test_never_is_bounded_by_count_ceiling(self):
        rule = make_rule(freq=Frequency.DAILY)
        self.assertEqual(len(expand(rule, Horizon(max_occurrences=365))), 365)

    def test_never_is_bounded_by_horizon_date(self):
        rule = make_rule(freq=Frequency.DAILY)

        occurrences = expand(rule, Horizon(max_occurrences=1000, until=date(2024, 1, 10)))
        self.assertEqual(len(occurrences), 10)
        self.assertEqual(occurrences[-1].start_time.date(), date(2024, 1, 10))

    def test_horizon_truncates_count(self):
        rule = make_rule(freq=Frequency.DAILY, end_type=EndType.COUNT, end_count=50)
        self.assertEqual(len(expand(rule, Horizon(max_occurrences=20))), 20)

    def test_zero_occurrences_is_valid(self):
        """Weekdays that never fall inside the end date window"""
        rule = make_rule(week_days=['saturday'], end_type=EndType.DATE, end_date=date(2024, 1, 5))
        self.assertEqual(expand(rule, HORIZON), [])

    def test_deterministic(self):
        rule = make_rule(week_days=['monday', 'friday'], interval=2, end_type=EndType.COUNT, end_count=10)
        self.assertEqual(expand(rule, HORIZON), expand(rule, HORIZON))

    def test_horizon_from_settings(self):
        horizon = Horizon.from_settings(today=date(2024, 1, 31))
        self.assertEqual(horizon.max_occurrences, 365)
        self.assertEqual(horizon.until, date(2024, 7, 31))


class RuleValidationTest(SimpleTestCase):
    """Malformed rules are rejected before expansion"""

    def assertRejected(self, field, **overrides):
        with self.assertRaises(ValidationError) as ctx:
            expand(make_rule(**overrides), HORIZON)
        self.assertIn(field, ctx.exception.errors)

    def test_zero_interval(self):
        self.assertRejected('interval', interval=0)

    def test_negative_interval(self):
        self.assertRejected('interval', interval=-1)

    def test_count_without_count(self):
        self.assertRejected('end_count', end_type=EndType.COUNT, end_count=None)

    def test_date_without_date(self):
        self.assertRejected('end_date', end_type=EndType.DATE, end_date=None)

    def test_end_date_before_start(self):
        self.assertRejected('end_date', end_type=EndType.DATE, end_date=date(2023, 12, 31))

    def test_zero_count(self):
        self.assertRejected('end_count', end_type=EndType.COUNT, end_count=0)

    def test_end_time_not_after_start(self):
        self.assertRejected('end_time', end_time=time(9, 0))

    def test_unknown_weekday(self):
        self.assertRejected('week_days', week_days=['funday'])


class UtilityFunctionTest(SimpleTestCase):
    """Test utility functions"""

    def test_get_weekday_name(self):
        monday = datetime(2025, 1, 20, 9, 0, tzinfo=dt_timezone.utc)
        self.assertEqual(get_weekday_name(monday), 'monday')
        self.assertEqual(get_weekday_name(monday + timedelta(days=1)), 'tuesday')
        self.assertEqual(get_weekday_name(monday + timedelta(days=6)), 'sunday')
