"""
Value types describing a recurrence rule independently of storage.

The end condition is a closed set of variants so that, for example, a count
end condition without a count cannot be built.
"""

from dataclasses import dataclass, field
from datetime import date, time
from typing import Optional, Tuple, Union

from dateutil.relativedelta import relativedelta
from django.utils import timezone

from ..choices import EndType, Frequency, WEEKDAY_NAMES
from ..conf import get_setting
from ..exceptions import ValidationError


@dataclass(frozen=True)
class NeverEnds:
    end_type = EndType.NEVER


@dataclass(frozen=True)
class EndsOnDate:
    end_date: date
    end_type = EndType.DATE


@dataclass(frozen=True)
class EndsAfterCount:
    count: int
    end_type = EndType.COUNT


EndCondition = Union[NeverEnds, EndsOnDate, EndsAfterCount]


@dataclass(frozen=True)
class RecurrencePattern:
    freq: str
    interval: int = 1
    week_days: Tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class Horizon:
    """
    Safety ceiling applied on top of a rule's own end condition.

    Expansion stops at whichever comes first: ``max_occurrences`` emitted or a
    date past ``until``.
    """

    max_occurrences: int
    until: Optional[date] = None

    @classmethod
    def from_settings(cls, today: Optional[date] = None) -> 'Horizon':
        today = today or timezone.localdate()
        return cls(
            max_occurrences=get_setting('MAX_OCCURRENCES'),
            until=today + relativedelta(months=get_setting('HORIZON_MONTHS')),
        )


def end_condition_from_fields(end_type, end_date=None, end_count=None) -> EndCondition:
    """Build the end-condition variant from flat storage/wire fields."""
    if end_type in (None, '', EndType.NEVER):
        return NeverEnds()
    if end_type == EndType.DATE:
        if end_date is None:
            raise ValidationError.for_field('end_date', 'An end date is required when the rule ends on a date')
        return EndsOnDate(end_date)
    if end_type == EndType.COUNT:
        if end_count is None:
            raise ValidationError.for_field('end_count', 'An occurrence count is required when the rule ends after a count')
        return EndsAfterCount(end_count)
    raise ValidationError.for_field('end_type', f'End type must be one of: {list(EndType.values)}')


def validate_rule(rule) -> None:
    """
    Reject malformed rules before any expansion work.

    ``rule`` is anything exposing the RecurrenceRule attributes (a model
    instance, saved or not). All field errors are collected and raised together.
    """
    errors = {}

    def add(name, message):
        errors.setdefault(name, []).append(message)

    if getattr(rule, 'professor_id', None) is None:
        add('professor_id', 'A professor is required')
    if getattr(rule, 'student_id', None) is None:
        add('student_id', 'A student is required')

    if rule.freq not in Frequency.values:
        add('freq', f'Recurrence type must be one of: {list(Frequency.values)}')

    interval = rule.interval
    if isinstance(interval, bool) or not isinstance(interval, int) or interval <= 0:
        add('interval', 'Interval must be a positive integer')

    week_days = rule.week_days or []
    invalid_days = [day for day in week_days if day not in WEEKDAY_NAMES]
    if invalid_days:
        add('week_days', f'Unknown weekday names: {invalid_days}')

    if not isinstance(rule.start_date, date):
        add('start_date', 'A start date is required')
    if not isinstance(rule.start_time, time) or not isinstance(rule.end_time, time):
        add('start_time', 'Start and end times are required')
    elif rule.end_time <= rule.start_time:
        add('end_time', 'End time must be after start time')

    try:
        condition = end_condition_from_fields(rule.end_type, rule.end_date, rule.end_count)
    except ValidationError as exc:
        for name, messages in exc.errors.items():
            for message in messages:
                add(name, message)
    else:
        if isinstance(condition, EndsOnDate) and isinstance(rule.start_date, date):
            if condition.end_date < rule.start_date:
                add('end_date', 'End date must not be before the start date')
        if isinstance(condition, EndsAfterCount):
            count = condition.count
            if isinstance(count, bool) or not isinstance(count, int) or count < 1:
                add('end_count', 'Occurrence count must be at least 1')

    value = getattr(rule, 'value', 0)
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        add('value', 'Value must be a non-negative integer amount in cents')

    if errors:
        raise ValidationError('Invalid recurrence rule', errors=errors)
