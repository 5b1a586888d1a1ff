"""
Service for expanding recurrence rules into concrete session occurrences.

Expansion is pure: it reads the rule's attributes and never touches the
database, so the same rule and horizon always yield the same occurrences.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, tzinfo
from typing import Iterator, List, Optional

from dateutil import rrule
from dateutil.relativedelta import relativedelta
from dateutil.rrule import MO, TU, WE, TH, FR, SA, SU
from django.utils import timezone

from ..choices import Frequency, SessionStatus, WEEKDAY_NAMES
from .rules import EndsAfterCount, EndsOnDate, Horizon, validate_rule

logger = logging.getLogger(__name__)


# Mapping weekday names to dateutil constants
WEEKDAY_MAP = {
    'monday': MO, 'tuesday': TU, 'wednesday': WE, 'thursday': TH,
    'friday': FR, 'saturday': SA, 'sunday': SU,
}


def get_weekday_name(day: date) -> str:
    """Get weekday name (e.g., 'monday') from a date or datetime"""
    return WEEKDAY_NAMES[day.weekday()]


@dataclass
class Occurrence:
    """A generated, not yet persisted, session of a recurrence rule."""

    start_time: datetime
    end_time: datetime
    is_series_anchor: bool
    professor_id: int
    student_id: int
    location: str = ''
    value: int = 0
    service: str = ''
    notes: str = ''
    recurrence_rule_id: Optional[int] = None
    status: str = SessionStatus.SCHEDULED
    pk = None

    def as_model_kwargs(self) -> dict:
        return {
            'start_time': self.start_time,
            'end_time': self.end_time,
            'is_series_anchor': self.is_series_anchor,
            'professor_id': self.professor_id,
            'student_id': self.student_id,
            'location': self.location,
            'value': self.value,
            'service': self.service,
            'notes': self.notes,
            'status': self.status,
        }

    def to_instance(self, rule=None):
        """Build an unsaved SessionInstance for this occurrence."""
        from ..models import SessionInstance

        return SessionInstance(recurrence_rule=rule, **self.as_model_kwargs())


def create_rrule_for_rule(rule) -> rrule.rrule:
    """
    Create a dateutil rrule for daily and weekly rules.

    Weekly rules start their week on the anchor's weekday, so every 7-day
    window begins at the anchor date and ``interval`` skips whole windows.
    """
    pattern = rule.pattern
    dtstart = datetime.combine(rule.start_date, time())

    if pattern.freq == Frequency.DAILY:
        return rrule.rrule(rrule.DAILY, dtstart=dtstart, interval=pattern.interval)

    # Use provided weekdays or infer from start date
    week_days = pattern.week_days or (get_weekday_name(rule.start_date),)
    return rrule.rrule(
        rrule.WEEKLY,
        dtstart=dtstart,
        interval=pattern.interval,
        byweekday=[WEEKDAY_MAP[day] for day in week_days],
        wkst=rule.start_date.weekday(),
    )


def _calendar_dates(rule) -> Iterator[date]:
    pattern = rule.pattern

    if pattern.freq in (Frequency.DAILY, Frequency.WEEKLY):
        for occurrence_dt in create_rrule_for_rule(rule):
            yield occurrence_dt.date()
        return

    # Always offset from the anchor so a short month never shifts later ones
    step = 0
    while True:
        if pattern.freq == Frequency.MONTHLY:
            yield rule.start_date + relativedelta(months=step * pattern.interval)
        else:
            yield rule.start_date + relativedelta(years=step * pattern.interval)
        step += 1


def expand(rule, horizon: Horizon, tz: Optional[tzinfo] = None) -> List[Occurrence]:
    """
    Expand a rule into its ordered occurrences.

    Args:
        rule: RecurrenceRule (or any object with the same attributes)
        horizon: Safety ceiling on count and projected date
        tz: Time zone the rule's wall-clock times are expressed in; defaults
            to the project TIME_ZONE

    Returns:
        Occurrences in increasing start order; the first one is the series anchor.
        An empty list is a valid result.
    """
    validate_rule(rule)
    tz = tz or timezone.get_default_timezone()

    condition = rule.end_condition
    occurrences = []

    for day in _calendar_dates(rule):
        if isinstance(condition, EndsAfterCount) and len(occurrences) >= condition.count:
            break
        if isinstance(condition, EndsOnDate) and day > condition.end_date:
            break
        if len(occurrences) >= horizon.max_occurrences:
            break
        if horizon.until is not None and day > horizon.until:
            break

        occurrences.append(Occurrence(
            start_time=timezone.make_aware(datetime.combine(day, rule.start_time), tz),
            end_time=timezone.make_aware(datetime.combine(day, rule.end_time), tz),
            is_series_anchor=not occurrences,
            professor_id=rule.professor_id,
            student_id=rule.student_id,
            location=rule.location,
            value=rule.value,
            service=rule.service,
            notes=rule.notes,
            recurrence_rule_id=rule.pk,
        ))

    logger.debug(
        'Expanded %s rule %s into %d occurrences',
        rule.freq, rule.pk, len(occurrences),
    )
    return occurrences


def expand_rule(rule, horizon: Optional[Horizon] = None) -> List[Occurrence]:
    """Expand a rule with the configured default horizon."""
    return expand(rule, horizon or Horizon.from_settings())
