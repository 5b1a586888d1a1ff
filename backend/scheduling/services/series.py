"""
Persistence boundary for recurring schedules.

These functions wrap the pure expander, conflict checker and mutator in
database transactions. Each validate-then-commit operation first locks the
``CalendarLock`` row of every calendar it checks, so concurrent bookings for
the same professor are serialized even when the range is still empty.
"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from django.db import models, transaction
from django.db.models import Q

from ..choices import SessionStatus
from ..conf import default_tolerance, get_setting
from ..exceptions import ConflictError, NotFoundError, ValidationError
from ..models import CalendarLock, RecurrenceRule, SessionInstance
from .conflicts import CandidateWindow, check_batch, find_conflicts, suggest_slots
from .expand import Occurrence, expand
from .mutate import apply_instance_change
from .rules import Horizon, validate_rule

logger = logging.getLogger(__name__)


class DeletePolicy(models.TextChoices):
    CASCADE = 'cascade', 'Delete generated sessions'
    DETACH = 'detach', 'Keep generated sessions as standalone'


def get_rule(rule_id) -> RecurrenceRule:
    try:
        return RecurrenceRule.objects.get(pk=rule_id)
    except (RecurrenceRule.DoesNotExist, ValueError, TypeError):
        raise NotFoundError(f'Recurrence rule {rule_id} does not exist')


def get_instance(instance_id, lock: bool = False) -> SessionInstance:
    queryset = SessionInstance.objects.all()
    if lock:
        queryset = queryset.select_for_update()
    try:
        return queryset.get(pk=instance_id)
    except (SessionInstance.DoesNotExist, ValueError, TypeError):
        raise NotFoundError(f'Session {instance_id} does not exist')


def lock_calendars(professor_ids, student_ids=()) -> None:
    """
    Lock the calendars about to be checked, creating their lock rows on first
    use. Must run inside ``transaction.atomic``; keys are locked in a fixed
    order so two writers never deadlock.
    """
    keys = {(CalendarLock.PROFESSOR, pk) for pk in professor_ids if pk is not None}
    keys |= {(CalendarLock.STUDENT, pk) for pk in student_ids if pk is not None}
    for kind, owner_id in sorted(keys):
        CalendarLock.objects.get_or_create(kind=kind, owner_id=owner_id)
        CalendarLock.objects.select_for_update().get(kind=kind, owner_id=owner_id)


def existing_instances_for(
    professor_id: int,
    start: datetime,
    end: datetime,
    student_id: Optional[int] = None,
    exclude_id: Optional[int] = None,
    tolerance: Optional[timedelta] = None,
    lock: bool = False,
) -> List[SessionInstance]:
    """
    Non-cancelled sessions of the professor (or student, when given) that can
    collide with anything between ``start`` and ``end``.
    """
    if tolerance is None:
        tolerance = default_tolerance()

    participants = Q(professor_id=professor_id)
    if student_id is not None:
        participants |= Q(student_id=student_id)

    queryset = (
        SessionInstance.objects
        .filter(participants)
        .exclude(status=SessionStatus.CANCELLED)
        .filter(start_time__lt=end + tolerance, end_time__gt=start - tolerance)
    )
    if exclude_id is not None:
        queryset = queryset.exclude(pk=exclude_id)
    if lock:
        queryset = queryset.select_for_update()
    return list(queryset.order_by('start_time', 'pk'))


def _batch_conflicts(occurrences: List[Occurrence], rule, tolerance, lock: bool):
    include_student = get_setting('CHECK_STUDENT_CONFLICTS')
    if lock:
        lock_calendars([rule.professor_id], [rule.student_id] if include_student else ())
    existing = existing_instances_for(
        rule.professor_id,
        occurrences[0].start_time,
        occurrences[-1].end_time,
        student_id=rule.student_id if include_student else None,
        tolerance=tolerance,
        lock=lock,
    )
    rejected = check_batch(occurrences, existing, tolerance, include_student)
    return existing, rejected, include_student


def preview_rule(
    rule: RecurrenceRule,
    horizon: Optional[Horizon] = None,
    tolerance: Optional[timedelta] = None,
) -> Tuple[List[Occurrence], list]:
    """Expand and conflict-check a rule without writing anything."""
    occurrences = expand(rule, horizon or Horizon.from_settings())
    if not occurrences:
        return occurrences, []
    _, rejected, _ = _batch_conflicts(occurrences, rule, tolerance, lock=False)
    return occurrences, rejected


def materialize_rule(
    rule: RecurrenceRule,
    horizon: Optional[Horizon] = None,
    tolerance: Optional[timedelta] = None,
) -> Tuple[RecurrenceRule, List[SessionInstance]]:
    """
    Save a new rule together with all of its generated sessions.

    All-or-nothing: if any occurrence conflicts with the existing calendar or
    with an earlier occurrence of the same batch, ConflictError is raised and
    neither the rule nor any session is written.
    """
    validate_rule(rule)
    horizon = horizon or Horizon.from_settings()

    with transaction.atomic():
        occurrences = expand(rule, horizon)

        if occurrences:
            existing, rejected, include_student = _batch_conflicts(occurrences, rule, tolerance, lock=True)
            if rejected:
                conflicts = [conflict for _, found in rejected for conflict in found]
                first_candidate = rejected[0][0]
                suggestions = suggest_slots(
                    first_candidate, existing, tolerance, include_student=include_student
                )
                logger.warning(
                    'Rejected rule for professor %s: %d of %d occurrences conflict',
                    rule.professor_id, len(rejected), len(occurrences),
                )
                raise ConflictError(conflicts, suggestions)

        rule.save()
        SessionInstance.objects.bulk_create(
            [occurrence.to_instance(rule) for occurrence in occurrences]
        )

    logger.info(
        'Materialized rule %s with %d sessions for professor %s',
        rule.pk, len(occurrences), rule.professor_id,
    )
    return rule, list(rule.instances.order_by('start_time', 'pk'))


def delete_rule(rule: RecurrenceRule, policy) -> int:
    """
    Delete a rule, either deleting its sessions (cascade) or keeping them as
    standalone sessions (detach). Returns the number of sessions affected.
    """
    try:
        policy = DeletePolicy(policy)
    except ValueError:
        raise ValidationError.for_field(
            'policy', f'Delete policy must be one of: {list(DeletePolicy.values)}'
        )

    with transaction.atomic():
        instances = SessionInstance.objects.filter(recurrence_rule=rule)
        if policy == DeletePolicy.CASCADE:
            affected, _ = instances.delete()
        else:
            affected = instances.update(recurrence_rule=None)
        rule_id = rule.pk
        rule.delete()

    logger.info('Deleted rule %s (%s): %d sessions affected', rule_id, policy.value, affected)
    return affected


def set_rule_active(rule: RecurrenceRule, active: bool) -> RecurrenceRule:
    """Toggle a rule; its generated sessions are left as they are."""
    rule.active = active
    rule.save(update_fields=['active', 'updated_at'])
    logger.info('Rule %s active=%s', rule.pk, active)
    return rule


def create_single_instance(data: dict, force: bool = False, tolerance: Optional[timedelta] = None) -> SessionInstance:
    """Create a one-off session after checking it against the calendar."""
    instance = SessionInstance(recurrence_rule=None, **data)
    if instance.end_time <= instance.start_time:
        raise ValidationError.for_field('end_time', 'End time must be after start time')

    include_student = get_setting('CHECK_STUDENT_CONFLICTS')
    with transaction.atomic():
        if instance.status != SessionStatus.CANCELLED:
            lock_calendars([instance.professor_id], [instance.student_id] if include_student else ())
            existing = existing_instances_for(
                instance.professor_id,
                instance.start_time,
                instance.end_time,
                student_id=instance.student_id if include_student else None,
                tolerance=tolerance,
                lock=True,
            )
            candidate = CandidateWindow(
                start_time=instance.start_time,
                end_time=instance.end_time,
                professor_id=instance.professor_id,
                student_id=instance.student_id,
            )
            conflicts = find_conflicts(candidate, existing, tolerance, include_student)
            if conflicts and not force:
                suggestions = suggest_slots(candidate, existing, tolerance, include_student=include_student)
                raise ConflictError(conflicts, suggestions)
        instance.save()

    logger.info('Created one-off session %s for professor %s', instance.pk, instance.professor_id)
    return instance


def _calendars_touched(instance, changes: dict, include_student: bool):
    professors = [instance.professor_id, changes.get('professor_id')]
    students = [instance.student_id, changes.get('student_id')] if include_student else []
    return (
        [pk for pk in professors if isinstance(pk, int) and not isinstance(pk, bool)],
        [pk for pk in students if isinstance(pk, int) and not isinstance(pk, bool)],
    )


def reschedule_instance(
    instance_id,
    changes: dict,
    force: bool = False,
    tolerance: Optional[timedelta] = None,
) -> SessionInstance:
    """Load one session, apply ``changes`` through the mutator and save it."""
    include_student = get_setting('CHECK_STUDENT_CONFLICTS')

    with transaction.atomic():
        # Calendars are locked before session rows, the order materialize_rule uses
        current = get_instance(instance_id)
        lock_calendars(*_calendars_touched(current, changes, include_student))

        instance = get_instance(instance_id, lock=True)
        start = changes.get('start_time', instance.start_time)
        end = changes.get('end_time', instance.end_time)
        professor_id = changes.get('professor_id', instance.professor_id)
        student_id = changes.get('student_id', instance.student_id)
        existing = []
        if isinstance(start, datetime) and isinstance(end, datetime):
            existing = existing_instances_for(
                professor_id,
                min(start, end),
                max(start, end),
                student_id=student_id if include_student else None,
                exclude_id=instance.pk,
                tolerance=tolerance,
                lock=True,
            )
        apply_instance_change(
            instance, changes, existing, tolerance=tolerance, force=force, include_student=include_student
        )
        instance.save()

    logger.info('Updated session %s (modified=%s)', instance.pk, instance.is_modified)
    return instance
