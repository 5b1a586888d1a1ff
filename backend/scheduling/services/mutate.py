"""
Single-instance changes that leave the rest of a series untouched.
"""

import logging
from datetime import datetime, timedelta
from typing import Iterable, Optional

from ..choices import SessionStatus
from ..conf import get_setting
from ..exceptions import ConflictError, ValidationError
from .conflicts import CandidateWindow, find_conflicts, suggest_slots

logger = logging.getLogger(__name__)


TIME_FIELDS = ('start_time', 'end_time')
PARTICIPANT_FIELDS = ('professor_id', 'student_id')
MUTABLE_FIELDS = TIME_FIELDS + PARTICIPANT_FIELDS + ('status', 'location', 'value', 'service', 'notes')


def _validate_changes(instance, changes: dict) -> None:
    errors = {}

    unknown = sorted(set(changes) - set(MUTABLE_FIELDS))
    for name in unknown:
        errors[name] = ['This field cannot be changed on a session']

    for name in TIME_FIELDS:
        if name in changes and not isinstance(changes[name], datetime):
            errors[name] = ['Must be a datetime']

    for name in PARTICIPANT_FIELDS:
        if name in changes:
            value = changes[name]
            if isinstance(value, bool) or not isinstance(value, int):
                errors[name] = ['Must be an integer id']

    if 'status' in changes and changes['status'] not in SessionStatus.values:
        errors['status'] = [f'Status must be one of: {list(SessionStatus.values)}']

    if 'value' in changes:
        value = changes['value']
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            errors['value'] = ['Value must be a non-negative integer amount in cents']

    if not errors:
        start = changes.get('start_time', instance.start_time)
        end = changes.get('end_time', instance.end_time)
        if end <= start:
            errors['end_time'] = ['End time must be after start time']

    if errors:
        raise ValidationError('Invalid session change', errors=errors)


def apply_instance_change(
    instance,
    changes: dict,
    existing: Iterable,
    tolerance: Optional[timedelta] = None,
    force: bool = False,
    include_student: Optional[bool] = None,
):
    """
    Apply ``changes`` to one session and return it (unsaved).

    A new time or professor, or un-cancelling, is conflict-checked against
    ``existing`` with the session itself excluded; a collision raises ConflictError unless ``force``
    is set. The first time or participant change marks the session as
    modified and records its original window, which is never overwritten.
    """
    _validate_changes(instance, changes)
    if include_student is None:
        include_student = get_setting('CHECK_STUDENT_CONFLICTS')

    time_changed = any(
        name in changes and changes[name] != getattr(instance, name) for name in TIME_FIELDS
    )
    participants_changed = any(
        name in changes and changes[name] != getattr(instance, name) for name in PARTICIPANT_FIELDS
    )
    new_status = changes.get('status', instance.status)

    needs_check = time_changed or changes.get('professor_id', instance.professor_id) != instance.professor_id
    if include_student and changes.get('student_id', instance.student_id) != instance.student_id:
        needs_check = True
    # Reinstating a cancelled session reclaims a slot that may have been rebooked
    if instance.status == SessionStatus.CANCELLED and new_status != SessionStatus.CANCELLED:
        needs_check = True

    if needs_check and new_status != SessionStatus.CANCELLED:
        candidate = CandidateWindow(
            start_time=changes.get('start_time', instance.start_time),
            end_time=changes.get('end_time', instance.end_time),
            professor_id=changes.get('professor_id', instance.professor_id),
            student_id=changes.get('student_id', instance.student_id),
            pk=instance.pk,
        )
        others = [other for other in existing if other is not instance]
        conflicts = find_conflicts(candidate, others, tolerance, include_student)
        if conflicts:
            if not force:
                logger.warning(
                    'Rejected change to session %s: %d conflicts', instance.pk, len(conflicts)
                )
                suggestions = suggest_slots(candidate, others, tolerance, include_student=include_student)
                raise ConflictError(conflicts, suggestions)
            logger.warning(
                'Forcing change to session %s over %d conflicts', instance.pk, len(conflicts)
            )

    if time_changed or participants_changed:
        if not instance.is_modified or instance.original_start_time is None:
            instance.original_start_time = instance.start_time
            instance.original_end_time = instance.end_time
        instance.is_modified = True

    for name, value in changes.items():
        setattr(instance, name, value)

    return instance
