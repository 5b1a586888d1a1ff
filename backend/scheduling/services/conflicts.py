"""
Conflict detection between a candidate session and an existing schedule.

Everything here is pure over its arguments: the caller supplies the existing
instances. Finding a conflict is a normal result, not an error; only malformed
input raises.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, time, timedelta
from typing import Iterable, List, Optional, Tuple

from ..choices import SessionStatus
from ..conf import default_tolerance, get_setting
from ..exceptions import ValidationError


@dataclass
class CandidateWindow:
    """A proposed time slot for a professor (and optionally a student)."""

    start_time: datetime
    end_time: datetime
    professor_id: Optional[int]
    student_id: Optional[int] = None
    pk: Optional[int] = None
    status: str = SessionStatus.SCHEDULED


@dataclass(frozen=True)
class TimeSlot:
    start: datetime
    end: datetime

    def to_dict(self) -> dict:
        return {
            'start': self.start.isoformat(),
            'end': self.end.isoformat(),
            'label': f"{self.start:%H:%M}-{self.end:%H:%M}",
        }


@dataclass(frozen=True)
class Conflict:
    kind: str
    instance_id: Optional[int]
    start_time: datetime
    end_time: datetime
    professor_id: Optional[int]
    student_id: Optional[int]
    status: str
    candidate_start: datetime
    candidate_end: datetime

    @property
    def message(self) -> str:
        who = 'Professor' if self.kind == 'professor_busy' else 'Student'
        return (
            f"{who} already has a session from {self.start_time:%H:%M} "
            f"to {self.end_time:%H:%M} on {self.start_time:%Y-%m-%d}"
        )

    def to_dict(self) -> dict:
        return {
            'type': self.kind,
            'instanceId': self.instance_id,
            'startTime': self.start_time.isoformat(),
            'endTime': self.end_time.isoformat(),
            'professorId': self.professor_id,
            'studentId': self.student_id,
            'status': self.status,
            'candidateStartTime': self.candidate_start.isoformat(),
            'candidateEndTime': self.candidate_end.isoformat(),
            'message': self.message,
        }


@dataclass
class ConflictReport:
    conflicts: List[Conflict] = field(default_factory=list)
    suggestions: List[TimeSlot] = field(default_factory=list)

    @property
    def has_conflict(self) -> bool:
        return bool(self.conflicts)

    def to_dict(self) -> dict:
        return {
            'hasConflict': self.has_conflict,
            'conflicts': [conflict.to_dict() for conflict in self.conflicts],
            'suggestions': [slot.to_dict() for slot in self.suggestions],
        }


def overlaps(a_start, a_end, b_start, b_end) -> bool:
    """Half-open interval overlap: touching boundaries do not overlap."""
    return a_start < b_end and b_start < a_end


def _validate_candidate(candidate, tolerance: timedelta) -> None:
    errors = {}
    if getattr(candidate, 'professor_id', None) is None:
        errors['professor_id'] = ['A professor is required']
    if candidate.start_time is None or candidate.end_time is None:
        errors['start_time'] = ['Start and end times are required']
    elif candidate.end_time <= candidate.start_time:
        errors['end_time'] = ['End time must be after start time']
    if tolerance < timedelta(0):
        errors['tolerance'] = ['Tolerance must not be negative']
    if errors:
        raise ValidationError('Invalid session window', errors=errors)


def _is_same_instance(candidate, other) -> bool:
    if other is candidate:
        return True
    pk = getattr(candidate, 'pk', None)
    return pk is not None and getattr(other, 'pk', None) == pk


def find_conflicts(
    candidate,
    existing: Iterable,
    tolerance: Optional[timedelta] = None,
    include_student: bool = False,
) -> List[Conflict]:
    """
    Return the existing sessions that collide with ``candidate``.

    Only the candidate window is padded by ``tolerance`` so a shared existing
    set can be reused across many candidates. Cancelled sessions never
    conflict; completed ones still do.
    """
    if tolerance is None:
        tolerance = default_tolerance()
    _validate_candidate(candidate, tolerance)

    padded_start = candidate.start_time - tolerance
    padded_end = candidate.end_time + tolerance
    candidate_student = getattr(candidate, 'student_id', None)

    conflicts = []
    for other in existing:
        if _is_same_instance(candidate, other):
            continue
        if other.status == SessionStatus.CANCELLED:
            continue

        if other.professor_id == candidate.professor_id:
            kind = 'professor_busy'
        elif include_student and candidate_student is not None and other.student_id == candidate_student:
            kind = 'student_busy'
        else:
            continue

        if overlaps(padded_start, padded_end, other.start_time, other.end_time):
            conflicts.append(Conflict(
                kind=kind,
                instance_id=getattr(other, 'pk', None),
                start_time=other.start_time,
                end_time=other.end_time,
                professor_id=other.professor_id,
                student_id=other.student_id,
                status=other.status,
                candidate_start=candidate.start_time,
                candidate_end=candidate.end_time,
            ))

    conflicts.sort(key=lambda c: (c.start_time, c.instance_id or 0))
    return conflicts


def check_batch(
    candidates: Iterable,
    existing: Iterable,
    tolerance: Optional[timedelta] = None,
    include_student: bool = False,
) -> List[Tuple[object, List[Conflict]]]:
    """
    Validate a batch generated by one rule.

    Each candidate is checked against the existing set and against the
    candidates accepted earlier in the same batch. Returns the rejected
    candidates with their conflicts; an empty list means the batch is clean.
    """
    existing = list(existing)
    accepted = []
    rejected = []
    for candidate in candidates:
        conflicts = find_conflicts(candidate, existing + accepted, tolerance, include_student)
        if conflicts:
            rejected.append((candidate, conflicts))
        else:
            accepted.append(candidate)
    return rejected


def slot_ladder() -> List[time]:
    """Common slot starts probed when suggesting alternatives."""
    first = time.fromisoformat(get_setting('SLOT_LADDER_START'))
    last = time.fromisoformat(get_setting('SLOT_LADDER_END'))
    step = timedelta(minutes=get_setting('SLOT_STEP_MINUTES'))

    ladder = []
    cursor = datetime.combine(datetime.min.date(), first)
    end = datetime.combine(datetime.min.date(), last)
    while cursor <= end:
        ladder.append(cursor.time())
        cursor += step
    return ladder


def suggest_slots(
    candidate,
    existing: Iterable,
    tolerance: Optional[timedelta] = None,
    limit: Optional[int] = None,
    include_student: bool = False,
) -> List[TimeSlot]:
    """
    Propose free start times on the candidate's date with the same duration.

    Suggestions are ordered by distance to the requested start, earlier slots
    first on ties.
    """
    if tolerance is None:
        tolerance = default_tolerance()
    if limit is None:
        limit = get_setting('SUGGESTION_LIMIT')
    _validate_candidate(candidate, tolerance)

    existing = list(existing)
    requested = candidate.start_time
    duration = candidate.end_time - candidate.start_time
    probe = CandidateWindow(
        start_time=requested,
        end_time=candidate.end_time,
        professor_id=candidate.professor_id,
        student_id=getattr(candidate, 'student_id', None),
        pk=getattr(candidate, 'pk', None),
    )

    free = []
    for slot_start in slot_ladder():
        start = datetime.combine(requested.date(), slot_start, tzinfo=requested.tzinfo)
        if start == requested:
            continue
        probe = replace(probe, start_time=start, end_time=start + duration)
        if not find_conflicts(probe, existing, tolerance, include_student):
            free.append(TimeSlot(start, start + duration))

    free.sort(key=lambda slot: (abs(slot.start - requested), slot.start))
    return free[:limit]


def check_conflicts(
    window,
    professor_id: Optional[int],
    existing: Iterable,
    tolerance: Optional[timedelta] = None,
    include_student: Optional[bool] = None,
) -> ConflictReport:
    """
    Check one window for a professor and report conflicts plus alternatives.

    ``window`` needs ``start_time`` and ``end_time``; ``student_id`` and ``pk``
    are used when present (``pk`` excludes the session being moved).
    """
    if include_student is None:
        include_student = get_setting('CHECK_STUDENT_CONFLICTS')
    candidate = CandidateWindow(
        start_time=window.start_time,
        end_time=window.end_time,
        professor_id=professor_id,
        student_id=getattr(window, 'student_id', None),
        pk=getattr(window, 'pk', None),
    )

    existing = list(existing)
    conflicts = find_conflicts(candidate, existing, tolerance, include_student)
    if not conflicts:
        return ConflictReport()
    suggestions = suggest_slots(candidate, existing, tolerance, include_student=include_student)
    return ConflictReport(conflicts=conflicts, suggestions=suggestions)
