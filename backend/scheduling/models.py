from django.core.exceptions import ValidationError
from django.db import models

from .choices import EndType, Frequency, SessionStatus
from .exceptions import ValidationError as SchedulingValidationError
from .services.rules import RecurrencePattern, end_condition_from_fields, validate_rule


class RecurrenceRule(models.Model):
    """
    Template describing how often a professor/student session repeats.
    Only ``active`` changes after creation; instances keep the rule's id.
    """

    professor_id = models.PositiveIntegerField(db_index=True)
    student_id = models.PositiveIntegerField(db_index=True)

    start_date = models.DateField(help_text="Calendar date of the first occurrence")
    start_time = models.TimeField(help_text="Time of day shared by every generated session")
    end_time = models.TimeField()

    freq = models.CharField(max_length=10, choices=Frequency.choices, default=Frequency.WEEKLY)
    interval = models.PositiveIntegerField(default=1)
    week_days = models.JSONField(
        default=list,
        blank=True,
        help_text="Weekday names like ['monday', 'wednesday']. Empty = infer from start date",
    )

    end_type = models.CharField(max_length=10, choices=EndType.choices, default=EndType.NEVER)
    end_date = models.DateField(null=True, blank=True)
    end_count = models.PositiveIntegerField(null=True, blank=True)

    location = models.CharField(max_length=255, blank=True)
    value = models.PositiveIntegerField(default=0, help_text="Price in cents")
    service = models.CharField(max_length=255, blank=True)
    notes = models.TextField(blank=True)

    active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['start_date', 'start_time']

    def __str__(self):
        return f"{self.service or 'Session'} ({self.get_freq_display()}) professor {self.professor_id}"

    @property
    def pattern(self) -> RecurrencePattern:
        return RecurrencePattern(
            freq=self.freq,
            interval=self.interval,
            week_days=tuple(self.week_days or ()),
        )

    @property
    def end_condition(self):
        return end_condition_from_fields(self.end_type, self.end_date, self.end_count)

    def clean(self):
        """Validate model constraints"""
        try:
            validate_rule(self)
        except SchedulingValidationError as exc:
            raise ValidationError(exc.errors or exc.message)


class SessionInstance(models.Model):
    """
    One concrete, dated session, either standalone or generated from a rule.
    """

    recurrence_rule = models.ForeignKey(
        RecurrenceRule,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name='instances',
    )
    start_time = models.DateTimeField()
    end_time = models.DateTimeField()

    professor_id = models.PositiveIntegerField()
    student_id = models.PositiveIntegerField()
    location = models.CharField(max_length=255, blank=True)
    value = models.PositiveIntegerField(default=0, help_text="Price in cents")
    service = models.CharField(max_length=255, blank=True)
    notes = models.TextField(blank=True)
    status = models.CharField(max_length=20, choices=SessionStatus.choices, default=SessionStatus.SCHEDULED)

    # Divergence from the series template
    is_modified = models.BooleanField(default=False)
    original_start_time = models.DateTimeField(null=True, blank=True)
    original_end_time = models.DateTimeField(null=True, blank=True)
    is_series_anchor = models.BooleanField(default=False)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['start_time']
        indexes = [
            models.Index(fields=['professor_id', 'start_time']),
            models.Index(fields=['student_id', 'start_time']),
        ]

    def __str__(self):
        return f"Session {self.pk} professor {self.professor_id} at {self.start_time} ({self.status})"

    def clean(self):
        """Validate window and divergence constraints"""
        if self.start_time and self.end_time and self.end_time <= self.start_time:
            raise ValidationError("End time must be after start time")

        if self.is_modified and (self.original_start_time is None or self.original_end_time is None):
            raise ValidationError("Modified sessions must keep their original start and end times")


class CalendarLock(models.Model):
    """
    One row per professor (or student) calendar. Writers lock it with
    ``select_for_update`` before reading the calendar, so two bookings into an
    empty range are serialized too.
    """

    PROFESSOR = 'professor'
    STUDENT = 'student'
    KIND_CHOICES = [(PROFESSOR, 'Professor'), (STUDENT, 'Student')]

    kind = models.CharField(max_length=10, choices=KIND_CHOICES)
    owner_id = models.PositiveIntegerField()

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['kind', 'owner_id'], name='unique_calendar_lock'),
        ]

    def __str__(self):
        return f"{self.kind} {self.owner_id} calendar lock"
