from rest_framework import serializers

from .choices import EndType, Frequency, SessionStatus, WEEKDAY_NAMES
from .exceptions import ValidationError as SchedulingValidationError
from .models import RecurrenceRule, SessionInstance
from .services.rules import validate_rule

# Model attribute -> wire name, used when reporting rule validation errors
RULE_WIRE_NAMES = {
    'professor_id': 'professorId',
    'student_id': 'studentId',
    'start_date': 'startDate',
    'start_time': 'startTime',
    'end_time': 'endTime',
    'freq': 'regras.type',
    'interval': 'regras.interval',
    'week_days': 'regras.weekDays',
    'end_type': 'regras.endType',
    'end_date': 'regras.endDate',
    'end_count': 'regras.endCount',
    'value': 'value',
}


class CentsField(serializers.IntegerField):
    """Money in minor currency units. Floats are rejected, not rounded."""

    default_error_messages = {
        'float': 'Monetary values must be integers in cents.',
    }

    def __init__(self, **kwargs):
        kwargs.setdefault('min_value', 0)
        super().__init__(**kwargs)

    def to_internal_value(self, data):
        if isinstance(data, float):
            self.fail('float')
        return super().to_internal_value(data)


class RecurrenceRegrasSerializer(serializers.Serializer):
    """The nested ``regras`` object of a rule."""

    type = serializers.ChoiceField(choices=Frequency.choices, source='freq')
    interval = serializers.IntegerField(min_value=1, required=False)
    weekDays = serializers.ListField(
        child=serializers.ChoiceField(choices=WEEKDAY_NAMES),
        source='week_days',
        required=False,
    )
    endType = serializers.ChoiceField(choices=EndType.choices, source='end_type', required=False)
    endDate = serializers.DateField(source='end_date', required=False, allow_null=True)
    endCount = serializers.IntegerField(source='end_count', min_value=1, required=False, allow_null=True)


class RecurrenceRuleSerializer(serializers.ModelSerializer):
    """Serializer for RecurrenceRule with the ``regras`` wire shape"""

    regras = RecurrenceRegrasSerializer(source='*')
    professorId = serializers.IntegerField(source='professor_id', min_value=1)
    studentId = serializers.IntegerField(source='student_id', min_value=1)
    startDate = serializers.DateField(source='start_date')
    startTime = serializers.TimeField(source='start_time', format='%H:%M')
    endTime = serializers.TimeField(source='end_time', format='%H:%M')
    value = CentsField(required=False)
    active = serializers.BooleanField(required=False)

    # Legacy top-level end condition, used only when regras.endType is absent
    endDate = serializers.DateField(source='legacy_end_date', write_only=True, required=False, allow_null=True)
    maxOccurrences = serializers.IntegerField(
        source='legacy_max_occurrences', write_only=True, required=False, allow_null=True, min_value=1
    )

    createdAt = serializers.DateTimeField(source='created_at', read_only=True)
    updatedAt = serializers.DateTimeField(source='updated_at', read_only=True)

    class Meta:
        model = RecurrenceRule
        fields = [
            'id', 'regras', 'professorId', 'studentId', 'startDate', 'startTime', 'endTime',
            'endDate', 'maxOccurrences', 'location', 'value', 'service', 'notes', 'active',
            'createdAt', 'updatedAt',
        ]

    def validate(self, data):
        """Resolve the end condition and apply the rule invariants"""
        legacy_end_date = data.pop('legacy_end_date', None)
        legacy_max = data.pop('legacy_max_occurrences', None)

        if not data.get('end_type'):
            if legacy_end_date is not None:
                data['end_type'] = EndType.DATE
                data['end_date'] = legacy_end_date
            elif legacy_max is not None:
                data['end_type'] = EndType.COUNT
                data['end_count'] = legacy_max
            elif data.get('end_date') is not None:
                data['end_type'] = EndType.DATE
            elif data.get('end_count') is not None:
                data['end_type'] = EndType.COUNT
            else:
                data['end_type'] = EndType.NEVER

        if data['end_type'] != EndType.DATE:
            data['end_date'] = None
        if data['end_type'] != EndType.COUNT:
            data['end_count'] = None

        try:
            validate_rule(RecurrenceRule(**data))
        except SchedulingValidationError as exc:
            raise serializers.ValidationError({
                RULE_WIRE_NAMES.get(name, name): messages
                for name, messages in exc.errors.items()
            })
        return data

    def to_representation(self, instance):
        data = super().to_representation(instance)
        data['endDate'] = instance.end_date.isoformat() if instance.end_date else None
        data['maxOccurrences'] = instance.end_count
        return data


class SessionInstanceSerializer(serializers.ModelSerializer):
    """Serializer for a single session, including series divergence fields"""

    startTime = serializers.DateTimeField(source='start_time')
    endTime = serializers.DateTimeField(source='end_time')
    professorId = serializers.IntegerField(source='professor_id', min_value=1)
    studentId = serializers.IntegerField(source='student_id', min_value=1)
    value = CentsField(required=False)
    status = serializers.ChoiceField(choices=SessionStatus.choices, required=False)

    isModified = serializers.BooleanField(source='is_modified', read_only=True)
    originalStartTime = serializers.DateTimeField(source='original_start_time', read_only=True)
    originalEndTime = serializers.DateTimeField(source='original_end_time', read_only=True)
    recurrenceRuleId = serializers.PrimaryKeyRelatedField(source='recurrence_rule', read_only=True)
    isSeriesAnchor = serializers.BooleanField(source='is_series_anchor', read_only=True)

    # Aliases kept for older clients
    recurrenceGroupId = serializers.PrimaryKeyRelatedField(source='recurrence_rule', read_only=True)
    isRecurrenceParent = serializers.BooleanField(source='is_series_anchor', read_only=True)

    createdAt = serializers.DateTimeField(source='created_at', read_only=True)
    updatedAt = serializers.DateTimeField(source='updated_at', read_only=True)

    class Meta:
        model = SessionInstance
        fields = [
            'id', 'startTime', 'endTime', 'professorId', 'studentId', 'location', 'value',
            'service', 'notes', 'status', 'isModified', 'originalStartTime', 'originalEndTime',
            'recurrenceRuleId', 'recurrenceGroupId', 'isSeriesAnchor', 'isRecurrenceParent',
            'createdAt', 'updatedAt',
        ]

    def validate(self, data):
        if data['end_time'] <= data['start_time']:
            raise serializers.ValidationError({'endTime': ['End time must be after start time']})
        return data


class SessionChangeSerializer(serializers.Serializer):
    """Partial change to one session; every field is optional"""

    startTime = serializers.DateTimeField(source='start_time', required=False)
    endTime = serializers.DateTimeField(source='end_time', required=False)
    professorId = serializers.IntegerField(source='professor_id', min_value=1, required=False)
    studentId = serializers.IntegerField(source='student_id', min_value=1, required=False)
    status = serializers.ChoiceField(choices=SessionStatus.choices, required=False)
    location = serializers.CharField(max_length=255, required=False, allow_blank=True)
    value = CentsField(required=False)
    service = serializers.CharField(max_length=255, required=False, allow_blank=True)
    notes = serializers.CharField(required=False, allow_blank=True)


class SessionStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=SessionStatus.choices)


class OccurrenceSerializer(serializers.Serializer):
    """Read-only view of a generated, unsaved occurrence"""

    startTime = serializers.DateTimeField(source='start_time')
    endTime = serializers.DateTimeField(source='end_time')
    isSeriesAnchor = serializers.BooleanField(source='is_series_anchor')
    professorId = serializers.IntegerField(source='professor_id')
    studentId = serializers.IntegerField(source='student_id')
    location = serializers.CharField()
    value = serializers.IntegerField()
    service = serializers.CharField()
    notes = serializers.CharField()
    status = serializers.CharField()


class ConflictCheckSerializer(serializers.Serializer):
    professorId = serializers.IntegerField(source='professor_id', min_value=1)
    studentId = serializers.IntegerField(source='student_id', min_value=1, required=False, allow_null=True)
    startTime = serializers.DateTimeField(source='start_time')
    endTime = serializers.DateTimeField(source='end_time')
    excludeInstanceId = serializers.IntegerField(source='exclude_id', required=False, allow_null=True)
    toleranceMinutes = serializers.IntegerField(source='tolerance_minutes', min_value=0, required=False, allow_null=True)

    def validate(self, data):
        if data['end_time'] <= data['start_time']:
            raise serializers.ValidationError({'endTime': ['End time must be after start time']})
        return data
