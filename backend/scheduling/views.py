"""
Views for the scheduling API.
Provides recurrence-rule creation and deletion, single-session operations and
conflict checks. Scheduling errors are returned as structured JSON, never raised
to the client.
"""

import logging
from datetime import timedelta, timezone as dt_timezone

from django.utils import timezone
from django.utils.dateparse import parse_datetime
from pytz import timezone as pytz_timezone
from pytz.exceptions import UnknownTimeZoneError
from rest_framework import status, viewsets
from rest_framework.decorators import action, api_view
from rest_framework.request import Request
from rest_framework.response import Response

from .conf import get_setting
from .exceptions import SchedulingError
from .models import RecurrenceRule, SessionInstance
from .serializers import (
    ConflictCheckSerializer,
    OccurrenceSerializer,
    RecurrenceRuleSerializer,
    SessionChangeSerializer,
    SessionInstanceSerializer,
    SessionStatusSerializer,
)
from .services.conflicts import CandidateWindow, check_conflicts
from .services.series import (
    DeletePolicy,
    create_single_instance,
    delete_rule,
    existing_instances_for,
    get_instance,
    get_rule,
    materialize_rule,
    preview_rule,
    reschedule_instance,
    set_rule_active,
)

logger = logging.getLogger(__name__)


def error_response(exc: SchedulingError) -> Response:
    return Response(exc.to_dict(), status=exc.status_code)


def _flatten_errors(errors, prefix=''):
    flat = []
    if isinstance(errors, dict):
        for key, value in errors.items():
            name = key if key != 'non_field_errors' else ''
            field = f'{prefix}.{name}' if prefix and name else (name or prefix)
            flat.extend(_flatten_errors(value, field))
    elif isinstance(errors, list):
        for item in errors:
            flat.extend(_flatten_errors(item, prefix))
    else:
        flat.append({'field': prefix, 'message': str(errors)})
    return flat


def invalid_response(errors) -> Response:
    return Response(
        {'message': 'Invalid data', 'errors': _flatten_errors(errors)},
        status=status.HTTP_400_BAD_REQUEST,
    )


def _is_truthy(value) -> bool:
    return str(value).lower() in ('true', '1', 'yes')


def _parse_aware(value):
    try:
        parsed = parse_datetime(value) if value else None
    except ValueError:
        return None
    if parsed and timezone.is_naive(parsed):
        parsed = timezone.make_aware(parsed, dt_timezone.utc)
    return parsed


class RecurrenceRuleViewSet(viewsets.ReadOnlyModelViewSet):
    """
    Recurrence rules. Creating a rule materializes its sessions; a rule is
    otherwise immutable apart from its ``active`` flag.
    """
    queryset = RecurrenceRule.objects.all()
    serializer_class = RecurrenceRuleSerializer

    def get_queryset(self):
        queryset = super().get_queryset()
        params = self.request.query_params
        if params.get('professorId', '').isdigit():
            queryset = queryset.filter(professor_id=params['professorId'])
        if params.get('studentId', '').isdigit():
            queryset = queryset.filter(student_id=params['studentId'])
        if params.get('active') is not None:
            queryset = queryset.filter(active=_is_truthy(params['active']))
        return queryset

    def retrieve(self, request: Request, pk=None):
        try:
            rule = get_rule(pk)
        except SchedulingError as exc:
            return error_response(exc)
        return Response(self.get_serializer(rule).data)

    def create(self, request: Request):
        """
        Create a rule and all of its sessions in one transaction.

        Responds 409 with the conflicts and suggested slots when any generated
        session collides with the professor's calendar; nothing is saved then.
        """
        serializer = self.get_serializer(data=request.data)
        if not serializer.is_valid():
            return invalid_response(serializer.errors)

        try:
            rule, instances = materialize_rule(RecurrenceRule(**serializer.validated_data))
        except SchedulingError as exc:
            return error_response(exc)

        return Response({
            'rule': RecurrenceRuleSerializer(rule).data,
            'instances': SessionInstanceSerializer(instances, many=True).data,
        }, status=status.HTTP_201_CREATED)

    def destroy(self, request: Request, pk=None):
        """
        Delete a rule.

        Query parameter:
        - policy: 'cascade' deletes the generated sessions, 'detach' keeps them
          as standalone sessions
        """
        policy = request.query_params.get('policy')
        if not policy:
            return Response(
                {'message': f'policy query parameter is required: {list(DeletePolicy.values)}'},
                status=status.HTTP_400_BAD_REQUEST
            )

        try:
            rule = get_rule(pk)
            affected = delete_rule(rule, policy)
        except SchedulingError as exc:
            return error_response(exc)

        return Response(
            {'message': 'Recurrence rule deleted', 'policy': policy, 'affected': affected},
            status=status.HTTP_200_OK
        )

    @action(detail=True, methods=['post'])
    def active(self, request: Request, pk=None):
        """Activate or deactivate a rule: {"active": false}"""
        value = request.data.get('active')
        if not isinstance(value, bool):
            return Response(
                {'message': 'active must be a boolean'},
                status=status.HTTP_400_BAD_REQUEST
            )

        try:
            rule = set_rule_active(get_rule(pk), value)
        except SchedulingError as exc:
            return error_response(exc)
        return Response(self.get_serializer(rule).data)

    @action(detail=False, methods=['post'])
    def preview(self, request: Request):
        """Expand a rule payload and report conflicts without saving anything."""
        serializer = self.get_serializer(data=request.data)
        if not serializer.is_valid():
            return invalid_response(serializer.errors)

        try:
            occurrences, rejected = preview_rule(RecurrenceRule(**serializer.validated_data))
        except SchedulingError as exc:
            return error_response(exc)

        return Response({
            'instances': OccurrenceSerializer(occurrences, many=True).data,
            'hasConflict': bool(rejected),
            'conflicts': [conflict.to_dict() for _, found in rejected for conflict in found],
        })


class SessionInstanceViewSet(viewsets.ReadOnlyModelViewSet):
    """
    Concrete sessions. Time, participant and status changes go through the
    series mutator so siblings and the rule are never touched.
    """
    queryset = SessionInstance.objects.all()
    serializer_class = SessionInstanceSerializer

    def list(self, request: Request):
        """
        List sessions, optionally within a window.

        Query parameters:
        - start, end: ISO datetime strings
        - professorId, studentId, status, ruleId: filters
        - tz: Timezone name (e.g., 'America/Sao_Paulo') to add local times
        """
        params = request.query_params
        queryset = self.get_queryset()

        start = _parse_aware(params.get('start'))
        end = _parse_aware(params.get('end'))
        if (params.get('start') and not start) or (params.get('end') and not end):
            return Response(
                {'message': 'start and end must be valid ISO datetime strings'},
                status=status.HTTP_400_BAD_REQUEST
            )
        if start:
            queryset = queryset.filter(end_time__gt=start)
        if end:
            queryset = queryset.filter(start_time__lt=end)

        for param, lookup in (('professorId', 'professor_id'), ('studentId', 'student_id'), ('ruleId', 'recurrence_rule_id')):
            value = params.get(param)
            if value:
                if not value.isdigit():
                    return Response(
                        {'message': f'{param} must be an integer'},
                        status=status.HTTP_400_BAD_REQUEST
                    )
                queryset = queryset.filter(**{lookup: int(value)})
        if params.get('status'):
            queryset = queryset.filter(status=params['status'])

        local_tz = None
        tz_name = params.get('tz')
        if tz_name:
            try:
                local_tz = pytz_timezone(tz_name)
            except UnknownTimeZoneError:
                return Response(
                    {'message': f'Invalid timezone: {tz_name}'},
                    status=status.HTTP_400_BAD_REQUEST
                )

        instances = list(queryset.order_by('start_time', 'pk'))
        data = self.get_serializer(instances, many=True).data
        if local_tz:
            for item, instance in zip(data, instances):
                item['localStart'] = instance.start_time.astimezone(local_tz).isoformat()
                item['localEnd'] = instance.end_time.astimezone(local_tz).isoformat()
        return Response(data)

    def retrieve(self, request: Request, pk=None):
        try:
            instance = get_instance(pk)
        except SchedulingError as exc:
            return error_response(exc)
        return Response(self.get_serializer(instance).data)

    def create(self, request: Request):
        """Create a one-off session. ?force=true books over conflicts."""
        serializer = self.get_serializer(data=request.data)
        if not serializer.is_valid():
            return invalid_response(serializer.errors)

        try:
            instance = create_single_instance(
                serializer.validated_data, force=_is_truthy(request.query_params.get('force'))
            )
        except SchedulingError as exc:
            return error_response(exc)
        return Response(self.get_serializer(instance).data, status=status.HTTP_201_CREATED)

    def partial_update(self, request: Request, pk=None):
        """
        Move or edit one session of a series.

        Expected payload (all optional):
        {
            "startTime": "2024-01-09T10:00:00Z",
            "endTime": "2024-01-09T11:00:00Z",
            "status": "rescheduled",
            "notes": "Moved at student's request"
        }
        Query parameter force=true books over conflicts.
        """
        serializer = SessionChangeSerializer(data=request.data)
        if not serializer.is_valid():
            return invalid_response(serializer.errors)
        if not serializer.validated_data:
            return Response(
                {'message': 'No fields to update'},
                status=status.HTTP_400_BAD_REQUEST
            )

        try:
            instance = reschedule_instance(
                pk, dict(serializer.validated_data), force=_is_truthy(request.query_params.get('force'))
            )
        except SchedulingError as exc:
            return error_response(exc)
        return Response(self.get_serializer(instance).data)

    @action(detail=True, methods=['patch'], url_path='status')
    def change_status(self, request: Request, pk=None):
        """
        Change only the status: {"status": "completed"}

        Reinstating a cancelled session is conflict-checked; ?force=true books
        over conflicts.
        """
        serializer = SessionStatusSerializer(data=request.data)
        if not serializer.is_valid():
            return invalid_response(serializer.errors)

        try:
            instance = reschedule_instance(
                pk, dict(serializer.validated_data), force=_is_truthy(request.query_params.get('force'))
            )
        except SchedulingError as exc:
            return error_response(exc)
        return Response(self.get_serializer(instance).data)

    def destroy(self, request: Request, pk=None):
        try:
            instance = get_instance(pk)
        except SchedulingError as exc:
            return error_response(exc)
        instance.delete()
        logger.info('Deleted session %s', pk)
        return Response(status=status.HTTP_204_NO_CONTENT)


@api_view(['POST'])
def check_conflicts_view(request):
    """
    Check a window against a professor's calendar.

    Expected payload:
    {
        "professorId": 3,
        "studentId": 12,  // optional
        "startTime": "2024-01-02T09:05:00Z",
        "endTime": "2024-01-02T10:00:00Z",
        "excludeInstanceId": 41,  // optional, the session being moved
        "toleranceMinutes": 15  // optional
    }

    Returns {"hasConflict", "conflicts", "suggestions"}.
    """
    serializer = ConflictCheckSerializer(data=request.data)
    if not serializer.is_valid():
        return invalid_response(serializer.errors)
    data = serializer.validated_data

    tolerance_minutes = data.get('tolerance_minutes')
    if tolerance_minutes is None:
        tolerance_minutes = get_setting('CONFLICT_TOLERANCE_MINUTES')
    tolerance = timedelta(minutes=tolerance_minutes)
    include_student = get_setting('CHECK_STUDENT_CONFLICTS')

    window = CandidateWindow(
        start_time=data['start_time'],
        end_time=data['end_time'],
        professor_id=data['professor_id'],
        student_id=data.get('student_id'),
        pk=data.get('exclude_id'),
    )
    try:
        # Suggestions probe the whole day, so load the day's sessions
        day_start = data['start_time'].replace(hour=0, minute=0, second=0, microsecond=0)
        existing = existing_instances_for(
            window.professor_id,
            day_start,
            max(day_start + timedelta(days=1), data['end_time']),
            student_id=window.student_id if include_student else None,
            exclude_id=window.pk,
            tolerance=tolerance,
        )
        report = check_conflicts(window, window.professor_id, existing, tolerance, include_student)
    except SchedulingError as exc:
        return error_response(exc)

    return Response(report.to_dict())
