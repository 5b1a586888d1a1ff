"""
Access to the app-level ``SCHEDULING`` settings with defaults.
"""

from datetime import timedelta

from django.conf import settings

DEFAULTS = {
    'CONFLICT_TOLERANCE_MINUTES': 15,
    'MAX_OCCURRENCES': 365,
    'HORIZON_MONTHS': 6,
    'SUGGESTION_LIMIT': 5,
    'SLOT_LADDER_START': '06:00',
    'SLOT_LADDER_END': '20:30',
    'SLOT_STEP_MINUTES': 30,
    'CHECK_STUDENT_CONFLICTS': False,
}


def get_setting(name):
    """Return a scheduling setting, falling back to the packaged default."""
    overrides = getattr(settings, 'SCHEDULING', {}) or {}
    if name in overrides:
        return overrides[name]
    return DEFAULTS[name]


def default_tolerance() -> timedelta:
    return timedelta(minutes=get_setting('CONFLICT_TOLERANCE_MINUTES'))
