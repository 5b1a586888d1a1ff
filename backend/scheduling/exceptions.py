"""
Errors raised by the scheduling core.

``ValidationError`` means the request shape is wrong and must be fixed before
retrying. ``ConflictError`` means the request is well formed but collides with
the existing calendar; it carries the conflicts and suggested free slots so the
caller can re-prompt. ``NotFoundError`` means a referenced rule or instance no
longer exists.
"""

from typing import Dict, List, Optional


class SchedulingError(Exception):
    """Base class for scheduling errors."""

    status_code = 400
    default_message = 'Scheduling request failed'

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {'message': self.message}


class ValidationError(SchedulingError):
    """Malformed rule or instance window."""

    status_code = 400
    default_message = 'Invalid data'

    def __init__(self, message: Optional[str] = None, errors: Optional[Dict[str, List[str]]] = None):
        super().__init__(message)
        self.errors = errors or {}

    def to_dict(self) -> dict:
        return {
            'message': self.message,
            'errors': [
                {'field': field, 'message': msg}
                for field, messages in self.errors.items()
                for msg in messages
            ],
        }

    @classmethod
    def for_field(cls, field: str, message: str) -> 'ValidationError':
        return cls(message, errors={field: [message]})


class ConflictError(SchedulingError):
    """Structurally valid request that collides with the existing schedule."""

    status_code = 409
    default_message = 'Scheduling conflict detected'

    def __init__(self, conflicts, suggestions=None, message: Optional[str] = None):
        super().__init__(message)
        self.conflicts = list(conflicts)
        self.suggestions = list(suggestions or [])

    def to_dict(self) -> dict:
        return {
            'message': self.message,
            'conflicts': [conflict.to_dict() for conflict in self.conflicts],
            'suggestions': [slot.to_dict() for slot in self.suggestions],
        }


class NotFoundError(SchedulingError):
    """Referenced rule or instance does not exist."""

    status_code = 404
    default_message = 'Not found'
