"""
Typed errors raised by the homeward services.

Each error carries the HTTP status the API layer answers with, so routes
can let them propagate to the handler registered in the app factory.
"""
import re

from flask import jsonify


class HomewardError(Exception):
    """Base class for every engine error."""
    status_code = 400

    def __init__(self, message=None):
        super().__init__(message or self.__doc__)
        self.message = message or self.__doc__

    @property
    def code(self):
        name = type(self).__name__
        if name.endswith('Error'):
            name = name[:-len('Error')]
        return re.sub(r'(?<!^)(?=[A-Z])', '_', name).lower()

    def to_dict(self):
        return {'error': self.message, 'code': self.code}


class ValidationError(HomewardError):
    """Invalid input."""
    status_code = 400


class LocationUnavailableError(ValidationError):
    """Unable to determine your current location. Please enable location services."""


class NotFoundError(HomewardError):
    """Not found."""
    status_code = 404


class ConflictError(HomewardError):
    """Conflicting state."""
    status_code = 409


class InvalidStateError(HomewardError):
    """Transition not permitted from the current state."""
    status_code = 409


class QuotaExceededError(HomewardError):
    """You've reached the maximum Going Home sessions for today."""
    status_code = 429


class CooldownError(HomewardError):
    """Please wait before starting another Going Home session."""
    status_code = 429

    def __init__(self, retry_after_minutes):
        self.retry_after_minutes = retry_after_minutes
        super().__init__(
            'Please wait {} minutes before starting another Going Home session.'.format(
                retry_after_minutes
            )
        )

    def to_dict(self):
        data = super().to_dict()
        data['retry_after'] = self.retry_after_minutes * 60
        return data


class ForbiddenError(HomewardError):
    """Access denied."""
    status_code = 403


class RestrictedError(ForbiddenError):
    """Going Home premium matching is disabled for this account."""


class ExpiredError(HomewardError):
    """Expired."""
    status_code = 410


class PayoutError(HomewardError):
    """The payout provider rejected the transfer."""
    status_code = 502


def register_error_handlers(app):
    """Answer every HomewardError with its JSON body and status."""

    @app.errorhandler(HomewardError)
    def handle_homeward_error(error):
        return jsonify(error.to_dict()), error.status_code
