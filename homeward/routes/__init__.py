"""Routes package"""
from flask import current_app, request

from homeward.errors import ForbiddenError, ValidationError


def get_services():
    """The engine assembled for the current app"""
    return current_app.extensions['homeward']


def current_driver(user_id):
    """Resolve the authenticated user to their driver profile, 403 if they have none"""
    driver = get_services().marketplace.get_driver_for_user(user_id)
    if driver is None:
        raise ForbiddenError('Driver profile required')
    return driver


def get_json_body():
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')
    return data
