"""
Validation utilities
"""
import re
from decimal import Decimal, InvalidOperation

from homeward.errors import ValidationError
from homeward.geo import LatLng


def validate_coordinates(lat, lng):
    """
    Validate a latitude/longitude pair

    Args:
        lat: Latitude, number or numeric string
        lng: Longitude, number or numeric string

    Returns:
        bool: True if both parse and fall within range, False otherwise
    """
    try:
        lat = float(lat)
        lng = float(lng)
    except (TypeError, ValueError):
        return False

    if lat != lat or lng != lng:  # NaN
        return False
    return -90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0


def parse_location(lat, lng, label='location'):
    """
    Parse a coordinate pair into a LatLng

    Raises:
        ValidationError: if the pair is missing or malformed
    """
    if lat is None or lng is None or lat == '' or lng == '':
        raise ValidationError('{} is required'.format(label.capitalize()))
    if not validate_coordinates(lat, lng):
        raise ValidationError('Invalid {} coordinates'.format(label))
    return LatLng.of(lat, lng)


def parse_money(value, field, allow_zero=True):
    """
    Parse a non-negative money amount

    Args:
        value: Number or numeric string
        field (str): Field name used in the error message
        allow_zero (bool): Whether 0 is acceptable

    Returns:
        Decimal: The parsed amount
    """
    if value is None or value == '':
        raise ValidationError('{} is required'.format(field))
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError('Invalid {}'.format(field))

    if not amount.is_finite() or amount < 0 or (amount == 0 and not allow_zero):
        raise ValidationError('{} must be {}'.format(field, 'non-negative' if allow_zero else 'positive'))
    return amount


def validate_currency_code(code):
    """
    Validate an ISO 4217 style currency code (three letters)

    Returns:
        bool: True if valid, False otherwise
    """
    if not code or not isinstance(code, str):
        return False
    return bool(re.match(r'^[A-Za-z]{3}$', code))
