"""Utilities package"""
from .validators import (
    validate_coordinates,
    parse_location,
    parse_money,
    validate_currency_code,
)

__all__ = [
    'validate_coordinates',
    'parse_location',
    'parse_money',
    'validate_currency_code',
]
