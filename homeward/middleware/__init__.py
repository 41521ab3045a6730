"""Middleware package"""
from .request_id import RequestIdMiddleware, RequestIdLogFilter, get_request_id

__all__ = [
    'RequestIdMiddleware',
    'RequestIdLogFilter',
    'get_request_id',
]
