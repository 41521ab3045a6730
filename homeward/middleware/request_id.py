"""
Request ID middleware and log correlation
"""
import logging
import threading
import uuid

_local = threading.local()

MAX_REQUEST_ID_LENGTH = 128


def get_request_id():
    """Request ID of the request being served on this thread, or None"""
    return getattr(_local, 'request_id', None)


class RequestIdLogFilter(logging.Filter):
    """Stamps ``record.request_id`` so formatters can include it"""

    def filter(self, record):
        record.request_id = get_request_id() or '-'
        return True


class RequestIdMiddleware:
    """
    WSGI middleware that tags every request with an ID

    An incoming X-Request-ID header is reused when present and sane,
    otherwise a UUID is generated. The ID is echoed back on the response.
    """

    def __init__(self, app):
        self.app = app

    def __call__(self, environ, start_response):
        incoming = environ.get('HTTP_X_REQUEST_ID', '')
        if incoming and len(incoming) <= MAX_REQUEST_ID_LENGTH:
            request_id = incoming
        else:
            request_id = str(uuid.uuid4())

        environ['request_id'] = request_id
        _local.request_id = request_id

        def custom_start_response(status, headers, exc_info=None):
            headers.append(('X-Request-ID', request_id))
            return start_response(status, headers, exc_info)

        try:
            return self.app(environ, custom_start_response)
        finally:
            _local.request_id = None
