"""
Shared Flask extension instances.

Kept outside the app factory so route blueprints can decorate views with
``limiter.limit`` before an app exists.
"""

import os

from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

# Redis-backed limits when REDIS_URL is set, otherwise per-process memory.
_storage_uri = os.environ.get("REDIS_URL") or "memory://"

# Bound to the app in homeward.create_app()
limiter = Limiter(
    key_func=get_remote_address,
    storage_uri=_storage_uri,
    default_limits=["100 per minute"],
)
