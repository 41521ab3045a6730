"""
Bearer-token authentication for the homeward API

Tokens are HS256 JWTs issued by the account service and signed with the
shared JWT_SECRET; the ``user_id`` claim identifies the caller.
"""
import datetime
from functools import wraps

import jwt
from flask import current_app, jsonify, request


def generate_token(user_id, days=30):
    """Generate JWT token for user"""
    payload = {
        'user_id': user_id,
        'exp': datetime.datetime.now(datetime.timezone.utc) + datetime.timedelta(days=days),
    }
    return jwt.encode(payload, current_app.config['JWT_SECRET'], algorithm='HS256')


def verify_token(token):
    """Verify JWT token and return user_id"""
    if not token:
        return None
    try:
        payload = jwt.decode(token, current_app.config['JWT_SECRET'], algorithms=['HS256'])
        return payload.get('user_id')
    except jwt.ExpiredSignatureError:
        return None
    except jwt.InvalidTokenError:
        return None


def require_auth(f):
    """Decorator to require authentication"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = request.headers.get('Authorization', '').replace('Bearer ', '')
        user_id = verify_token(token)
        if not user_id:
            return jsonify({'error': 'Unauthorized', 'code': 'unauthorized'}), 401
        return f(*args, user_id=user_id, **kwargs)
    return decorated_function
