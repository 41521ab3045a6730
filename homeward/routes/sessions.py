"""
Homeward session blueprint
Handles activation, deactivation, session status and the saved home address
"""
from flask import Blueprint, jsonify

from extensions import limiter
from homeward.auth import require_auth
from homeward.errors import ValidationError
from homeward.models.session import SESSION_CANCELLED, SESSION_COMPLETED
from homeward.routes import current_driver, get_json_body, get_services

sessions_bp = Blueprint('homeward_sessions', __name__)

CLIENT_END_REASONS = (SESSION_CANCELLED, SESSION_COMPLETED)


def _usage_dict(services, driver_id):
    usage = services.sessions.daily_usage(driver_id)
    started = usage.sessions_started if usage else 0
    return {
        'sessions_started': started,
        'sessions_remaining': max(0, services.policy.max_daily_sessions - started),
        'cooldown_until': usage.cooldown_until.isoformat() if usage and usage.cooldown_until else None,
    }


@sessions_bp.route('/activate', methods=['POST'])
@limiter.limit("10 per hour")
@require_auth
def activate(user_id):
    """
    Start a Going Home session

    POST /api/homeward/activate
    Body: {
        "destination_address": "12 Home St",
        "destination_lat": 40.7,
        "destination_lng": -74.0,
        "time_window_minutes": 45,   (optional)
        "max_detour_percent": 15     (optional)
    }
    """
    data = get_json_body()
    services = get_services()
    driver = current_driver(user_id)

    session = services.sessions.activate(
        driver.id,
        data.get('destination_address'),
        data.get('destination_lat'),
        data.get('destination_lng'),
        time_window_minutes=data.get('time_window_minutes'),
        max_detour_percent=data.get('max_detour_percent'),
    )

    return jsonify({
        'success': True,
        'session': session.to_dict(),
        'usage': _usage_dict(services, driver.id),
    }), 201


@sessions_bp.route('/deactivate', methods=['POST'])
@require_auth
def deactivate(user_id):
    """
    End the active Going Home session

    POST /api/homeward/deactivate
    Body: {"reason": "cancelled"}  (optional: cancelled, completed)
    """
    data = get_json_body()
    reason = data.get('reason') or SESSION_CANCELLED
    if reason not in CLIENT_END_REASONS:
        raise ValidationError('reason must be one of: {}'.format(', '.join(CLIENT_END_REASONS)))

    driver = current_driver(user_id)
    session = get_services().sessions.deactivate(driver.id, reason)
    if session is None:
        return jsonify({'success': True, 'session': None, 'message': 'No active session'}), 200

    return jsonify({'success': True, 'session': session.to_dict()}), 200


@sessions_bp.route('/session', methods=['GET'])
@require_auth
def get_session(user_id):
    """Current session (if any), its stats and today's usage"""
    services = get_services()
    driver = current_driver(user_id)

    session = services.sessions.get_active(driver.id)
    return jsonify({
        'active': session is not None,
        'session': session.to_dict() if session else None,
        'stats': services.sessions.get_session_stats(session.id) if session else None,
        'usage': _usage_dict(services, driver.id),
    }), 200


@sessions_bp.route('/home-address', methods=['GET'])
@require_auth
def get_home_address(user_id):
    driver = current_driver(user_id)
    home = get_services().sessions.get_home_address(driver.id)
    return jsonify({'home_address': home.to_dict() if home else None}), 200


@sessions_bp.route('/home-address', methods=['POST'])
@require_auth
def save_home_address(user_id):
    """
    Save the driver's home address

    POST /api/homeward/home-address
    Body: {"address": "12 Home St", "lat": 40.7, "lng": -74.0}
    """
    data = get_json_body()
    current_driver(user_id)
    home = get_services().sessions.save_home_address(
        user_id, data.get('address'), data.get('lat'), data.get('lng'))
    return jsonify({'success': True, 'home_address': home.to_dict()}), 200


@sessions_bp.route('/config', methods=['GET'])
def get_config():
    """Public tuning values for the driver app"""
    return jsonify(get_services().policy.public_dict()), 200


@sessions_bp.route('/earnings', methods=['GET'])
@require_auth
def get_earnings(user_id):
    driver = current_driver(user_id)
    return jsonify(get_services().escrow.get_driver_premium_earnings(driver.id)), 200
