"""
Homeward matching blueprint
Driver-side ride ranking and acceptance, rider-side availability
"""
from flask import Blueprint, jsonify

from homeward.errors import ForbiddenError, InvalidStateError, NotFoundError, ValidationError
from homeward.auth import require_auth
from homeward.routes import current_driver, get_json_body, get_services

matching_bp = Blueprint('homeward_matching', __name__)


def _active_session(services, driver):
    session = services.sessions.get_active(driver.id)
    if session is None:
        raise InvalidStateError('No active Going Home session')
    return session


@matching_bp.route('/compatible-rides', methods=['GET'])
@require_auth
def compatible_rides(user_id):
    """Pending rides that fit the driver's course home, best first"""
    services = get_services()
    driver = current_driver(user_id)
    session = _active_session(services, driver)

    results = services.ranker.find_compatible_rides(session)
    return jsonify({
        'session_id': session.id,
        'rides': [r.to_dict() for r in results],
        'count': len(results),
    }), 200


@matching_bp.route('/ride-feed', methods=['GET'])
@require_auth
def ride_feed(user_id):
    """All pending rides, flagged with homeward premiums where they fit"""
    services = get_services()
    driver = current_driver(user_id)
    rides = services.marketplace.get_pending_rides()
    return jsonify({'rides': services.ranker.annotate_ride_feed(driver.id, rides)}), 200


@matching_bp.route('/drivers-for-ride/<ride_id>', methods=['GET'])
@require_auth
def drivers_for_ride(user_id, ride_id):
    """
    Rider-side check: homeward drivers heading toward this ride

    GET /api/homeward/drivers-for-ride/<ride_id>
    """
    services = get_services()
    ride = services.marketplace.get_ride(ride_id)
    if ride is None:
        raise NotFoundError('Ride not found')
    if ride.rider_id != user_id:
        raise ForbiddenError('Not authorised for this ride')

    candidates = services.ranker.find_sessions_for_ride(ride.pickup, ride.dropoff, ride.estimated_fare)
    availability = services.ranker.check_availability(
        ride.pickup, ride.dropoff, ride.estimated_fare, candidates=candidates)
    availability['candidates'] = [c.to_dict() for c in candidates]
    return jsonify(availability), 200


@matching_bp.route('/accept-match', methods=['POST'])
@require_auth
def accept_match(user_id):
    """
    Accept a ride for the active session

    POST /api/homeward/accept-match
    Body: {"session_id": "uuid", "ride_id": "uuid"}
    """
    data = get_json_body()
    session_id = data.get('session_id')
    ride_id = data.get('ride_id')
    if not session_id or not ride_id:
        raise ValidationError('session_id and ride_id are required')

    driver = current_driver(user_id)
    result, match = get_services().ranker.accept_match(driver.id, session_id, ride_id)
    return jsonify({
        'success': True,
        'match_id': match.id,
        'match': result.to_dict(),
        'driver_premium_share': float(match.driver_premium_share),
    }), 201
