"""
Homeward escrow payment routes.
The rider funds an intent; the driver's premium share is paid out at
funding and the rest of the fare at release.
"""
from flask import Blueprint, jsonify

from extensions import limiter
from homeward import db
from homeward.auth import require_auth
from homeward.errors import ForbiddenError, NotFoundError, ValidationError
from homeward.models import HomewardSession
from homeward.routes import get_json_body, get_services

escrow_bp = Blueprint('homeward_escrow', __name__)


def _party(services, intent, user_id):
    """Which side of the intent the caller is on: 'rider' or 'driver'"""
    if intent.rider_id == user_id:
        return 'rider'
    driver = services.marketplace.get_driver_for_user(user_id)
    if driver is not None and driver.id == intent.driver_id:
        return 'driver'
    raise ForbiddenError('Not authorised for this payment')


def _require_party(services, intent_id, user_id, allowed):
    intent = services.escrow.get_intent(intent_id)
    party = _party(services, intent, user_id)
    if party not in allowed:
        raise ForbiddenError('Only the {} can do this'.format(' or '.join(allowed)))
    return intent, party


@escrow_bp.route('/fx-rates', methods=['GET'])
def fx_rates():
    """USD-based exchange rates (cached)"""
    rates = get_services().fx.rates()
    return jsonify({
        'base': 'USD',
        'rates': {currency: float(rate) for currency, rate in sorted(rates.items())},
    }), 200


@escrow_bp.route('/homeward/intent', methods=['POST'])
@limiter.limit("10 per minute")
@require_auth
def create_intent(user_id):
    """
    Create a homeward escrow intent for an accepted match.

    Body JSON: ride_id (str), session_id (str), base_fare_usd (number,
    defaults to the ride's estimated fare), local_currency (str, optional).
    The driver and premium come from the match recorded for the session.
    """
    data = get_json_body()
    services = get_services()

    ride_id = data.get('ride_id')
    session_id = data.get('session_id')
    if not ride_id or not session_id:
        raise ValidationError('ride_id and session_id are required')
    ride = services.marketplace.get_ride(ride_id)
    if ride is None:
        raise NotFoundError('Ride not found')
    if ride.rider_id != user_id:
        raise ForbiddenError('Not authorised for this ride')

    base_fare = data.get('base_fare_usd')
    if base_fare is None:
        base_fare = ride.estimated_fare

    match = services.ranker.accepted_match(session_id, ride_id)
    session = db.session.get(HomewardSession, session_id)

    intent = services.escrow.create_intent(
        ride_id,
        user_id,
        session.driver_id,
        base_fare,
        match.premium_amount,
        local_currency=data.get('local_currency', 'USD'),
        session_id=session_id,
        match_snapshot=match.to_dict(),
    )
    return jsonify(services.escrow.quote(intent)), 201


@escrow_bp.route('/homeward/<intent_id>/fund', methods=['POST'])
@limiter.limit("10 per minute")
@require_auth
def fund(user_id, intent_id):
    """
    Fund the escrow. Pays the driver's premium share immediately.
    Body JSON: payment_reference (str) - the rider's PaymentIntent id,
    required when payouts are live
    """
    data = get_json_body()
    services = get_services()
    _require_party(services, intent_id, user_id, ('rider',))

    intent = services.escrow.fund_escrow(intent_id, funding_reference=data.get('payment_reference'))
    return jsonify({
        'success': True,
        'intent_id': intent.intent_id,
        'status': intent.status,
        'premium_paid': bool(intent.premium_paid),
        'premium_paid_to_driver': float(intent.driver_premium_share_usd) if intent.premium_paid else 0.0,
    }), 200


@escrow_bp.route('/homeward/<intent_id>/start', methods=['POST'])
@require_auth
def start(user_id, intent_id):
    services = get_services()
    _require_party(services, intent_id, user_id, ('driver',))
    intent = services.escrow.start_trip(intent_id)
    return jsonify({'success': True, 'intent_id': intent.intent_id, 'status': intent.status}), 200


@escrow_bp.route('/homeward/<intent_id>/release', methods=['POST'])
@require_auth
def release(user_id, intent_id):
    """Complete the ride and pay the driver the remaining earnings"""
    services = get_services()
    _require_party(services, intent_id, user_id, ('driver',))
    result = services.escrow.release_escrow(intent_id)
    return jsonify(dict(result.to_dict(), success=True)), 200


@escrow_bp.route('/homeward/<intent_id>/cancel', methods=['POST'])
@require_auth
def cancel(user_id, intent_id):
    """
    Cancel the escrow. Before funding the rider is refunded in full; after
    funding only the base fare comes back and the driver keeps the premium.
    Body JSON: reason (str, optional)
    """
    data = get_json_body()
    services = get_services()
    _, party = _require_party(services, intent_id, user_id, ('rider', 'driver'))

    result = services.escrow.cancel_escrow(intent_id, party, reason=data.get('reason'))
    return jsonify(dict(result.to_dict(), success=True)), 200


@escrow_bp.route('/homeward/<intent_id>', methods=['GET'])
@require_auth
def get_status(user_id, intent_id):
    services = get_services()
    _require_party(services, intent_id, user_id, ('rider', 'driver'))
    return jsonify(services.escrow.get_status(intent_id)), 200
