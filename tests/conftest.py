"""
Pytest configuration and fixtures for the homeward backend tests
"""
from datetime import datetime
from decimal import Decimal
from math import cos, radians, sin

import pytest
import requests

from homeward import create_app, db
from homeward.auth import generate_token
from homeward.clock import FixedClock
from homeward.errors import PayoutError
from homeward.geo import LatLng
from homeward.models import Driver, DriverRestriction, Ride
from homeward.services.payouts import PayoutGateway

START = datetime(2026, 3, 2, 12, 0, 0)

DRIVER_USER = 'user-driver-1'
OTHER_DRIVER_USER = 'user-driver-2'
RIDER_USER = 'user-rider-1'

# Driver position and a destination roughly 10 km due north
ORIGIN = LatLng(40.0, -74.0)
KM_PER_DEGREE = 111.195


def offset(origin, km, bearing):
    """Point ``km`` away from ``origin`` along ``bearing`` (flat approximation)"""
    dlat = km * cos(radians(bearing)) / KM_PER_DEGREE
    dlng = km * sin(radians(bearing)) / (KM_PER_DEGREE * cos(radians(origin.lat)))
    return LatLng(origin.lat + dlat, origin.lng + dlng)


HOME = offset(ORIGIN, 10, 0)


class StubRateSource:
    """FX source returning a fixed table, optionally failing"""

    def __init__(self):
        self.reset()

    def reset(self):
        self.calls = 0
        self.fail = False
        self.rates = {'USD': Decimal('1'), 'MXN': Decimal('18'), 'KES': Decimal('130')}

    def fetch_rates(self):
        self.calls += 1
        if self.fail:
            raise requests.ConnectionError('rate provider unreachable')
        return dict(self.rates)


class RecordingPayouts(PayoutGateway):
    """Payout gateway that records every call"""

    def __init__(self):
        self.reset()

    def reset(self):
        self.driver_payouts = []
        self.refunds = []
        self.fail = False

    def pay_driver(self, driver, amount, reference):
        if self.fail:
            raise PayoutError('Payout declined')
        self.driver_payouts.append((driver.id, amount, reference))
        return 'tr_test_{}'.format(len(self.driver_payouts))

    def refund_rider(self, rider_id, amount, reference, funding_reference=None):
        if self.fail:
            raise PayoutError('Refund declined')
        self.refunds.append((rider_id, amount, reference))
        return 're_test_{}'.format(len(self.refunds))


@pytest.fixture(scope='session')
def clock():
    return FixedClock(START)


@pytest.fixture(scope='session')
def fx_source():
    return StubRateSource()


@pytest.fixture(scope='session')
def payouts():
    return RecordingPayouts()


@pytest.fixture(scope='session')
def app(clock, fx_source, payouts):
    """Create application instance for testing"""
    app = create_app('testing', clock=clock, fx_source=fx_source, payouts=payouts)

    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(autouse=True)
def clean_state(app, clock, fx_source, payouts):
    """Fresh tables, clock, FX cache and payout log for every test"""
    db.session.remove()
    db.drop_all()
    db.create_all()
    clock.set(START)
    fx_source.reset()
    payouts.reset()
    app.extensions['homeward'].fx.invalidate()
    yield
    db.session.rollback()


@pytest.fixture
def client(app):
    """Create test client"""
    return app.test_client()


@pytest.fixture
def services(app):
    return app.extensions['homeward']


@pytest.fixture
def driver():
    """Online driver at ORIGIN with a connected payout account"""
    driver = Driver(
        user_id=DRIVER_USER,
        current_lat=ORIGIN.lat,
        current_lng=ORIGIN.lng,
        is_online=True,
        stripe_connect_id='acct_test_driver',
    )
    db.session.add(driver)
    db.session.commit()
    return driver


@pytest.fixture
def other_driver():
    driver = Driver(
        user_id=OTHER_DRIVER_USER,
        current_lat=ORIGIN.lat,
        current_lng=ORIGIN.lng,
        is_online=True,
    )
    db.session.add(driver)
    db.session.commit()
    return driver


@pytest.fixture
def make_ride():
    """Factory for pending rides owned by the test rider"""
    def _make(pickup, dropoff, fare='20.00', rider_id=RIDER_USER):
        ride = Ride(
            rider_id=rider_id,
            status='pending',
            pickup_lat=pickup.lat,
            pickup_lng=pickup.lng,
            dropoff_lat=dropoff.lat,
            dropoff_lng=dropoff.lng,
            estimated_fare=Decimal(fare),
        )
        db.session.add(ride)
        db.session.commit()
        return ride
    return _make


@pytest.fixture
def on_route_ride(make_ride):
    """Pickup 1 km ahead at 5 degrees, dropoff 8 km further at 2 degrees"""
    pickup = offset(ORIGIN, 1, 5)
    return make_ride(pickup, offset(pickup, 8, 2))


@pytest.fixture
def restrict():
    def _restrict(driver, tag='pmgth_disabled'):
        db.session.add(DriverRestriction(driver_id=driver.id, tag=tag, reason='test'))
        db.session.commit()
    return _restrict


@pytest.fixture
def auth_headers():
    def _headers(user_id):
        return {'Authorization': 'Bearer {}'.format(generate_token(user_id))}
    return _headers


@pytest.fixture
def driver_headers(auth_headers, driver):
    return auth_headers(DRIVER_USER)


@pytest.fixture
def rider_headers(auth_headers):
    return auth_headers(RIDER_USER)
