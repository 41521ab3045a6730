"""
Match ranking tests: driver-side ranking, rider-side lookup and acceptance
"""
import pytest

from homeward import db
from homeward.errors import ConflictError, InvalidStateError, NotFoundError, PayoutError
from homeward.models import HomewardSession, Ride, RideMatch
from homeward.pricing import split_share
from tests.conftest import HOME, ORIGIN, RIDER_USER, offset


@pytest.fixture
def session(services, driver):
    return services.sessions.activate(driver.id, '12 Home St', HOME.lat, HOME.lng)


@pytest.fixture
def opposite_ride(make_ride):
    pickup = offset(ORIGIN, 1, 5)
    return make_ride(pickup, offset(pickup, 8, 180))


def intent_for(services, driver, session, match):
    return services.escrow.create_intent(
        match.ride_id, RIDER_USER, driver.id, '20', match.premium_amount, session_id=session.id)


class TestFindCompatibleRides:

    def test_only_compatible_rides_are_returned(self, services, session, on_route_ride, opposite_ride):
        results = services.ranker.find_compatible_rides(session)

        assert [r.ride_id for r in results] == [on_route_ride.id]
        result = results[0]
        assert result.is_compatible
        assert result.pickup_proximity_km == pytest.approx(1.0, abs=0.05)
        assert result.estimated_arrival_minutes == 2
        assert 5 <= result.premium_percent <= 12

    def test_ranked_by_total_score(self, services, session, make_ride, on_route_ride):
        far_pickup = offset(ORIGIN, 4, 0)
        farther = make_ride(far_pickup, offset(far_pickup, 5, 0))

        results = services.ranker.find_compatible_rides(session)

        assert [r.ride_id for r in results] == [on_route_ride.id, farther.id]
        assert results[0].total_score >= results[1].total_score

    def test_no_location_means_no_rides(self, services, session, driver, on_route_ride):
        driver.current_lat = None
        db.session.commit()
        assert services.ranker.find_compatible_rides(session) == []

    def test_session_detour_limit_applies(self, services, driver, make_ride):
        session = services.sessions.activate(
            driver.id, '12 Home St', HOME.lat, HOME.lng, max_detour_percent=1)
        pickup = offset(ORIGIN, 3, 20)
        make_ride(pickup, offset(ORIGIN, 7, 340))

        assert services.ranker.find_compatible_rides(session) == []


class TestFindSessionsForRide:

    def test_orders_by_arrival_then_direction(self, services, driver, other_driver):
        other_driver.current_lat, other_driver.current_lng = offset(ORIGIN, 3, 180).lat, ORIGIN.lng
        db.session.commit()
        services.sessions.activate(driver.id, 'Home', HOME.lat, HOME.lng)
        services.sessions.activate(other_driver.id, 'Home', HOME.lat, HOME.lng)

        pickup = offset(ORIGIN, 1, 0)
        candidates = services.ranker.find_sessions_for_ride(pickup, offset(pickup, 5, 0), 20)

        assert [c.driver_id for c in candidates] == [driver.id, other_driver.id]
        assert candidates[0].estimated_arrival_minutes < candidates[1].estimated_arrival_minutes

    def test_skips_offline_and_restricted_drivers(self, services, driver, other_driver, restrict):
        services.sessions.activate(driver.id, 'Home', HOME.lat, HOME.lng)
        services.sessions.activate(other_driver.id, 'Home', HOME.lat, HOME.lng)
        driver.is_online = False
        db.session.commit()
        restrict(other_driver)

        pickup = offset(ORIGIN, 1, 0)
        assert services.ranker.find_sessions_for_ride(pickup, offset(pickup, 5, 0), 20) == []

    def test_expires_stale_sessions_on_the_way(self, services, driver, clock):
        session = services.sessions.activate(driver.id, 'Home', HOME.lat, HOME.lng, time_window_minutes=15)
        clock.advance(minutes=20)

        pickup = offset(ORIGIN, 1, 0)
        assert services.ranker.find_sessions_for_ride(pickup, offset(pickup, 5, 0), 20) == []
        assert db.session.get(HomewardSession, session.id).status == 'expired'

    def test_availability_check(self, services, session):
        pickup = offset(ORIGIN, 1, 0)
        found = services.ranker.check_availability(pickup, offset(pickup, 5, 0), 20)
        assert found['available'] is True
        assert found['drivers'] == 1
        assert found['best_option']['estimated_arrival_minutes'] == 2

        nobody = services.ranker.check_availability(pickup, offset(pickup, 5, 180), 20)
        assert nobody == {
            'available': False,
            'drivers': 0,
            'best_option': None,
            'message': 'No drivers heading your way right now',
        }


class TestAcceptMatch:

    def test_accept_records_the_match(self, services, driver, session, on_route_ride):
        result, match = services.ranker.accept_match(driver.id, session.id, on_route_ride.id)

        driver_share, platform_share = split_share(result.premium_amount, 80)
        assert match.driver_premium_share == driver_share
        assert match.platform_premium_share == platform_share

        assert match.funded_at is None

        ride = db.session.get(Ride, on_route_ride.id)
        assert ride.is_homeward_ride
        assert ride.homeward_premium_amount == result.premium_amount

    def test_accepting_twice_conflicts(self, services, driver, session, on_route_ride):
        services.ranker.accept_match(driver.id, session.id, on_route_ride.id)
        with pytest.raises(ConflictError):
            services.ranker.accept_match(driver.id, session.id, on_route_ride.id)
        assert RideMatch.query.count() == 1

    def test_wrong_session(self, services, driver, session, on_route_ride):
        with pytest.raises(InvalidStateError):
            services.ranker.accept_match(driver.id, 'not-my-session', on_route_ride.id)

    def test_ride_no_longer_compatible(self, services, driver, session, opposite_ride):
        with pytest.raises(ConflictError):
            services.ranker.accept_match(driver.id, session.id, opposite_ride.id)

    def test_unknown_ride(self, services, driver, session):
        with pytest.raises(NotFoundError):
            services.ranker.accept_match(driver.id, session.id, 'missing')

    def test_declined_match_is_not_recorded(self, services, driver, session, on_route_ride):
        result = services.ranker.find_compatible_rides(session)[0]
        assert services.ranker.record_match(session.id, on_route_ride.id, result, was_accepted=False) is None
        assert RideMatch.query.count() == 0

    def test_funded_session_ends_without_cooldown(self, services, driver, session, on_route_ride):
        _, match = services.ranker.accept_match(driver.id, session.id, on_route_ride.id)
        services.escrow.fund_escrow(intent_for(services, driver, session, match).intent_id)
        services.sessions.deactivate(driver.id, 'cancelled')

        usage = services.sessions.daily_usage(driver.id)
        assert usage.no_match_count == 0
        assert usage.cooldown_until is None

    def test_accepted_but_unfunded_session_still_cools_down(self, services, driver, session, on_route_ride):
        services.ranker.accept_match(driver.id, session.id, on_route_ride.id)
        services.sessions.deactivate(driver.id, 'cancelled')

        usage = services.sessions.daily_usage(driver.id)
        assert usage.no_match_count == 1
        assert usage.cooldown_until is not None


class TestFundingCreditsTheSession:

    def test_counters_move_when_the_rider_funds(self, services, driver, session, on_route_ride, clock):
        _, match = services.ranker.accept_match(driver.id, session.id, on_route_ride.id)
        assert db.session.get(HomewardSession, session.id).rides_completed == 0
        assert services.sessions.daily_usage(driver.id).rides_matched == 0

        intent = intent_for(services, driver, session, match)
        clock.advance(minutes=2)
        services.escrow.fund_escrow(intent.intent_id)

        share = match.driver_premium_share
        refreshed = db.session.get(HomewardSession, session.id)
        assert refreshed.rides_completed == 1
        assert refreshed.total_premium_earnings == share

        usage = services.sessions.daily_usage(driver.id)
        assert usage.rides_matched == 1
        assert usage.premium_earnings == share

        stored = RideMatch.query.filter_by(id=match.id).one()
        assert stored.funded_at == clock.now()

    def test_unfunded_cancel_leaves_counters_alone(self, services, driver, session, on_route_ride):
        _, match = services.ranker.accept_match(driver.id, session.id, on_route_ride.id)
        intent = intent_for(services, driver, session, match)

        services.escrow.cancel_escrow(intent.intent_id, 'rider')

        refreshed = db.session.get(HomewardSession, session.id)
        assert refreshed.rides_completed == 0
        assert refreshed.total_premium_earnings == 0
        assert services.sessions.daily_usage(driver.id).premium_earnings == 0

    def test_failed_payout_undoes_the_credit(self, services, driver, session, on_route_ride, payouts):
        _, match = services.ranker.accept_match(driver.id, session.id, on_route_ride.id)
        intent = intent_for(services, driver, session, match)
        payouts.fail = True

        with pytest.raises(PayoutError):
            services.escrow.fund_escrow(intent.intent_id)

        assert db.session.get(HomewardSession, session.id).rides_completed == 0
        assert RideMatch.query.filter_by(id=match.id).one().funded_at is None

    def test_match_is_credited_once(self, services, driver, session, on_route_ride):
        _, match = services.ranker.accept_match(driver.id, session.id, on_route_ride.id)
        share = match.driver_premium_share

        assert services.ranker.credit_funded_match(session.id, on_route_ride.id, share) is True
        assert services.ranker.credit_funded_match(session.id, on_route_ride.id, share) is False
        db.session.commit()

        assert db.session.get(HomewardSession, session.id).rides_completed == 1


class TestRideFeed:

    def test_feed_flags_homeward_rides(self, services, driver, session, on_route_ride, opposite_ride):
        rides = services.marketplace.get_pending_rides()
        feed = {entry['id']: entry for entry in services.ranker.annotate_ride_feed(driver.id, rides)}

        assert feed[on_route_ride.id]['is_homeward_ride'] is True
        assert feed[on_route_ride.id]['homeward_premium_amount'] > 0
        assert feed[opposite_ride.id]['is_homeward_ride'] is False
        assert feed[opposite_ride.id]['homeward_premium_amount'] == 0.0

    def test_feed_without_session_is_all_zeros(self, services, driver, on_route_ride):
        rides = services.marketplace.get_pending_rides()
        feed = services.ranker.annotate_ride_feed(driver.id, rides)
        assert feed[0]['is_homeward_ride'] is False
        assert feed[0]['homeward_direction_score'] == 0.0
