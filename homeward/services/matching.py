"""
Match ranking for homeward sessions.

Two directions: a driver with an active session asks which pending rides
fit their course (``find_compatible_rides``), and a rider's request asks
which active sessions could take it (``find_sessions_for_ride``). Scoring
uses the live driver position; premiums and shares come from
``homeward.pricing``.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy.exc import IntegrityError

from homeward import db
from homeward.errors import ConflictError, InvalidStateError, NotFoundError
from homeward.geo import (
    LatLng,
    calculate_distance,
    check_direction_compatibility,
    estimate_arrival_minutes,
)
from homeward.models import HomewardSession, RideMatch
from homeward.pricing import (
    calculate_premium,
    calculate_total_score,
    fare_efficiency,
    split_share,
)
from homeward.services.marketplace import PREMIUM_MATCHING_DISABLED

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RideCompatibility:
    ride_id: str
    is_compatible: bool
    direction_score: float
    detour_percent: float
    pickup_proximity_km: float
    premium_amount: Decimal
    premium_percent: Decimal
    estimated_arrival_minutes: int
    total_score: float

    def to_dict(self):
        return {
            "ride_id": self.ride_id,
            "is_compatible": self.is_compatible,
            "direction_score": self.direction_score,
            "detour_percent": self.detour_percent,
            "pickup_proximity_km": self.pickup_proximity_km,
            "premium_amount": float(self.premium_amount),
            "premium_percent": float(self.premium_percent),
            "estimated_arrival_minutes": self.estimated_arrival_minutes,
            "total_score": self.total_score,
        }


@dataclass(frozen=True)
class SessionCandidate:
    driver_id: str
    session_id: str
    direction_score: float
    detour_percent: float
    pickup_distance_km: float
    premium_amount: Decimal
    premium_percent: Decimal
    estimated_arrival_minutes: int

    def to_dict(self):
        return {
            "driver_id": self.driver_id,
            "session_id": self.session_id,
            "direction_score": self.direction_score,
            "detour_percent": self.detour_percent,
            "pickup_distance_km": self.pickup_distance_km,
            "premium_amount": float(self.premium_amount),
            "premium_percent": float(self.premium_percent),
            "estimated_arrival_minutes": self.estimated_arrival_minutes,
        }


def _destination(session):
    return LatLng.of(session.destination_lat, session.destination_lng)


class MatchRanker:

    def __init__(self, policy, clock, marketplace, sessions):
        self.policy = policy
        self.clock = clock
        self.marketplace = marketplace
        self.sessions = sessions

    def evaluate(self, session, driver_location, ride):
        """Score one pending ride against a session from the driver's current position"""
        compat = check_direction_compatibility(
            driver_location,
            _destination(session),
            ride.pickup,
            ride.dropoff,
            max_angle_deviation=self.policy.max_angle_deviation,
            max_detour_percent=session.max_detour_percent,
        )
        pickup_km = calculate_distance(driver_location, ride.pickup)
        quote = calculate_premium(ride.estimated_fare, compat.direction_score, self.policy)
        total = calculate_total_score(
            compat.direction_score,
            pickup_km,
            fare_efficiency(ride.estimated_fare),
            self.policy.weights,
        )
        return RideCompatibility(
            ride_id=ride.id,
            is_compatible=compat.is_compatible,
            direction_score=round(compat.direction_score, 2),
            detour_percent=round(compat.detour_percent, 2),
            pickup_proximity_km=round(pickup_km, 2),
            premium_amount=quote.premium_amount,
            premium_percent=quote.premium_percent,
            estimated_arrival_minutes=estimate_arrival_minutes(pickup_km, self.policy.urban_speed_kmh),
            total_score=round(total, 2),
        )

    def find_compatible_rides(self, session, pending_rides=None):
        """
        Rank pending rides that fit the session's course

        Returns:
            list[RideCompatibility]: compatible rides, best total score first.
            Empty when the driver's position is unknown.
        """
        driver = self.marketplace.get_driver(session.driver_id)
        if driver is None or driver.location is None:
            return []

        if pending_rides is None:
            pending_rides = self.marketplace.get_pending_rides()

        results = []
        for ride in pending_rides:
            result = self.evaluate(session, driver.location, ride)
            if result.is_compatible:
                results.append(result)

        results.sort(key=lambda r: r.total_score, reverse=True)
        return results

    def find_sessions_for_ride(self, pickup, dropoff, base_fare):
        """
        Active sessions whose course fits a ride

        Returns:
            list[SessionCandidate]: soonest arrival first, then best direction score
        """
        candidates = []
        for session in self.sessions.active_sessions():
            driver = self.marketplace.get_driver(session.driver_id)
            if driver is None or not driver.is_online or driver.location is None:
                continue
            if PREMIUM_MATCHING_DISABLED in self.marketplace.get_restrictions(session.driver_id):
                continue

            compat = check_direction_compatibility(
                driver.location,
                _destination(session),
                pickup,
                dropoff,
                max_angle_deviation=self.policy.max_angle_deviation,
                max_detour_percent=session.max_detour_percent,
            )
            if not compat.is_compatible:
                continue

            pickup_km = calculate_distance(driver.location, pickup)
            quote = calculate_premium(base_fare, compat.direction_score, self.policy)
            candidates.append(SessionCandidate(
                driver_id=session.driver_id,
                session_id=session.id,
                direction_score=round(compat.direction_score, 2),
                detour_percent=round(compat.detour_percent, 2),
                pickup_distance_km=round(pickup_km, 2),
                premium_amount=quote.premium_amount,
                premium_percent=quote.premium_percent,
                estimated_arrival_minutes=estimate_arrival_minutes(pickup_km, self.policy.urban_speed_kmh),
            ))

        candidates.sort(key=lambda c: (c.estimated_arrival_minutes, -c.direction_score))
        return candidates

    def check_availability(self, pickup, dropoff, base_fare, candidates=None):
        """Rider-side check: is any homeward driver heading this way?"""
        if candidates is None:
            candidates = self.find_sessions_for_ride(pickup, dropoff, base_fare)
        if not candidates:
            return {
                "available": False,
                "drivers": 0,
                "best_option": None,
                "message": "No drivers heading your way right now",
            }

        best = candidates[0]
        return {
            "available": True,
            "drivers": len(candidates),
            "best_option": {
                "premium_amount": float(best.premium_amount),
                "premium_percent": float(best.premium_percent),
                "estimated_arrival_minutes": best.estimated_arrival_minutes,
                "direction_score": best.direction_score,
            },
            "message": "{} driver{} heading your way".format(
                len(candidates), "" if len(candidates) == 1 else "s"),
        }

    def _current_session(self, driver_id, session_id):
        session = self.sessions.get_active(driver_id)
        if session is None or session.id != session_id:
            raise InvalidStateError('Invalid or inactive Going Home session')
        return session

    def _evaluate_one(self, session, ride_id):
        ride = self.marketplace.get_ride(ride_id)
        if ride is None:
            raise NotFoundError('Ride not found')

        results = self.find_compatible_rides(session, [ride])
        if not results:
            raise ConflictError('This ride is no longer compatible with your route')
        return results[0]

    def accept_match(self, driver_id, session_id, ride_id):
        """
        Accept a ride for the driver's active session

        The ride is re-evaluated from the driver's current position before
        the match is recorded.

        Returns:
            tuple: (RideCompatibility, RideMatch)
        """
        session = self._current_session(driver_id, session_id)
        result = self._evaluate_one(session, ride_id)
        match = self.record_match(session.id, ride_id, result, was_accepted=True)
        return result, match

    def accepted_match(self, session_id, ride_id):
        """The recorded match backing an escrow intent for a session ride"""
        match = RideMatch.query.filter_by(session_id=session_id, ride_id=ride_id, was_accepted=True).first()
        if match is None:
            raise InvalidStateError('Ride has not been accepted for this Going Home session')
        return match

    def record_match(self, session_id, ride_id, result, was_accepted=True):
        """
        Persist an accepted match and flag the ride as homeward

        Session and daily counters are left alone until the rider funds the
        escrow (see ``credit_funded_match``).

        Returns:
            RideMatch or None: None when the match was not accepted
        """
        if not was_accepted:
            logger.info("Match %s -> %s declined, nothing recorded", session_id, ride_id)
            return None

        session = db.session.get(HomewardSession, session_id)
        if session is None:
            raise NotFoundError('Session not found')

        driver_share, platform_share = split_share(
            result.premium_amount, self.policy.driver_premium_share_percent)
        now = self.clock.now()

        match = RideMatch(
            session_id=session.id,
            ride_id=ride_id,
            direction_score=result.direction_score,
            detour_percent=result.detour_percent,
            pickup_proximity_km=result.pickup_proximity_km,
            total_score=result.total_score,
            estimated_arrival_minutes=result.estimated_arrival_minutes,
            premium_amount=result.premium_amount,
            premium_percent=result.premium_percent,
            driver_premium_share=driver_share,
            platform_premium_share=platform_share,
            was_accepted=True,
            created_at=now,
            updated_at=now,
        )

        try:
            db.session.add(match)
            db.session.flush()
            self.marketplace.mark_ride_homeward(ride_id, result.premium_amount, result.premium_percent)
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise ConflictError('Ride already matched to this session')

        logger.info("Recorded homeward match %s -> %s (premium $%s, driver $%s)",
                    session_id, ride_id, result.premium_amount, driver_share)
        return match

    def credit_funded_match(self, session_id, ride_id, driver_share):
        """
        Count a funded match toward the session and the day's usage

        Runs inside the caller's funding transaction and does not commit.

        Returns:
            bool: False if there is no uncredited accepted match
        """
        now = self.clock.now()
        rows = RideMatch.query.filter_by(
            session_id=session_id, ride_id=ride_id, was_accepted=True, funded_at=None,
        ).update({
            RideMatch.funded_at: now,
            RideMatch.updated_at: now,
        }, synchronize_session=False)
        if rows != 1:
            logger.warning("No uncredited match %s -> %s to credit at funding", session_id, ride_id)
            return False

        session = db.session.get(HomewardSession, session_id)
        HomewardSession.query.filter_by(id=session_id).update({
            HomewardSession.rides_completed: HomewardSession.rides_completed + 1,
            HomewardSession.total_premium_earnings: HomewardSession.total_premium_earnings + driver_share,
            HomewardSession.updated_at: now,
        }, synchronize_session=False)
        self.sessions.bump_usage(
            session.driver_id, now.date(),
            rides_matched=1,
            premium_earnings=driver_share,
        )
        logger.info("Funded match %s -> %s credited $%s", session_id, ride_id, driver_share)
        return True

    def annotate_ride_feed(self, driver_id, rides):
        """
        Decorate a driver's ride feed with homeward premiums

        Rides that fit the driver's active session carry the premium and
        direction score; every other ride (or every ride, without a
        session) is flagged as a regular ride with zeros.
        """
        session = self.sessions.get_active(driver_id)
        driver = self.marketplace.get_driver(driver_id) if session else None
        location = driver.location if driver is not None else None

        annotated = []
        for ride in rides:
            entry = ride.to_dict()
            entry.update({
                "is_homeward_ride": False,
                "homeward_premium_amount": 0.0,
                "homeward_premium_percent": 0.0,
                "homeward_direction_score": 0.0,
            })
            if location is not None:
                result = self.evaluate(session, location, ride)
                if result.is_compatible:
                    entry.update({
                        "is_homeward_ride": True,
                        "homeward_premium_amount": float(result.premium_amount),
                        "homeward_premium_percent": float(result.premium_percent),
                        "homeward_direction_score": result.direction_score,
                    })
            annotated.append(entry)
        return annotated
