"""
Homeward session lifecycle.

Activation enforces, in order: the premium-matching restriction, one active
session per driver, the post no-match cooldown, the daily activation quota
and a known driver location. Session end goes through a conditional update
on ``status = 'active'`` so exactly one caller performs the transition and
the daily counters are touched once.
"""
import logging
import math
from datetime import timedelta

from sqlalchemy.exc import IntegrityError

from homeward import db
from homeward.errors import (
    ConflictError,
    CooldownError,
    LocationUnavailableError,
    NotFoundError,
    QuotaExceededError,
    RestrictedError,
    ValidationError,
)
from homeward.models import DailyUsage, HomewardSession
from homeward.models.session import (
    SESSION_ACTIVE,
    SESSION_COMPLETED,
    SESSION_END_REASONS,
    SESSION_EXPIRED,
)
from homeward.policy import (
    MAX_DETOUR_PERCENT,
    MAX_TIME_WINDOW_MINUTES,
    MIN_DETOUR_PERCENT,
    MIN_TIME_WINDOW_MINUTES,
)
from homeward.pricing import to_money
from homeward.services.marketplace import PREMIUM_MATCHING_DISABLED, HomeAddress
from homeward.utils.validators import parse_location

logger = logging.getLogger(__name__)


class SessionManager:

    def __init__(self, policy, clock, marketplace):
        self.policy = policy
        self.clock = clock
        self.marketplace = marketplace

    # ------------------------------------------------------------------
    # Daily usage
    # ------------------------------------------------------------------

    def _usage_for(self, driver_id, day):
        return DailyUsage.query.filter_by(driver_id=driver_id, usage_date=day).first()

    def _ensure_usage(self, driver_id, day):
        usage = self._usage_for(driver_id, day)
        if usage is None:
            usage = DailyUsage(driver_id=driver_id, usage_date=day)
            db.session.add(usage)
            db.session.flush()
        return usage

    def bump_usage(self, driver_id, day, **changes):
        """Apply column increments (or plain values) to the day's usage row in SQL."""
        usage = self._ensure_usage(driver_id, day)
        values = {}
        for name, value in changes.items():
            column = getattr(DailyUsage, name)
            if name == 'cooldown_until':
                values[column] = value
            else:
                values[column] = column + value
        values[DailyUsage.updated_at] = self.clock.now()
        DailyUsage.query.filter_by(id=usage.id).update(values, synchronize_session=False)

    def daily_usage(self, driver_id):
        """Today's usage row for the driver, or None if nothing happened yet"""
        return self._usage_for(driver_id, self.clock.today())

    # ------------------------------------------------------------------
    # Activation
    # ------------------------------------------------------------------

    def _validate_window(self, time_window_minutes):
        if time_window_minutes is None:
            return self.policy.default_time_window_minutes
        try:
            minutes = int(time_window_minutes)
        except (TypeError, ValueError):
            raise ValidationError('Invalid time window')
        if not MIN_TIME_WINDOW_MINUTES <= minutes <= MAX_TIME_WINDOW_MINUTES:
            raise ValidationError('Time window must be between {} and {} minutes'.format(
                MIN_TIME_WINDOW_MINUTES, MAX_TIME_WINDOW_MINUTES))
        return minutes

    def _validate_detour(self, max_detour_percent):
        if max_detour_percent is None:
            return self.policy.default_detour_percent
        try:
            percent = float(max_detour_percent)
        except (TypeError, ValueError):
            raise ValidationError('Invalid max detour')
        if not MIN_DETOUR_PERCENT <= percent <= MAX_DETOUR_PERCENT:
            raise ValidationError('Max detour must be between {}% and {}%'.format(
                MIN_DETOUR_PERCENT, MAX_DETOUR_PERCENT))
        return percent

    def activate(self, driver_id, destination_address, destination_lat, destination_lng,
                 time_window_minutes=None, max_detour_percent=None):
        """
        Start a homeward session for a driver

        Returns:
            HomewardSession: the newly created active session
        """
        if not destination_address or not str(destination_address).strip():
            raise ValidationError('Destination address is required')
        destination = parse_location(destination_lat, destination_lng, 'destination')
        window = self._validate_window(time_window_minutes)
        detour = self._validate_detour(max_detour_percent)

        if PREMIUM_MATCHING_DISABLED in self.marketplace.get_restrictions(driver_id):
            raise RestrictedError()

        if self.get_active(driver_id) is not None:
            raise ConflictError('You already have an active Going Home session. Please end it first.')

        now = self.clock.now()
        today = now.date()
        usage = self._usage_for(driver_id, today)
        if usage is not None:
            if usage.cooldown_until and usage.cooldown_until > now:
                remaining = (usage.cooldown_until - now).total_seconds() / 60
                raise CooldownError(int(math.ceil(remaining)))
            if usage.sessions_started >= self.policy.max_daily_sessions:
                raise QuotaExceededError(
                    "You've reached the maximum of {} Going Home sessions for today.".format(
                        self.policy.max_daily_sessions))

        driver = self.marketplace.get_driver(driver_id)
        if driver is None or driver.location is None:
            raise LocationUnavailableError()

        session = HomewardSession(
            driver_id=driver_id,
            destination_address=str(destination_address).strip(),
            destination_lat=destination.lat,
            destination_lng=destination.lng,
            start_lat=driver.location.lat,
            start_lng=driver.location.lng,
            time_window_minutes=window,
            max_detour_percent=detour,
            status=SESSION_ACTIVE,
            rides_completed=0,
            total_premium_earnings=0,
            activated_at=now,
            expires_at=now + timedelta(minutes=window),
            created_at=now,
            updated_at=now,
        )

        try:
            db.session.add(session)
            db.session.flush()
            self.bump_usage(driver_id, today, sessions_started=1)
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            logger.info("Concurrent activation rejected for driver %s", driver_id)
            raise ConflictError('You already have an active Going Home session. Please end it first.')

        logger.info("Homeward session %s activated for driver %s (%s min, %s%% detour)",
                    session.id, driver_id, window, detour)
        return session

    # ------------------------------------------------------------------
    # Ending
    # ------------------------------------------------------------------

    def _end(self, session, reason):
        now = self.clock.now()
        rows = HomewardSession.query.filter_by(id=session.id, status=SESSION_ACTIVE).update({
            HomewardSession.status: reason,
            HomewardSession.ended_at: now,
            HomewardSession.updated_at: now,
        }, synchronize_session=False)
        if rows != 1:
            db.session.rollback()
            return None

        db.session.refresh(session)
        today = now.date()
        if reason == SESSION_COMPLETED:
            self.bump_usage(session.driver_id, today, sessions_completed=1)
        elif session.rides_completed == 0:
            self.bump_usage(
                session.driver_id, today,
                no_match_count=1,
                cooldown_until=now + timedelta(minutes=self.policy.cooldown_minutes_after_no_match),
            )
        db.session.commit()

        logger.info("Homeward session %s ended (%s) with %s rides",
                    session.id, reason, session.rides_completed)
        return session

    def deactivate(self, driver_id, reason='cancelled'):
        """
        End the driver's active session

        A session already past its window is expired instead and None is
        returned.

        Returns:
            HomewardSession or None: the ended session, None if there was none
        """
        if reason not in SESSION_END_REASONS:
            raise ValidationError('Invalid end reason: {}'.format(reason))

        session = self.get_active(driver_id)
        if session is None:
            return None
        return self._end(session, reason)

    def complete_session(self, session_id):
        """End a session as completed if it is still active"""
        session = db.session.get(HomewardSession, session_id)
        if session is None or session.status != SESSION_ACTIVE:
            return None
        return self._end(session, SESSION_COMPLETED)

    def expire_if_stale(self, session):
        """Expire an active session past its window. Returns True if it is no longer active."""
        if session.status != SESSION_ACTIVE:
            return True
        if not session.is_past_expiry(self.clock.now()):
            return False
        self._end(session, SESSION_EXPIRED)
        return True

    def get_active(self, driver_id):
        session = HomewardSession.query.filter_by(driver_id=driver_id, status=SESSION_ACTIVE).first()
        if session is None or self.expire_if_stale(session):
            return None
        return session

    def active_sessions(self):
        """All sessions that are active and inside their window"""
        sessions = HomewardSession.query.filter_by(status=SESSION_ACTIVE).all()
        return [s for s in sessions if not self.expire_if_stale(s)]

    def expire_stale_sessions(self):
        """Expire every active session past its window; returns how many were expired"""
        now = self.clock.now()
        stale = HomewardSession.query.filter(
            HomewardSession.status == SESSION_ACTIVE,
            HomewardSession.expires_at < now,
        ).all()

        expired = 0
        for session in stale:
            try:
                if self._end(session, SESSION_EXPIRED) is not None:
                    expired += 1
            except Exception:
                db.session.rollback()
                logger.exception("Failed to expire homeward session %s", session.id)
        return expired

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def get_session_stats(self, session_id):
        session = db.session.get(HomewardSession, session_id)
        if session is None:
            raise NotFoundError('Session not found')
        self.expire_if_stale(session)

        now = self.clock.now()
        minutes_remaining = 0
        if session.status == SESSION_ACTIVE:
            minutes_remaining = max(0, int((session.expires_at - now).total_seconds() // 60))

        return {
            'session_id': session.id,
            'status': session.status,
            'rides_completed': session.rides_completed,
            'total_premium_earnings': float(to_money(session.total_premium_earnings)),
            'minutes_remaining': minutes_remaining,
            'destination': session.destination_address,
        }

    # ------------------------------------------------------------------
    # Home address
    # ------------------------------------------------------------------

    def get_home_address(self, driver_id):
        return self.marketplace.get_home_address(driver_id)

    def save_home_address(self, user_id, address, lat, lng):
        if not address or not str(address).strip():
            raise ValidationError('Address is required')
        location = parse_location(lat, lng, 'address')
        home = HomeAddress(address=str(address).strip(), lat=location.lat, lng=location.lng)
        self.marketplace.save_home_address(user_id, home)
        db.session.commit()
        return home
