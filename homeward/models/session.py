"""Homeward session and daily usage models"""
from sqlalchemy import text

from homeward import db
from .base import BaseModel

SESSION_ACTIVE = 'active'
SESSION_COMPLETED = 'completed'
SESSION_CANCELLED = 'cancelled'
SESSION_EXPIRED = 'expired'

SESSION_END_REASONS = (SESSION_COMPLETED, SESSION_CANCELLED, SESSION_EXPIRED)


class HomewardSession(BaseModel):
    """
    A driver's time-boxed declaration that they are heading to a personal
    destination and will take compatible rides along the way.
    """
    __tablename__ = 'homeward_sessions'

    driver_id = db.Column(db.String(36), nullable=False, index=True)

    destination_address = db.Column(db.Text, nullable=False)
    destination_lat = db.Column(db.Float, nullable=False)
    destination_lng = db.Column(db.Float, nullable=False)
    start_lat = db.Column(db.Float, nullable=False)
    start_lng = db.Column(db.Float, nullable=False)

    time_window_minutes = db.Column(db.Integer, nullable=False, default=45)
    max_detour_percent = db.Column(db.Float, nullable=False, default=15.0)

    status = db.Column(db.String(20), nullable=False, default=SESSION_ACTIVE)
    rides_completed = db.Column(db.Integer, nullable=False, default=0)
    total_premium_earnings = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    activated_at = db.Column(db.DateTime, nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False)
    ended_at = db.Column(db.DateTime)

    __table_args__ = (
        # At most one active session per driver
        db.Index(
            'uq_homeward_sessions_active_driver', 'driver_id',
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
        db.CheckConstraint(
            "status IN ('active', 'completed', 'cancelled', 'expired')",
            name='ck_homeward_session_status',
        ),
    )

    def __repr__(self):
        return f'<HomewardSession {self.driver_id} {self.status}>'

    def is_past_expiry(self, now):
        return now > self.expires_at

    def to_dict(self, exclude=None):
        data = super().to_dict(exclude=exclude)
        data['destination'] = {
            'address': self.destination_address,
            'lat': self.destination_lat,
            'lng': self.destination_lng,
        }
        data['start_location'] = {'lat': self.start_lat, 'lng': self.start_lng}
        return data


class DailyUsage(BaseModel):
    """
    Per-driver, per-calendar-day (UTC) activation counter, also holding the
    cooldown that throttles retries after a session ends without a match.
    """
    __tablename__ = 'homeward_daily_usage'

    driver_id = db.Column(db.String(36), nullable=False)
    usage_date = db.Column(db.Date, nullable=False)

    sessions_started = db.Column(db.Integer, nullable=False, default=0)
    sessions_completed = db.Column(db.Integer, nullable=False, default=0)
    rides_matched = db.Column(db.Integer, nullable=False, default=0)
    no_match_count = db.Column(db.Integer, nullable=False, default=0)
    premium_earnings = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    cooldown_until = db.Column(db.DateTime)

    __table_args__ = (
        db.UniqueConstraint('driver_id', 'usage_date', name='uq_homeward_usage_driver_day'),
    )

    def __repr__(self):
        return f'<DailyUsage {self.driver_id} {self.usage_date}>'
