"""Accepted homeward ride match"""
from homeward import db
from .base import BaseModel


class RideMatch(BaseModel):
    """
    Snapshot of the compatibility score and premium split at the moment a
    ride was accepted for a session. Only ``funded_at`` changes afterwards,
    once, when the rider funds the escrow and the match counts toward the
    session's earnings.
    """
    __tablename__ = 'homeward_ride_matches'

    session_id = db.Column(db.String(36), db.ForeignKey('homeward_sessions.id', ondelete='CASCADE'),
                           nullable=False, index=True)
    ride_id = db.Column(db.String(36), nullable=False, index=True)

    direction_score = db.Column(db.Numeric(5, 2), nullable=False)
    detour_percent = db.Column(db.Numeric(7, 2), nullable=False)
    pickup_proximity_km = db.Column(db.Numeric(8, 2))
    total_score = db.Column(db.Numeric(7, 2))
    estimated_arrival_minutes = db.Column(db.Integer)

    premium_amount = db.Column(db.Numeric(10, 2), nullable=False)
    premium_percent = db.Column(db.Numeric(5, 2), nullable=False)
    driver_premium_share = db.Column(db.Numeric(10, 2), nullable=False)
    platform_premium_share = db.Column(db.Numeric(10, 2), nullable=False)

    was_accepted = db.Column(db.Boolean, nullable=False, default=True)
    funded_at = db.Column(db.DateTime)

    __table_args__ = (
        db.UniqueConstraint('session_id', 'ride_id', name='uq_homeward_match_session_ride'),
    )

    def __repr__(self):
        return f'<RideMatch {self.session_id} -> {self.ride_id}>'
