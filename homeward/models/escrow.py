"""Escrow payment intent and settlement ledger models"""
import secrets

from sqlalchemy import text

from homeward import db
from .base import BaseModel

ESCROW_PENDING = 'pending'
ESCROW_FUNDED = 'funded'
ESCROW_IN_PROGRESS = 'in_progress'
ESCROW_COMPLETED = 'completed'
ESCROW_CANCELLED_BY_RIDER = 'cancelled_by_rider'
ESCROW_CANCELLED_BY_DRIVER = 'cancelled_by_driver'
ESCROW_EXPIRED = 'expired'

ESCROW_STATUSES = (
    ESCROW_PENDING,
    ESCROW_FUNDED,
    ESCROW_IN_PROGRESS,
    ESCROW_COMPLETED,
    ESCROW_CANCELLED_BY_RIDER,
    ESCROW_CANCELLED_BY_DRIVER,
    ESCROW_EXPIRED,
)
ESCROW_TERMINAL_STATUSES = (
    ESCROW_COMPLETED,
    ESCROW_CANCELLED_BY_RIDER,
    ESCROW_CANCELLED_BY_DRIVER,
    ESCROW_EXPIRED,
)
ESCROW_OPEN_STATUSES = (ESCROW_PENDING, ESCROW_FUNDED, ESCROW_IN_PROGRESS)

ENTRY_PREMIUM_PAYOUT = 'premium_payout'
ENTRY_DRIVER_PAYOUT = 'driver_payout'
ENTRY_PLATFORM_FEE = 'platform_fee'
ENTRY_RIDER_REFUND = 'rider_refund'


def generate_intent_id():
    return 'pi_hw_{}'.format(secrets.token_hex(12))


class EscrowIntent(BaseModel):
    """
    Funds set aside for one homeward ride. The premium is paid out to the
    driver when the intent is funded; the base fare is held until release.
    Fee and earnings amounts are fixed at creation.
    """
    __tablename__ = 'homeward_escrow_intents'

    intent_id = db.Column(db.String(64), unique=True, nullable=False, default=generate_intent_id)
    ride_id = db.Column(db.String(36), nullable=False, index=True)
    rider_id = db.Column(db.String(36), nullable=False, index=True)
    driver_id = db.Column(db.String(36), nullable=False, index=True)

    # Set when the intent settles a ride matched through a homeward session
    session_id = db.Column(db.String(36), db.ForeignKey('homeward_sessions.id', ondelete='SET NULL'))
    match_snapshot = db.Column(db.JSON)

    base_fare_usd = db.Column(db.Numeric(12, 2), nullable=False)
    premium_usd = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    total_usd = db.Column(db.Numeric(12, 2), nullable=False)
    platform_fee_usd = db.Column(db.Numeric(12, 2), nullable=False)
    driver_earnings_usd = db.Column(db.Numeric(12, 2), nullable=False)
    driver_premium_share_usd = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    local_currency = db.Column(db.String(3), nullable=False, default='USD')
    fx_rate = db.Column(db.Numeric(18, 6), nullable=False, default=1)

    status = db.Column(db.String(30), nullable=False, default=ESCROW_PENDING)
    premium_paid = db.Column(db.Boolean, nullable=False, default=False)
    premium_reference = db.Column(db.String(255))
    funding_reference = db.Column(db.String(255))
    release_reference = db.Column(db.String(255))

    expires_at = db.Column(db.DateTime, nullable=False)
    funded_at = db.Column(db.DateTime)
    started_at = db.Column(db.DateTime)
    completed_at = db.Column(db.DateTime)
    cancelled_at = db.Column(db.DateTime)
    cancellation_reason = db.Column(db.Text)

    entries = db.relationship('SettlementEntry', backref='intent', lazy='dynamic',
                              order_by='SettlementEntry.created_at')

    __table_args__ = (
        # At most one open intent per ride
        db.Index(
            'uq_homeward_escrow_open_ride', 'ride_id',
            unique=True,
            postgresql_where=text("status IN ('pending', 'funded', 'in_progress')"),
            sqlite_where=text("status IN ('pending', 'funded', 'in_progress')"),
        ),
        db.CheckConstraint(
            "status IN ('pending', 'funded', 'in_progress', 'completed', "
            "'cancelled_by_rider', 'cancelled_by_driver', 'expired')",
            name='ck_escrow_status',
        ),
    )

    def __repr__(self):
        return f'<EscrowIntent {self.intent_id} {self.status}>'

    @property
    def platform_premium_share_usd(self):
        return self.premium_usd - self.driver_premium_share_usd

    @property
    def is_terminal(self):
        return self.status in ESCROW_TERMINAL_STATUSES


class SettlementEntry(BaseModel):
    """One money movement issued by the escrow engine."""
    __tablename__ = 'homeward_settlement_entries'

    intent_id = db.Column(db.String(64), db.ForeignKey('homeward_escrow_intents.intent_id', ondelete='CASCADE'),
                          nullable=False, index=True)
    kind = db.Column(db.String(30), nullable=False)
    party_id = db.Column(db.String(36))
    amount_usd = db.Column(db.Numeric(12, 2), nullable=False)
    reference = db.Column(db.String(255))

    __table_args__ = (
        db.CheckConstraint(
            "kind IN ('premium_payout', 'driver_payout', 'platform_fee', 'rider_refund')",
            name='ck_settlement_entry_kind',
        ),
    )

    def __repr__(self):
        return f'<SettlementEntry {self.kind} ${self.amount_usd}>'
