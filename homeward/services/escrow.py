"""
Escrow engine for homeward rides.

Lifecycle::

    pending -> funded -> in_progress -> completed
       |          |           |
       |          +-----------+--> cancelled_by_rider / cancelled_by_driver
       +--> expired / cancelled_by_*

Every transition is a conditional update on the status observed before it,
so concurrent callers cannot both win. Payouts are issued inside the same
database transaction; if the gateway fails the transition is rolled back.
"""
import logging
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal

from sqlalchemy.exc import IntegrityError

from homeward import db
from homeward.errors import (
    ConflictError,
    ExpiredError,
    InvalidStateError,
    NotFoundError,
    PayoutError,
    RestrictedError,
    ValidationError,
)
from homeward.models import EscrowIntent, SettlementEntry
from homeward.models.escrow import (
    ENTRY_DRIVER_PAYOUT,
    ENTRY_PLATFORM_FEE,
    ENTRY_PREMIUM_PAYOUT,
    ENTRY_RIDER_REFUND,
    ESCROW_CANCELLED_BY_DRIVER,
    ESCROW_CANCELLED_BY_RIDER,
    ESCROW_COMPLETED,
    ESCROW_EXPIRED,
    ESCROW_FUNDED,
    ESCROW_IN_PROGRESS,
    ESCROW_OPEN_STATUSES,
    ESCROW_PENDING,
)
from homeward.pricing import percent_of, split_share, to_money
from homeward.services.fx import format_local_currency, usd_to_local
from homeward.services.marketplace import PREMIUM_MATCHING_DISABLED, DriverInfo
from homeward.utils.validators import parse_money, validate_currency_code

logger = logging.getLogger(__name__)

ZERO = Decimal('0.00')

CANCELLED_BY = {
    'rider': ESCROW_CANCELLED_BY_RIDER,
    'driver': ESCROW_CANCELLED_BY_DRIVER,
}


@dataclass(frozen=True)
class ReleaseResult:
    intent: EscrowIntent
    driver_payout: Decimal
    platform_fee: Decimal

    def to_dict(self):
        return {
            'intent_id': self.intent.intent_id,
            'status': self.intent.status,
            'driver_payout': float(self.driver_payout),
            'platform_fee': float(self.platform_fee),
            'premium_already_paid': bool(self.intent.premium_paid),
        }


@dataclass(frozen=True)
class CancelResult:
    intent: EscrowIntent
    rider_refund: Decimal
    driver_keeps_premium: bool

    def to_dict(self):
        return {
            'intent_id': self.intent.intent_id,
            'status': self.intent.status,
            'rider_refund': float(self.rider_refund),
            'driver_keeps_premium': self.driver_keeps_premium,
            'premium_amount': float(self.intent.premium_usd) if self.driver_keeps_premium else 0.0,
        }


class EscrowService:

    def __init__(self, policy, clock, marketplace, payouts, fx, on_funded=None, on_released=None):
        self.policy = policy
        self.clock = clock
        self.marketplace = marketplace
        self.payouts = payouts
        self.fx = fx
        self.on_funded = on_funded
        self.on_released = on_released

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def get_intent(self, intent_id):
        intent = EscrowIntent.query.filter_by(intent_id=intent_id).first()
        if intent is None:
            raise NotFoundError('Payment intent not found')
        return intent

    def _transition(self, intent, from_statuses, values):
        """Move ``intent`` to a new status if it is still in one of ``from_statuses``"""
        values[EscrowIntent.updated_at] = self.clock.now()
        rows = EscrowIntent.query.filter(
            EscrowIntent.intent_id == intent.intent_id,
            EscrowIntent.status.in_(from_statuses),
        ).update(values, synchronize_session=False)
        if rows != 1:
            db.session.rollback()
            current = db.session.query(EscrowIntent.status).filter_by(intent_id=intent.intent_id).scalar()
            raise InvalidStateError('Invalid escrow status: {}'.format(current))

    def _record(self, intent, kind, party_id, amount, reference):
        now = self.clock.now()
        db.session.add(SettlementEntry(
            intent_id=intent.intent_id,
            kind=kind,
            party_id=party_id,
            amount_usd=amount,
            reference=reference,
            created_at=now,
            updated_at=now,
        ))

    def _driver(self, driver_id):
        driver = self.marketplace.get_driver(driver_id)
        if driver is None:
            driver = DriverInfo(id=driver_id, user_id=None, location=None, is_online=False)
        return driver

    def _expire(self, intent):
        """Mark an overdue pending intent expired. Returns True if this call expired it."""
        now = self.clock.now()
        rows = EscrowIntent.query.filter_by(intent_id=intent.intent_id, status=ESCROW_PENDING).update({
            EscrowIntent.status: ESCROW_EXPIRED,
            EscrowIntent.updated_at: now,
        }, synchronize_session=False)
        db.session.commit()
        db.session.refresh(intent)
        if rows:
            logger.info("Escrow intent %s expired unfunded", intent.intent_id)
        return bool(rows)

    def _is_overdue(self, intent):
        return intent.status == ESCROW_PENDING and self.clock.now() > intent.expires_at

    def _run_hook(self, hook, intent):
        if hook is None:
            return
        try:
            hook(intent)
        except Exception:
            # The money movement is already committed
            db.session.rollback()
            logger.exception("Post-settlement hook %s failed for intent %s",
                             getattr(hook, '__name__', hook), intent.intent_id)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def _open_intent(self, ride_id):
        """The ride's pending/funded/in-progress intent, after expiring an overdue one"""
        intent = EscrowIntent.query.filter(
            EscrowIntent.ride_id == ride_id,
            EscrowIntent.status.in_(ESCROW_OPEN_STATUSES),
        ).first()
        if intent is not None and self._is_overdue(intent):
            self._expire(intent)
            return None
        return intent

    def create_intent(self, ride_id, rider_id, driver_id, base_fare_usd, premium_usd=0,
                      local_currency='USD', session_id=None, match_snapshot=None):
        """
        Create a pending escrow intent with fees and earnings fixed up front

        A ride has at most one open intent at a time.

        Returns:
            EscrowIntent: the pending intent
        """
        if not ride_id or not rider_id or not driver_id:
            raise ValidationError('ride_id, rider_id and driver_id are required')
        base = to_money(parse_money(base_fare_usd, 'base fare', allow_zero=False))
        premium = to_money(parse_money(premium_usd, 'premium'))
        if premium > self.policy.max_premium_cap:
            raise ValidationError('Premium cannot exceed ${}'.format(self.policy.max_premium_cap))
        if local_currency is None or local_currency == '':
            local_currency = 'USD'
        if not validate_currency_code(local_currency):
            raise ValidationError('Invalid currency code')
        currency = local_currency.upper()

        if premium > 0 and PREMIUM_MATCHING_DISABLED in self.marketplace.get_restrictions(driver_id):
            raise RestrictedError()

        if self._open_intent(ride_id) is not None:
            raise ConflictError('A payment intent is already open for this ride')

        base_fee = percent_of(base, self.policy.base_fare_platform_fee_percent)
        driver_premium_share, platform_premium_share = split_share(
            premium, self.policy.driver_premium_share_percent)

        now = self.clock.now()
        intent = EscrowIntent(
            ride_id=ride_id,
            rider_id=rider_id,
            driver_id=driver_id,
            session_id=session_id,
            match_snapshot=match_snapshot,
            base_fare_usd=base,
            premium_usd=premium,
            total_usd=base + premium,
            platform_fee_usd=base_fee + platform_premium_share,
            driver_earnings_usd=base - base_fee + driver_premium_share,
            driver_premium_share_usd=driver_premium_share,
            local_currency=currency,
            fx_rate=self.fx.rate_for(currency),
            status=ESCROW_PENDING,
            premium_paid=False,
            expires_at=now + timedelta(minutes=self.policy.escrow_ttl_minutes),
            created_at=now,
            updated_at=now,
        )
        try:
            db.session.add(intent)
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            logger.info("Concurrent intent creation rejected for ride %s", ride_id)
            raise ConflictError('A payment intent is already open for this ride')

        logger.info("Escrow intent %s created for ride %s: base $%s + premium $%s",
                    intent.intent_id, ride_id, base, premium)
        return intent

    def fund_escrow(self, intent_id, funding_reference=None):
        """
        Mark the intent funded and pay the driver's premium share immediately

        Raises:
            ExpiredError: the intent passed its TTL before funding
            InvalidStateError: the intent is not pending
            ValidationError: a live gateway needs the rider's payment reference
        """
        intent = self.get_intent(intent_id)
        if self._is_overdue(intent):
            self._expire(intent)
            raise ExpiredError('Payment intent expired')
        if intent.status != ESCROW_PENDING:
            raise InvalidStateError('Invalid escrow status: {}'.format(intent.status))
        if not funding_reference and self.payouts.requires_funding_reference:
            raise ValidationError('payment_reference is required')

        now = self.clock.now()
        self._transition(intent, [ESCROW_PENDING], {
            EscrowIntent.status: ESCROW_FUNDED,
            EscrowIntent.funded_at: now,
            EscrowIntent.funding_reference: funding_reference,
        })

        try:
            if self.on_funded is not None:
                self.on_funded(intent)
            if intent.premium_usd > 0:
                reference = self.payouts.pay_driver(
                    self._driver(intent.driver_id),
                    intent.driver_premium_share_usd,
                    '{}:premium'.format(intent.intent_id),
                )
                self._record(intent, ENTRY_PREMIUM_PAYOUT, intent.driver_id,
                             intent.driver_premium_share_usd, reference)
                if intent.platform_premium_share_usd > 0:
                    self._record(intent, ENTRY_PLATFORM_FEE, None,
                                 intent.platform_premium_share_usd, None)
                EscrowIntent.query.filter_by(intent_id=intent.intent_id).update({
                    EscrowIntent.premium_paid: True,
                    EscrowIntent.premium_reference: reference,
                }, synchronize_session=False)
            db.session.commit()
        except PayoutError:
            db.session.rollback()
            logger.error("Premium payout failed, escrow intent %s left pending", intent_id)
            raise
        except Exception:
            db.session.rollback()
            raise

        db.session.refresh(intent)
        logger.info("Escrow intent %s funded, premium $%s paid to driver %s",
                    intent_id, intent.driver_premium_share_usd, intent.driver_id)
        return intent

    def start_trip(self, intent_id):
        intent = self.get_intent(intent_id)
        if intent.status != ESCROW_FUNDED:
            raise InvalidStateError('Invalid escrow status: {}'.format(intent.status))

        self._transition(intent, [ESCROW_FUNDED], {
            EscrowIntent.status: ESCROW_IN_PROGRESS,
            EscrowIntent.started_at: self.clock.now(),
        })
        db.session.commit()
        db.session.refresh(intent)
        logger.info("Escrow intent %s trip started", intent_id)
        return intent

    def release_escrow(self, intent_id):
        """
        Complete the ride: pay the driver what remains and book the base fee

        Returns:
            ReleaseResult
        """
        intent = self.get_intent(intent_id)
        if intent.status not in (ESCROW_FUNDED, ESCROW_IN_PROGRESS):
            raise InvalidStateError('Cannot release escrow in {} status'.format(intent.status))

        self._transition(intent, [ESCROW_FUNDED, ESCROW_IN_PROGRESS], {
            EscrowIntent.status: ESCROW_COMPLETED,
            EscrowIntent.completed_at: self.clock.now(),
        })

        already_paid = intent.driver_premium_share_usd if intent.premium_paid else ZERO
        driver_payout = intent.driver_earnings_usd - already_paid
        base_fee = intent.platform_fee_usd
        if intent.premium_paid:
            base_fee -= intent.platform_premium_share_usd

        try:
            reference = None
            if driver_payout > 0:
                reference = self.payouts.pay_driver(
                    self._driver(intent.driver_id),
                    driver_payout,
                    '{}:release'.format(intent.intent_id),
                )
                self._record(intent, ENTRY_DRIVER_PAYOUT, intent.driver_id, driver_payout, reference)
            if base_fee > 0:
                self._record(intent, ENTRY_PLATFORM_FEE, None, base_fee, None)
            EscrowIntent.query.filter_by(intent_id=intent.intent_id).update(
                {EscrowIntent.release_reference: reference}, synchronize_session=False)
            db.session.commit()
        except PayoutError:
            db.session.rollback()
            logger.error("Release payout failed, escrow intent %s left %s", intent_id, intent.status)
            raise

        db.session.refresh(intent)
        logger.info("Escrow intent %s released: $%s to driver %s, platform fee $%s",
                    intent_id, driver_payout, intent.driver_id, base_fee)
        self._run_hook(self.on_released, intent)
        return ReleaseResult(intent=intent, driver_payout=driver_payout, platform_fee=base_fee)

    def cancel_escrow(self, intent_id, cancelled_by, reason=None):
        """
        Cancel an intent and refund the rider

        Before funding nothing has been captured, so the whole total stays
        with the rider and no refund is issued. After funding the premium
        has already gone to the driver, so only the base fare is refunded.

        Returns:
            CancelResult
        """
        new_status = CANCELLED_BY.get(cancelled_by)
        if new_status is None:
            raise ValidationError("cancelled_by must be 'rider' or 'driver'")

        intent = self.get_intent(intent_id)
        if intent.is_terminal:
            raise InvalidStateError('Cannot cancel escrow in {} status'.format(intent.status))
        if self._is_overdue(intent):
            self._expire(intent)
            raise ExpiredError('Payment intent expired')

        observed = intent.status
        if observed == ESCROW_PENDING:
            refund = intent.total_usd
            driver_keeps_premium = False
        else:
            refund = intent.base_fare_usd
            driver_keeps_premium = bool(intent.premium_paid)

        self._transition(intent, [observed], {
            EscrowIntent.status: new_status,
            EscrowIntent.cancelled_at: self.clock.now(),
            EscrowIntent.cancellation_reason: reason,
        })

        try:
            if refund > 0 and observed != ESCROW_PENDING:
                reference = self.payouts.refund_rider(
                    intent.rider_id,
                    refund,
                    '{}:refund'.format(intent.intent_id),
                    funding_reference=intent.funding_reference,
                )
                self._record(intent, ENTRY_RIDER_REFUND, intent.rider_id, refund, reference)
            db.session.commit()
        except PayoutError:
            db.session.rollback()
            logger.error("Refund failed, escrow intent %s left %s", intent_id, observed)
            raise

        db.session.refresh(intent)
        logger.info("Escrow intent %s cancelled by %s, refunded $%s", intent_id, cancelled_by, refund)
        return CancelResult(intent=intent, rider_refund=refund, driver_keeps_premium=driver_keeps_premium)

    def get_status(self, intent_id):
        intent = self.get_intent(intent_id)
        if self._is_overdue(intent):
            self._expire(intent)

        rates = {intent.local_currency: Decimal(intent.fx_rate)}
        total_local = usd_to_local(intent.total_usd, intent.local_currency, rates)
        return {
            'intent_id': intent.intent_id,
            'ride_id': intent.ride_id,
            'status': intent.status,
            'base_fare_usd': float(intent.base_fare_usd),
            'premium_usd': float(intent.premium_usd),
            'total_usd': float(intent.total_usd),
            'premium_paid': bool(intent.premium_paid),
            'local_currency': intent.local_currency,
            'fx_rate': float(intent.fx_rate),
            'total_local': float(total_local),
            'total_local_formatted': format_local_currency(total_local, intent.local_currency),
            'expires_at': intent.expires_at.isoformat(),
            'funded_at': intent.funded_at.isoformat() if intent.funded_at else None,
            'completed_at': intent.completed_at.isoformat() if intent.completed_at else None,
        }

    def quote(self, intent):
        """Creation response: USD amounts plus the local-currency view at the snapshotted rate"""
        rates = {intent.local_currency: Decimal(intent.fx_rate)}
        return {
            'intent_id': intent.intent_id,
            'status': intent.status,
            'base_fare_usd': float(intent.base_fare_usd),
            'premium_usd': float(intent.premium_usd),
            'total_usd': float(intent.total_usd),
            'platform_fee_usd': float(intent.platform_fee_usd),
            'driver_earnings_usd': float(intent.driver_earnings_usd),
            'local_currency': intent.local_currency,
            'fx_rate': float(intent.fx_rate),
            'base_fare_local': float(usd_to_local(intent.base_fare_usd, intent.local_currency, rates)),
            'premium_local': float(usd_to_local(intent.premium_usd, intent.local_currency, rates)),
            'total_local': float(usd_to_local(intent.total_usd, intent.local_currency, rates)),
            'premium_recipient': 'driver',
            'premium_guaranteed': True,
            'expires_at': intent.expires_at.isoformat(),
        }

    def get_driver_premium_earnings(self, driver_id):
        intents = EscrowIntent.query.filter_by(driver_id=driver_id, premium_paid=True).all()
        total = sum((to_money(i.driver_premium_share_usd) for i in intents), ZERO)
        count = len(intents)
        average = to_money(total / count) if count else ZERO
        return {
            'driver_id': driver_id,
            'total_premiums_earned': float(total),
            'rides_with_premium': count,
            'average_premium': float(average),
        }

    def expire_overdue_intents(self):
        """Expire every pending intent past its TTL; returns how many were expired"""
        now = self.clock.now()
        overdue = EscrowIntent.query.filter(
            EscrowIntent.status == ESCROW_PENDING,
            EscrowIntent.expires_at < now,
        ).all()

        expired = 0
        for intent in overdue:
            try:
                if self._expire(intent):
                    expired += 1
            except Exception:
                db.session.rollback()
                logger.exception("Failed to expire escrow intent %s", intent.intent_id)
        return expired
