"""
Payout gateway used by the escrow engine.

Stripe Connect when STRIPE_SECRET_KEY is configured: driver payouts are
transfers to the driver's connected account and rider refunds are refunds
against the funding PaymentIntent. A live gateway refuses to pay a driver
without a connected account or refund without the funding PaymentIntent.
Without a key the gateway runs in dev mode and hands back ``*_dev_*``
references.
"""
import logging
import secrets

from homeward.errors import PayoutError

logger = logging.getLogger(__name__)


def _to_cents(amount):
    return int((amount * 100).to_integral_value())


def _dev_reference(prefix):
    return '{}_dev_{}'.format(prefix, secrets.token_hex(6))


class PayoutGateway:
    """Interface for the credit/debit calls the escrow engine issues."""

    # Funding must carry the rider's payment reference so it can be refunded
    requires_funding_reference = False

    def pay_driver(self, driver, amount, reference):
        """Credit ``amount`` (Decimal USD) to the driver. Returns a provider reference."""
        raise NotImplementedError

    def refund_rider(self, rider_id, amount, reference, funding_reference=None):
        """Return ``amount`` (Decimal USD) to the rider. Returns a provider reference."""
        raise NotImplementedError


class StripePayoutGateway(PayoutGateway):

    def __init__(self, api_key=None):
        self.api_key = api_key or ''
        self._stripe = None

    def _get_stripe(self):
        if self._stripe is None:
            import stripe
            stripe.api_key = self.api_key
            self._stripe = stripe
        return self._stripe

    @property
    def live(self):
        return bool(self.api_key)

    @property
    def requires_funding_reference(self):
        return self.live

    def pay_driver(self, driver, amount, reference):
        if not self.live:
            logger.warning("Dev-mode payout of $%s to driver %s (%s)", amount, driver.id, reference)
            return _dev_reference('tr')

        account = getattr(driver, 'payout_account', None)
        if not account:
            logger.error("Driver %s has no connected payout account", driver.id)
            raise PayoutError('Driver has no connected payout account')

        stripe = self._get_stripe()
        try:
            transfer = stripe.Transfer.create(
                amount=_to_cents(amount),
                currency='usd',
                destination=account,
                transfer_group=reference,
                metadata={'reference': reference, 'driver_id': driver.id},
            )
        except Exception as e:
            logger.error("Stripe transfer to driver %s failed: %s", driver.id, e)
            raise PayoutError('Stripe payout error: {}'.format(e)) from e
        return transfer.id

    def refund_rider(self, rider_id, amount, reference, funding_reference=None):
        if not self.live:
            logger.warning("Dev-mode refund of $%s to rider %s (%s)", amount, rider_id, reference)
            return _dev_reference('re')

        if not funding_reference:
            logger.error("Refund %s for rider %s has no funding PaymentIntent", reference, rider_id)
            raise PayoutError('No funding payment to refund')

        stripe = self._get_stripe()
        try:
            refund = stripe.Refund.create(
                payment_intent=funding_reference,
                amount=_to_cents(amount),
                metadata={'reference': reference, 'rider_id': rider_id},
            )
        except Exception as e:
            logger.error("Stripe refund to rider %s failed: %s", rider_id, e)
            raise PayoutError('Stripe refund error: {}'.format(e)) from e
        return refund.id
