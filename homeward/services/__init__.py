"""Services package

``build_services`` assembles the engine for one Flask app. Collaborators
(clock, FX source, marketplace, payout gateway) can be swapped by keyword,
which is how the tests run against a fixed clock and recorded payouts.
"""
from dataclasses import dataclass

from homeward.clock import SystemClock
from homeward.policy import HomewardPolicy

from .escrow import EscrowService
from .fx import CoinbaseRateSource, FxRateCache
from .marketplace import Marketplace, SqlMarketplace
from .matching import MatchRanker
from .payouts import PayoutGateway, StripePayoutGateway
from .sessions import SessionManager


@dataclass
class HomewardServices:
    policy: HomewardPolicy
    clock: object
    fx: FxRateCache
    marketplace: Marketplace
    payouts: PayoutGateway
    sessions: SessionManager
    ranker: MatchRanker
    escrow: EscrowService

    def sweep_expired(self):
        """Expire overdue sessions and intents; safe to run repeatedly"""
        return {
            'sessions_expired': self.sessions.expire_stale_sessions(),
            'intents_expired': self.escrow.expire_overdue_intents(),
        }


def _credit_matched_session(ranker):
    def on_funded(intent):
        if intent.session_id:
            ranker.credit_funded_match(intent.session_id, intent.ride_id, intent.driver_premium_share_usd)
    return on_funded


def _complete_matched_session(sessions):
    def on_released(intent):
        if intent.session_id:
            sessions.complete_session(intent.session_id)
    return on_released


def build_services(app, clock=None, fx_source=None, marketplace=None, payouts=None):
    policy = HomewardPolicy.from_config(app.config)
    clock = clock or SystemClock()
    fx_source = fx_source or CoinbaseRateSource(app.config['FX_RATES_URL'])
    marketplace = marketplace or SqlMarketplace()
    payouts = payouts or StripePayoutGateway(app.config.get('STRIPE_SECRET_KEY'))

    fx = FxRateCache(fx_source, clock, ttl_seconds=policy.fx_cache_ttl_seconds)
    sessions = SessionManager(policy, clock, marketplace)
    ranker = MatchRanker(policy, clock, marketplace, sessions)
    escrow = EscrowService(
        policy, clock, marketplace, payouts, fx,
        on_funded=_credit_matched_session(ranker),
        on_released=_complete_matched_session(sessions),
    )

    return HomewardServices(
        policy=policy,
        clock=clock,
        fx=fx,
        marketplace=marketplace,
        payouts=payouts,
        sessions=sessions,
        ranker=ranker,
        escrow=escrow,
    )


__all__ = [
    'HomewardServices',
    'build_services',
    'EscrowService',
    'MatchRanker',
    'SessionManager',
    'FxRateCache',
    'CoinbaseRateSource',
    'Marketplace',
    'SqlMarketplace',
    'PayoutGateway',
    'StripePayoutGateway',
]
