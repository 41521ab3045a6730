"""
Premium pricing, share splitting and ranking score tests
"""
from decimal import Decimal

import pytest

from homeward.errors import ValidationError
from homeward.policy import DENSITY_WEIGHTS, HomewardPolicy, MarketDensity
from homeward.pricing import (
    calculate_premium,
    calculate_total_score,
    fare_efficiency,
    proximity_score,
    split_share,
    to_money,
)


@pytest.fixture
def policy():
    return HomewardPolicy()


class TestMoney:

    def test_to_money_rounds_half_up(self):
        assert to_money('2.675') == Decimal('2.68')
        assert to_money(None) == Decimal('0.00')

    def test_split_share_adds_back_up(self):
        assert split_share(5, 80) == (Decimal('4.00'), Decimal('1.00'))
        share, rest = split_share('0.05', 80)
        assert share + rest == Decimal('0.05')

    def test_split_share_of_zero(self):
        assert split_share(0, 80) == (Decimal('0.00'), Decimal('0.00'))


class TestPremium:

    def test_perfect_alignment_halves_the_spread(self, policy):
        quote = calculate_premium(20, 100, policy)
        assert quote.premium_percent == Decimal('8.50')
        assert quote.premium_amount == Decimal('1.70')
        assert quote.driver_share + quote.platform_share == quote.premium_amount

    def test_worst_alignment_pays_the_maximum(self, policy):
        quote = calculate_premium(20, 0, policy)
        assert quote.premium_percent == Decimal('12.00')
        assert quote.premium_amount == Decimal('2.40')

    def test_premium_is_capped(self, policy):
        quote = calculate_premium(1000, 0, policy)
        assert quote.premium_amount == Decimal('50.00')
        assert quote.driver_share == Decimal('40.00')
        assert quote.platform_share == Decimal('10.00')

    def test_percent_is_clamped_to_policy_range(self, policy):
        quote = calculate_premium(20, 300, policy)
        assert quote.premium_percent == policy.min_premium_percent

    @pytest.mark.parametrize('score', [0, 25, 50, 75, 100])
    def test_percent_within_range(self, policy, score):
        quote = calculate_premium('37.40', score, policy)
        assert policy.min_premium_percent <= quote.premium_percent <= policy.max_premium_percent
        assert quote.premium_amount <= policy.max_premium_cap


class TestRankingScore:

    def test_fare_efficiency(self):
        assert fare_efficiency(0) == 50.0
        assert fare_efficiency(None) == 50.0
        assert fare_efficiency(20) == 40.0
        assert fare_efficiency(80) == 100.0

    def test_proximity_score_floors_at_zero(self):
        assert proximity_score(0) == 100.0
        assert proximity_score(2.5) == 75.0
        assert proximity_score(15) == 0.0

    def test_weighted_total(self):
        weights = DENSITY_WEIGHTS[MarketDensity.STANDARD]
        assert calculate_total_score(100, 0, 40, weights) == pytest.approx(85.0)

    def test_dense_market_favours_direction(self):
        dense = DENSITY_WEIGHTS[MarketDensity.DENSE]
        sparse = DENSITY_WEIGHTS[MarketDensity.SPARSE]
        assert calculate_total_score(100, 10, 50, dense) > calculate_total_score(100, 10, 50, sparse)


class TestPolicy:

    def test_from_config_reads_density(self):
        policy = HomewardPolicy.from_config({'HOMEWARD_MARKET_DENSITY': 'dense'})
        assert policy.market_density is MarketDensity.DENSE
        assert policy.weights == DENSITY_WEIGHTS[MarketDensity.DENSE]

    def test_from_config_reads_money_as_decimal(self):
        policy = HomewardPolicy.from_config({'HOMEWARD_MAX_PREMIUM_CAP': '25'})
        assert policy.max_premium_cap == Decimal('25')

    def test_weight_keys_override_density_preset(self):
        policy = HomewardPolicy.from_config({
            'HOMEWARD_MARKET_DENSITY': 'dense',
            'HOMEWARD_WEIGHT_DIRECTIONAL_ALIGNMENT': '0.6',
            'HOMEWARD_WEIGHT_FARE_EFFICIENCY': 0.1,
            'HOMEWARD_WEIGHT_PICKUP_PROXIMITY': None,
        })
        assert policy.weights.directional_alignment == 0.6
        assert policy.weights.fare_efficiency == 0.1
        assert policy.weights.pickup_proximity == DENSITY_WEIGHTS[MarketDensity.DENSE].pickup_proximity

    def test_non_numeric_weight_is_rejected(self):
        with pytest.raises(ValidationError):
            HomewardPolicy.from_config({'HOMEWARD_WEIGHT_PICKUP_PROXIMITY': 'heavy'})

    def test_unknown_density_is_rejected(self):
        with pytest.raises(ValidationError):
            HomewardPolicy.from_config({'HOMEWARD_MARKET_DENSITY': 'rural'})

    def test_inverted_premium_range_is_rejected(self):
        with pytest.raises(ValidationError):
            HomewardPolicy(min_premium_percent=Decimal('15'))
