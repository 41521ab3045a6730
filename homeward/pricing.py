"""
Detour premium pricing and candidate scoring.

Money is handled as ``Decimal`` quantized to cents. Shares are split by
computing one side and deriving the other by subtraction, so the parts
always add back up to the whole.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

CENT = Decimal("0.01")
HUNDRED = Decimal("100")


def to_money(value) -> Decimal:
    """Coerce a number or numeric string to a cent-quantized Decimal."""
    if value is None:
        return Decimal("0.00")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def percent_of(amount, percent) -> Decimal:
    return to_money(Decimal(amount) * Decimal(percent) / HUNDRED)


def split_share(amount, share_percent):
    """Split ``amount`` into (share, remainder) by percentage."""
    amount = to_money(amount)
    share = percent_of(amount, share_percent)
    return share, amount - share


@dataclass(frozen=True)
class PremiumQuote:
    premium_amount: Decimal
    premium_percent: Decimal
    driver_share: Decimal
    platform_share: Decimal

    def to_dict(self):
        return {
            "premium_amount": float(self.premium_amount),
            "premium_percent": float(self.premium_percent),
            "driver_share": float(self.driver_share),
            "platform_share": float(self.platform_share),
        }


def calculate_premium(base_fare, direction_score: float, policy) -> PremiumQuote:
    """Price the detour premium for a ride with the given direction score.

    The score multiplier runs from 1 (score 0) down to 0.5 (score 100) and
    interpolates the premium percent between the policy's minimum and
    maximum, so a better aligned ride carries a smaller premium. The amount
    is capped at ``max_premium_cap``.
    """
    base_fare = to_money(base_fare)
    score = Decimal(str(direction_score))
    multiplier = Decimal("1") - (score / HUNDRED) * Decimal("0.5")

    low, high = policy.min_premium_percent, policy.max_premium_percent
    premium_percent = low + (high - low) * multiplier
    premium_percent = min(max(premium_percent, low), high)

    premium_amount = min(base_fare * premium_percent / HUNDRED, policy.max_premium_cap)
    premium_amount = to_money(premium_amount)
    driver_share, platform_share = split_share(premium_amount, policy.driver_premium_share_percent)

    return PremiumQuote(
        premium_amount=premium_amount,
        premium_percent=premium_percent.quantize(CENT, rounding=ROUND_HALF_UP),
        driver_share=driver_share,
        platform_share=platform_share,
    )


def fare_efficiency(base_fare) -> float:
    """0-100 attractiveness of the fare; unknown fares score neutral."""
    fare = float(base_fare or 0)
    if fare <= 0:
        return 50.0
    return min(100.0, fare * 2)


def proximity_score(pickup_proximity_km: float) -> float:
    return max(0.0, 100.0 - pickup_proximity_km * 10)


def calculate_total_score(direction_score: float, pickup_proximity_km: float,
                          fare_efficiency_score: float, weights) -> float:
    """Weighted ranking score for an already-compatible candidate."""
    return (
        weights.directional_alignment * direction_score
        + weights.pickup_proximity * proximity_score(pickup_proximity_km)
        + weights.fare_efficiency * fare_efficiency_score
    )
