"""
Engine tuning for homeward matching and settlement.

Values are read once from the Flask config (``HOMEWARD_*`` keys) into an
immutable ``HomewardPolicy`` that every service receives.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from homeward.errors import ValidationError

TIME_WINDOW_OPTIONS = [15, 30, 45, 60, 90, 120]
DETOUR_OPTIONS = [10, 15, 20, 25]

MIN_TIME_WINDOW_MINUTES = 1
MAX_TIME_WINDOW_MINUTES = 240
MIN_DETOUR_PERCENT = 1
MAX_DETOUR_PERCENT = 50


class MarketDensity(str, Enum):
    SPARSE = "sparse"
    STANDARD = "standard"
    DENSE = "dense"


@dataclass(frozen=True)
class RankingWeights:
    directional_alignment: float
    pickup_proximity: float
    fare_efficiency: float

    def to_dict(self):
        return {
            "directional_alignment": self.directional_alignment,
            "pickup_proximity": self.pickup_proximity,
            "fare_efficiency": self.fare_efficiency,
        }


# Directional weight rises with market density.
DENSITY_WEIGHTS = {
    MarketDensity.SPARSE: RankingWeights(0.30, 0.45, 0.25),
    MarketDensity.STANDARD: RankingWeights(0.40, 0.35, 0.25),
    MarketDensity.DENSE: RankingWeights(0.50, 0.30, 0.20),
}


def parse_market_density(value) -> MarketDensity:
    if isinstance(value, MarketDensity):
        return value
    try:
        return MarketDensity(str(value).strip().lower())
    except ValueError:
        raise ValidationError(
            "Unknown market density '{}'. Expected one of: {}".format(
                value, ", ".join(d.value for d in MarketDensity)
            )
        )


def _weights_from_config(config, preset):
    """Density preset with any HOMEWARD_WEIGHT_* keys applied on top."""
    def weight(key, default):
        value = config.get(key)
        if value is None or value == "":
            return default
        try:
            return float(value)
        except (TypeError, ValueError):
            raise ValidationError("{} must be a number".format(key))

    return RankingWeights(
        directional_alignment=weight("HOMEWARD_WEIGHT_DIRECTIONAL_ALIGNMENT", preset.directional_alignment),
        pickup_proximity=weight("HOMEWARD_WEIGHT_PICKUP_PROXIMITY", preset.pickup_proximity),
        fare_efficiency=weight("HOMEWARD_WEIGHT_FARE_EFFICIENCY", preset.fare_efficiency),
    )


@dataclass(frozen=True)
class HomewardPolicy:
    max_angle_deviation: float = 30.0
    default_detour_percent: float = 15.0
    min_premium_percent: Decimal = Decimal("5")
    max_premium_percent: Decimal = Decimal("12")
    max_premium_cap: Decimal = Decimal("50")
    driver_premium_share_percent: Decimal = Decimal("80")
    base_fare_platform_fee_percent: Decimal = Decimal("10")
    max_daily_sessions: int = 3
    cooldown_minutes_after_no_match: int = 15
    default_time_window_minutes: int = 45
    escrow_ttl_minutes: int = 15
    fx_cache_ttl_seconds: int = 300
    urban_speed_kmh: float = 30.0
    market_density: MarketDensity = MarketDensity.STANDARD
    weights: RankingWeights = DENSITY_WEIGHTS[MarketDensity.STANDARD]

    def __post_init__(self):
        if self.max_angle_deviation <= 0:
            raise ValidationError("max_angle_deviation must be positive")
        if self.min_premium_percent > self.max_premium_percent:
            raise ValidationError("min_premium_percent cannot exceed max_premium_percent")
        if not Decimal("0") <= self.driver_premium_share_percent <= Decimal("100"):
            raise ValidationError("driver_premium_share_percent must be within 0..100")
        if self.urban_speed_kmh <= 0:
            raise ValidationError("urban_speed_kmh must be positive")

    @classmethod
    def from_config(cls, config) -> HomewardPolicy:
        """Build the policy from a Flask config mapping."""
        density = parse_market_density(config.get("HOMEWARD_MARKET_DENSITY", "standard"))
        defaults = cls()
        return cls(
            max_angle_deviation=float(config.get("HOMEWARD_MAX_ANGLE_DEVIATION", defaults.max_angle_deviation)),
            default_detour_percent=float(config.get("HOMEWARD_DEFAULT_DETOUR_PERCENT", defaults.default_detour_percent)),
            min_premium_percent=Decimal(str(config.get("HOMEWARD_MIN_PREMIUM_PERCENT", defaults.min_premium_percent))),
            max_premium_percent=Decimal(str(config.get("HOMEWARD_MAX_PREMIUM_PERCENT", defaults.max_premium_percent))),
            max_premium_cap=Decimal(str(config.get("HOMEWARD_MAX_PREMIUM_CAP", defaults.max_premium_cap))),
            driver_premium_share_percent=Decimal(str(config.get(
                "HOMEWARD_DRIVER_PREMIUM_SHARE_PERCENT", defaults.driver_premium_share_percent
            ))),
            base_fare_platform_fee_percent=Decimal(str(config.get(
                "HOMEWARD_BASE_FARE_PLATFORM_FEE_PERCENT", defaults.base_fare_platform_fee_percent
            ))),
            max_daily_sessions=int(config.get("HOMEWARD_MAX_DAILY_SESSIONS", defaults.max_daily_sessions)),
            cooldown_minutes_after_no_match=int(config.get(
                "HOMEWARD_COOLDOWN_MINUTES_AFTER_NO_MATCH", defaults.cooldown_minutes_after_no_match
            )),
            default_time_window_minutes=int(config.get(
                "HOMEWARD_DEFAULT_TIME_WINDOW_MINUTES", defaults.default_time_window_minutes
            )),
            escrow_ttl_minutes=int(config.get("HOMEWARD_ESCROW_TTL_MINUTES", defaults.escrow_ttl_minutes)),
            fx_cache_ttl_seconds=int(config.get("HOMEWARD_FX_CACHE_TTL_SECONDS", defaults.fx_cache_ttl_seconds)),
            urban_speed_kmh=float(config.get("HOMEWARD_URBAN_SPEED_KMH", defaults.urban_speed_kmh)),
            market_density=density,
            weights=_weights_from_config(config, DENSITY_WEIGHTS[density]),
        )

    def public_dict(self):
        """Subset of the policy that clients may see."""
        return {
            "max_angle_deviation": self.max_angle_deviation,
            "default_detour_percent": self.default_detour_percent,
            "min_premium_percent": float(self.min_premium_percent),
            "max_premium_percent": float(self.max_premium_percent),
            "max_premium_cap": float(self.max_premium_cap),
            "driver_premium_share_percent": float(self.driver_premium_share_percent),
            "max_daily_sessions": self.max_daily_sessions,
            "market_density": self.market_density.value,
            "time_window_options": TIME_WINDOW_OPTIONS,
            "detour_options": DETOUR_OPTIONS,
        }
