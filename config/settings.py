"""
Configuration settings for different environments
"""
import os

from dotenv import load_dotenv

load_dotenv()


def _env_float(name, default):
    return float(os.environ.get(name, default))


def _env_int(name, default):
    return int(os.environ.get(name, default))


class Config:
    """Base configuration"""
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dev-secret-key-change-in-production'
    JWT_SECRET = os.environ.get('JWT_SECRET') or SECRET_KEY

    # Database
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'sqlite:///homeward.db'
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # CORS
    CORS_ORIGINS = os.environ.get('CORS_ORIGINS', '*').split(',')

    API_PREFIX = '/api'
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')

    # Rate limiting
    RATELIMIT_ENABLED = True

    # External services
    STRIPE_SECRET_KEY = os.environ.get('STRIPE_SECRET_KEY')
    FX_RATES_URL = os.environ.get(
        'FX_RATES_URL', 'https://api.coinbase.com/v2/exchange-rates?currency=USD'
    )
    SENTRY_DSN = os.environ.get('SENTRY_DSN')

    # Homeward matching engine
    HOMEWARD_MAX_ANGLE_DEVIATION = _env_float('HOMEWARD_MAX_ANGLE_DEVIATION', 30)
    HOMEWARD_DEFAULT_DETOUR_PERCENT = _env_float('HOMEWARD_DEFAULT_DETOUR_PERCENT', 15)
    HOMEWARD_MIN_PREMIUM_PERCENT = os.environ.get('HOMEWARD_MIN_PREMIUM_PERCENT', '5')
    HOMEWARD_MAX_PREMIUM_PERCENT = os.environ.get('HOMEWARD_MAX_PREMIUM_PERCENT', '12')
    HOMEWARD_MAX_PREMIUM_CAP = os.environ.get('HOMEWARD_MAX_PREMIUM_CAP', '50')
    HOMEWARD_DRIVER_PREMIUM_SHARE_PERCENT = os.environ.get('HOMEWARD_DRIVER_PREMIUM_SHARE_PERCENT', '80')
    HOMEWARD_BASE_FARE_PLATFORM_FEE_PERCENT = os.environ.get('HOMEWARD_BASE_FARE_PLATFORM_FEE_PERCENT', '10')
    HOMEWARD_MAX_DAILY_SESSIONS = _env_int('HOMEWARD_MAX_DAILY_SESSIONS', 3)
    HOMEWARD_COOLDOWN_MINUTES_AFTER_NO_MATCH = _env_int('HOMEWARD_COOLDOWN_MINUTES_AFTER_NO_MATCH', 15)
    HOMEWARD_DEFAULT_TIME_WINDOW_MINUTES = _env_int('HOMEWARD_DEFAULT_TIME_WINDOW_MINUTES', 45)
    HOMEWARD_ESCROW_TTL_MINUTES = _env_int('HOMEWARD_ESCROW_TTL_MINUTES', 15)
    HOMEWARD_FX_CACHE_TTL_SECONDS = _env_int('HOMEWARD_FX_CACHE_TTL_SECONDS', 300)
    HOMEWARD_URBAN_SPEED_KMH = _env_float('HOMEWARD_URBAN_SPEED_KMH', 30)
    HOMEWARD_MARKET_DENSITY = os.environ.get('HOMEWARD_MARKET_DENSITY', 'standard')
    # Optional per-deployment overrides of the density preset's ranking weights
    HOMEWARD_WEIGHT_DIRECTIONAL_ALIGNMENT = os.environ.get('HOMEWARD_WEIGHT_DIRECTIONAL_ALIGNMENT')
    HOMEWARD_WEIGHT_PICKUP_PROXIMITY = os.environ.get('HOMEWARD_WEIGHT_PICKUP_PROXIMITY')
    HOMEWARD_WEIGHT_FARE_EFFICIENCY = os.environ.get('HOMEWARD_WEIGHT_FARE_EFFICIENCY')

    # Periodic sweep of expired sessions and intents
    ENABLE_SCHEDULER = os.environ.get('ENABLE_SCHEDULER', '').lower() == 'true'
    SWEEP_INTERVAL_SECONDS = _env_int('SWEEP_INTERVAL_SECONDS', 60)


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    TESTING = False


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False
    TESTING = False

    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_size': 20,
        'max_overflow': 40,
        'pool_recycle': 3600,
        'pool_pre_ping': True,
    }


class TestingConfig(Config):
    """Testing configuration with isolated database and safe defaults"""
    TESTING = True
    DEBUG = False

    # Use in-memory SQLite for fast tests
    SQLALCHEMY_DATABASE_URI = os.getenv('TEST_DATABASE_URL', 'sqlite:///:memory:')

    # Dev-mode payouts, no real Stripe calls
    STRIPE_SECRET_KEY = None

    JWT_SECRET = 'test-jwt-secret'

    # Disable rate limiting in tests
    RATELIMIT_ENABLED = False

    LOG_LEVEL = 'WARNING'
    ENABLE_SCHEDULER = False


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': DevelopmentConfig
}
