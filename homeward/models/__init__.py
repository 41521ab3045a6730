"""SQLAlchemy models package"""
from .session import HomewardSession, DailyUsage
from .match import RideMatch
from .escrow import EscrowIntent, SettlementEntry
from .marketplace import Driver, Ride, SavedAddress, DriverRestriction

__all__ = [
    'HomewardSession',
    'DailyUsage',
    'RideMatch',
    'EscrowIntent',
    'SettlementEntry',
    'Driver',
    'Ride',
    'SavedAddress',
    'DriverRestriction',
]
