"""
Marketplace collaborators consumed by the homeward engine.

``Marketplace`` is the interface (driver positions, pending rides, saved
home addresses, ride flags, anti-abuse restrictions); ``SqlMarketplace``
implements it over the tables in ``homeward.models.marketplace``.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional, Set

from homeward import db
from homeward.geo import LatLng
from homeward.models import Driver, DriverRestriction, Ride, SavedAddress
from homeward.models.marketplace import HOME_LABEL

PREMIUM_MATCHING_DISABLED = "pmgth_disabled"


@dataclass(frozen=True)
class DriverInfo:
    id: str
    user_id: str
    location: Optional[LatLng]
    is_online: bool
    payout_account: Optional[str] = None


@dataclass(frozen=True)
class PendingRide:
    id: str
    rider_id: str
    pickup: LatLng
    dropoff: LatLng
    estimated_fare: Decimal

    def to_dict(self):
        return {
            "id": self.id,
            "rider_id": self.rider_id,
            "pickup": self.pickup.to_dict(),
            "dropoff": self.dropoff.to_dict(),
            "estimated_fare": float(self.estimated_fare),
        }


@dataclass(frozen=True)
class HomeAddress:
    address: str
    lat: float
    lng: float

    def to_dict(self):
        return {"address": self.address, "lat": self.lat, "lng": self.lng}


class Marketplace:
    """Interface to the parts of the marketplace owned elsewhere."""

    def get_driver(self, driver_id) -> Optional[DriverInfo]:
        raise NotImplementedError

    def get_driver_for_user(self, user_id) -> Optional[DriverInfo]:
        raise NotImplementedError

    def get_pending_rides(self) -> List[PendingRide]:
        raise NotImplementedError

    def get_ride(self, ride_id) -> Optional[PendingRide]:
        raise NotImplementedError

    def get_home_address(self, driver_id) -> Optional[HomeAddress]:
        raise NotImplementedError

    def save_home_address(self, user_id, home: HomeAddress) -> HomeAddress:
        raise NotImplementedError

    def mark_ride_homeward(self, ride_id, premium_amount, premium_percent):
        raise NotImplementedError

    def get_restrictions(self, driver_id) -> Set[str]:
        raise NotImplementedError


def _driver_info(driver):
    if driver is None:
        return None
    location = LatLng.of(driver.current_lat, driver.current_lng) if driver.has_location else None
    return DriverInfo(
        id=driver.id,
        user_id=driver.user_id,
        location=location,
        is_online=bool(driver.is_online),
        payout_account=driver.stripe_connect_id,
    )


def _pending_ride(ride):
    if ride is None:
        return None
    return PendingRide(
        id=ride.id,
        rider_id=ride.rider_id,
        pickup=LatLng.of(ride.pickup_lat, ride.pickup_lng),
        dropoff=LatLng.of(ride.dropoff_lat, ride.dropoff_lng),
        estimated_fare=Decimal(ride.estimated_fare or 0),
    )


class SqlMarketplace(Marketplace):
    """Marketplace backed by the local SQLAlchemy tables.

    Writes are added to the current session; the calling service commits.
    """

    def get_driver(self, driver_id):
        return _driver_info(db.session.get(Driver, driver_id))

    def get_driver_for_user(self, user_id):
        return _driver_info(Driver.query.filter_by(user_id=user_id).first())

    def get_pending_rides(self):
        rides = Ride.query.filter_by(status='pending').order_by(Ride.created_at).all()
        return [_pending_ride(ride) for ride in rides]

    def get_ride(self, ride_id):
        return _pending_ride(db.session.get(Ride, ride_id))

    def get_home_address(self, driver_id):
        driver = db.session.get(Driver, driver_id)
        if not driver:
            return None

        saved = SavedAddress.query.filter_by(user_id=driver.user_id, label=HOME_LABEL).first()
        if not saved:
            return None
        return HomeAddress(address=saved.address, lat=saved.lat, lng=saved.lng)

    def save_home_address(self, user_id, home):
        saved = SavedAddress.query.filter_by(user_id=user_id, label=HOME_LABEL).first()
        if saved:
            saved.address = home.address
            saved.lat = home.lat
            saved.lng = home.lng
        else:
            db.session.add(SavedAddress(
                user_id=user_id,
                label=HOME_LABEL,
                address=home.address,
                lat=home.lat,
                lng=home.lng,
                is_default=True,
            ))
        return home

    def mark_ride_homeward(self, ride_id, premium_amount, premium_percent):
        Ride.query.filter_by(id=ride_id).update({
            'is_homeward_ride': True,
            'homeward_premium_amount': premium_amount,
            'homeward_premium_percent': premium_percent,
        })

    def get_restrictions(self, driver_id):
        rows = DriverRestriction.query.filter_by(driver_id=driver_id, lifted_at=None).all()
        return {row.tag for row in rows}
