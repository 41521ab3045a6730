"""
Minimal marketplace tables backing the default collaborator adapters.

Drivers, rides and saved addresses are owned by the wider marketplace;
only the columns the homeward engine reads or writes are mapped here.
"""
from homeward import db
from .base import BaseModel

HOME_LABEL = 'Home'


class Driver(BaseModel):
    __tablename__ = 'drivers'

    user_id = db.Column(db.String(36), nullable=False, unique=True, index=True)
    current_lat = db.Column(db.Float)
    current_lng = db.Column(db.Float)
    is_online = db.Column(db.Boolean, nullable=False, default=False)
    stripe_connect_id = db.Column(db.String(255))

    def __repr__(self):
        return f'<Driver {self.id}>'

    @property
    def has_location(self):
        return self.current_lat is not None and self.current_lng is not None


class Ride(BaseModel):
    __tablename__ = 'rides'

    rider_id = db.Column(db.String(36), nullable=False, index=True)
    status = db.Column(db.String(30), nullable=False, default='pending')

    pickup_lat = db.Column(db.Float, nullable=False)
    pickup_lng = db.Column(db.Float, nullable=False)
    dropoff_lat = db.Column(db.Float, nullable=False)
    dropoff_lng = db.Column(db.Float, nullable=False)
    estimated_fare = db.Column(db.Numeric(10, 2))

    is_homeward_ride = db.Column(db.Boolean, nullable=False, default=False)
    homeward_premium_amount = db.Column(db.Numeric(10, 2))
    homeward_premium_percent = db.Column(db.Numeric(5, 2))

    def __repr__(self):
        return f'<Ride {self.id} {self.status}>'


class SavedAddress(BaseModel):
    __tablename__ = 'saved_addresses'

    user_id = db.Column(db.String(36), nullable=False, index=True)
    label = db.Column(db.String(50), nullable=False)
    address = db.Column(db.Text, nullable=False)
    lat = db.Column(db.Float, nullable=False)
    lng = db.Column(db.Float, nullable=False)
    is_default = db.Column(db.Boolean, nullable=False, default=False)


class DriverRestriction(BaseModel):
    """Anti-abuse flag placed on a driver; active until lifted."""
    __tablename__ = 'driver_restrictions'

    driver_id = db.Column(db.String(36), nullable=False, index=True)
    tag = db.Column(db.String(50), nullable=False)
    reason = db.Column(db.Text)
    lifted_at = db.Column(db.DateTime)
