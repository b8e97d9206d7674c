"""
Composition root
Wires the collaborators and lifecycle services by explicit constructor injection
"""
from typing import Callable, Optional
import threading
from sqlalchemy.orm import Session

from hotelops.database import init_db, make_engine, make_session_factory
from hotelops.services.availability_service import AvailabilityService
from hotelops.services.billing_service import BillingService
from hotelops.services.event_bus import Event, event_bus
from hotelops.services.guest_service import GuestService
from hotelops.services.reservation_service import ReservationService
from hotelops.services.room_service import RoomService, RoomTypeService
from hotelops.services.stay_service import StayService


class HotelEngine:
    """
    The booking lifecycle and billing engine.

    Dependency order (calls only flow downstream):
        Availability <- Reservation <- Stay -> Billing
    """

    def __init__(self, db: Session, event_publisher: Optional[Callable[[Event], None]] = None):
        publish = event_publisher or event_bus.publish
        self.db = db
        # shared by every service: one writer at a time
        self.lock = lock = threading.RLock()

        # collaborators
        self.guests = GuestService(db, lock)
        self.room_types = RoomTypeService(db, lock)
        self.rooms = RoomService(db, self.room_types, publish, lock)

        # core
        self.availability = AvailabilityService(db, lock)
        self.reservations = ReservationService(
            db, self.availability, self.guests, self.rooms, self.room_types, publish, lock
        )
        self.billing = BillingService(db, publish, lock)
        self.stays = StayService(
            db, self.reservations, self.availability, self.guests, self.rooms, self.billing, publish, lock
        )

    @classmethod
    def from_url(cls, url: str = None, event_publisher: Optional[Callable[[Event], None]] = None) -> "HotelEngine":
        """Create tables if needed and wire an engine over thread-local sessions"""
        engine = make_engine(url)
        init_db(engine)
        return cls(make_session_factory(engine), event_publisher)

    def close(self) -> None:
        remove = getattr(self.db, "remove", None)
        if remove is not None:
            remove()
        else:
            self.db.close()
