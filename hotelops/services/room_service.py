"""
Room and room type services
Providers of the RoomCatalog / RoomTypeCatalog contracts
"""
from typing import List, Optional, Callable
from datetime import datetime
from decimal import Decimal
from functools import partial
import logging
import threading
from sqlalchemy import func
from sqlalchemy.orm import Session

from hotelops.config import settings
from hotelops.database import after_commit, unit_of_work
from hotelops.exceptions import NotFoundError, StateError, ValidationError
from hotelops.models.ontology import Room, RoomType, RoomStatus, Reservation, ReservationStatus
from hotelops.models.schemas import RoomTypeCreate, RoomPricingUpdate, RoomCreate, parse_command
from hotelops.models.events import EventType, RoomStatusChangedData
from hotelops.services.catalogs import RoomCatalog, RoomTypeCatalog
from hotelops.services.event_bus import event_bus, Event

logger = logging.getLogger(__name__)

_OPEN_RESERVATION_STATES = (
    ReservationStatus.RESERVED, ReservationStatus.CONFIRMED, ReservationStatus.CHECKED_IN
)


class RoomTypeService(RoomTypeCatalog):
    """Room type service"""

    def __init__(self, db: Session, lock: threading.RLock = None):
        self.db = db
        self._lock = lock or threading.RLock()

    def lookup(self, room_type_id: int) -> Optional[RoomType]:
        return self.db.get(RoomType, room_type_id)

    def get_room_types(self) -> List[RoomType]:
        return self.db.query(RoomType).order_by(RoomType.id).all()

    def get_room_type_by_name(self, name: str) -> Optional[RoomType]:
        """Case-insensitive name lookup"""
        return self.db.query(RoomType).filter(
            func.lower(RoomType.name) == name.strip().lower()
        ).first()

    def create_room_type(self, name: str, description: Optional[str], max_occupancy: int,
                         base_price: Decimal, tax_rate: Optional[Decimal] = None) -> RoomType:
        """Create a room type; names are unique ignoring case"""
        data = parse_command(
            RoomTypeCreate, name=name, description=description,
            max_occupancy=max_occupancy, base_price=base_price, tax_rate=tax_rate
        )
        with self._lock, unit_of_work(self.db):
            if self.get_room_type_by_name(data.name):
                raise ValidationError(f"Room type '{data.name}' already exists")

            room_type = RoomType(
                name=data.name,
                description=data.description.strip() if data.description else None,
                max_occupancy=data.max_occupancy,
                base_price=data.base_price,
                tax_rate=data.tax_rate if data.tax_rate is not None else settings.DEFAULT_TAX_RATE,
            )
            self.db.add(room_type)
            self.db.flush()

        logger.info(f"Created room type {room_type.name} (id={room_type.id})")
        return room_type

    def update_room_pricing(self, room_type_id: int, base_price: Decimal, tax_rate: Decimal) -> RoomType:
        """Change nightly price and tax rate"""
        data = parse_command(RoomPricingUpdate, base_price=base_price, tax_rate=tax_rate)
        with self._lock, unit_of_work(self.db):
            room_type = self.lookup(room_type_id)
            if not room_type:
                raise NotFoundError("RoomType", room_type_id)
            room_type.base_price = data.base_price
            room_type.tax_rate = data.tax_rate

        logger.info(f"Room type {room_type_id} pricing: {data.base_price} @ tax {data.tax_rate}")
        return room_type


class RoomService(RoomCatalog):
    """Room service"""

    def __init__(self, db: Session, room_types: RoomTypeCatalog,
                 event_publisher: Callable[[Event], None] = None,
                 lock: threading.RLock = None):
        self.db = db
        self.room_types = room_types
        self._lock = lock or threading.RLock()
        self._publish_event = event_publisher or event_bus.publish

    # ============== RoomCatalog ==============

    def lookup(self, room_id: int) -> Optional[Room]:
        return self.db.get(Room, room_id)

    def lookup_by_number(self, room_number: str) -> Optional[Room]:
        return self.db.query(Room).filter(Room.room_number == room_number).first()

    def lookup_by_type(self, room_type_id: int) -> List[Room]:
        return self.db.query(Room).filter(
            Room.room_type_id == room_type_id
        ).order_by(Room.room_number).all()

    def set_status(self, room_id: int, status: RoomStatus, reason: str = "") -> Room:
        """Update room status; setting the current status again is a no-op"""
        status = RoomStatus(status)
        with self._lock, unit_of_work(self.db):
            room = self.lookup(room_id)
            if not room:
                raise NotFoundError("Room", room_id)
            old_status = room.status
            if old_status == status:
                return room
            room.status = status
            logger.info(f"Room {room.room_number}: {old_status.value} -> {status.value}")

            event = Event(
                event_type=EventType.ROOM_STATUS_CHANGED,
                timestamp=datetime.now(),
                data=RoomStatusChangedData(
                    room_id=room.id,
                    room_number=room.room_number,
                    old_status=old_status.value,
                    new_status=status.value,
                    reason=reason
                ).to_dict(),
                source="room_service"
            )
            after_commit(self.db, partial(self._publish_event, event))
        return room

    # ============== Room management ==============

    def get_rooms(self, status: Optional[RoomStatus] = None) -> List[Room]:
        query = self.db.query(Room)
        if status:
            query = query.filter(Room.status == status)
        return query.order_by(Room.room_number).all()

    def create_room(self, room_number: str, floor: int, room_type_id: int) -> Room:
        """Create a room (status Available)"""
        data = parse_command(RoomCreate, room_number=room_number, floor=floor, room_type_id=room_type_id)
        with self._lock, unit_of_work(self.db):
            if self.lookup_by_number(data.room_number):
                raise ValidationError(f"Room '{data.room_number}' already exists")
            if not self.room_types.lookup(data.room_type_id):
                raise NotFoundError("RoomType", data.room_type_id)

            room = Room(
                room_number=data.room_number,
                floor=data.floor,
                room_type_id=data.room_type_id,
                status=RoomStatus.AVAILABLE
            )
            self.db.add(room)
            self.db.flush()

        logger.info(f"Created room {room.room_number} on floor {room.floor}")
        return room

    def delete_room(self, room_id: int) -> None:
        """
        Delete a room.
        Business rules:
        - occupied rooms cannot be deleted
        - rooms bound to an open reservation cannot be deleted
        """
        with self._lock, unit_of_work(self.db):
            room = self.lookup(room_id)
            if not room:
                raise NotFoundError("Room", room_id)
            if room.status == RoomStatus.OCCUPIED:
                raise StateError(f"Room {room.room_number} is occupied and cannot be deleted")

            bound = self.db.query(Reservation).filter(
                Reservation.room_id == room_id,
                Reservation.status.in_(_OPEN_RESERVATION_STATES)
            ).count()
            if bound:
                raise StateError(f"Room {room.room_number} is bound to {bound} open reservation(s)")

            room_number = room.room_number
            self.db.delete(room)

        logger.info(f"Deleted room {room_number}")
