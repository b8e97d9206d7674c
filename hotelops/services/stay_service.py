"""
Stay service - check-in, incidental charges, check-out
Manages the Stay object (Active -> Checked-Out).
Check-out is the single hand-off point to billing.
"""
from typing import List, Optional, Callable
from datetime import datetime, date, timedelta
from decimal import Decimal
from functools import partial
import logging
import threading
import uuid
from sqlalchemy.orm import Session

from hotelops.database import after_commit, unit_of_work
from hotelops.exceptions import NotFoundError, StateError, ValidationError
from hotelops.models.ontology import (
    Stay, StayStatus, IncidentalCharge, Room, RoomStatus
)
from hotelops.models.schemas import ChargeCreate, parse_command
from hotelops.models.events import (
    EventType, GuestCheckedInData, GuestCheckedOutData, ChargeRecordedData
)
from hotelops.services.availability_service import AvailabilityService
from hotelops.services.billing_service import BillingService
from hotelops.services.catalogs import GuestDirectory, RoomCatalog
from hotelops.services.event_bus import event_bus, Event
from hotelops.services.reservation_service import ReservationService

logger = logging.getLogger(__name__)


def new_key_card() -> str:
    return uuid.uuid4().hex[:16].upper()


class StayService:
    """Stay service"""

    def __init__(self, db: Session, reservations: ReservationService,
                 availability: AvailabilityService, guests: GuestDirectory,
                 rooms: RoomCatalog, billing: BillingService,
                 event_publisher: Callable[[Event], None] = None,
                 lock: threading.RLock = None):
        self.db = db
        self.reservations = reservations
        self.availability = availability
        self.guests = guests
        self.rooms = rooms
        self.billing = billing
        self._lock = lock or threading.RLock()
        self._publish_event = event_publisher or event_bus.publish

    # ============== Queries ==============

    def get_stay(self, stay_id: int) -> Stay:
        stay = self.db.get(Stay, stay_id)
        if not stay:
            raise NotFoundError("Stay", stay_id)
        return stay

    def get_active_stays(self) -> List[Stay]:
        return self.db.query(Stay).filter(
            Stay.status == StayStatus.ACTIVE
        ).order_by(Stay.id).all()

    def get_active_stay_by_room(self, room_number: str) -> Optional[Stay]:
        """Current stay in a room, by room number"""
        return self.db.query(Stay).join(Room, Stay.room_id == Room.id).filter(
            Room.room_number == room_number,
            Stay.status == StayStatus.ACTIVE
        ).first()

    def get_guest_stay_history(self, guest_id: int) -> List[Stay]:
        return self.db.query(Stay).filter(
            Stay.guest_id == guest_id
        ).order_by(Stay.check_in_time, Stay.id).all()

    def get_charges_for_stay(self, stay_id: int) -> List[IncidentalCharge]:
        return self.db.query(IncidentalCharge).filter(
            IncidentalCharge.stay_id == stay_id
        ).order_by(IncidentalCharge.id).all()

    def get_outstanding_balance(self, stay_id: int) -> Decimal:
        """Outstanding balance of the stay's invoice; zero before invoicing"""
        invoice = self.billing.get_invoice_by_stay(stay_id)
        if invoice is None:
            return Decimal("0")
        return invoice.outstanding_balance

    # ============== Check-in ==============

    def check_in_guest(self, reservation_id: int) -> Stay:
        """
        Check in from a reservation.
        Business rules:
        - reservation must be confirmed and have a room assigned
        - room becomes occupied, reservation becomes checked-in
        """
        with self._lock, unit_of_work(self.db):
            reservation = self.reservations.get_reservation(reservation_id)
            self.reservations.mark_checked_in(reservation_id)

            occupant = self.db.query(Stay).filter(
                Stay.room_id == reservation.room_id, Stay.status == StayStatus.ACTIVE
            ).first()
            if occupant:
                raise StateError(f"Room {reservation.room_id} still has active stay {occupant.id}")

            stay = Stay(
                reservation_id=reservation.id,
                guest_id=reservation.guest_id,
                room_id=reservation.room_id,
                check_in_time=datetime.now(),
                expected_check_out=reservation.check_out_date,
                key_card=new_key_card(),
                status=StayStatus.ACTIVE
            )
            self.db.add(stay)
            self.db.flush()

            self.rooms.set_status(reservation.room_id, RoomStatus.OCCUPIED, reason=f"stay {stay.id}")
            self._emit_checked_in(stay, is_walkin=False)

        logger.info(f"Checked in reservation {reservation_id} as stay {stay.id}")
        return stay

    def check_in_walk_in(self, guest_id: int, room_id: int,
                         expected_check_out: Optional[date] = None) -> Stay:
        """
        Walk-in check-in without a reservation.
        The room must be available and free from today until the expected
        check-out (one night when none is given); those dates are blocked.
        """
        today = date.today()
        until = expected_check_out or today + timedelta(days=1)
        if until <= today:
            raise ValidationError(f"Expected check-out {until} must be after today")

        with self._lock, unit_of_work(self.db):
            if not self.guests.lookup(guest_id):
                raise NotFoundError("Guest", guest_id)
            room = self.rooms.lookup(room_id)
            if not room:
                raise NotFoundError("Room", room_id)
            if room.status != RoomStatus.AVAILABLE:
                raise StateError(f"Room {room.room_number} is {room.status.value}")

            if not self.availability.is_room_available(room.id, today, until):
                raise StateError(f"Room {room.room_number} is blocked within {today} - {until}")

            stay = Stay(
                guest_id=guest_id,
                room_id=room.id,
                check_in_time=datetime.now(),
                expected_check_out=until,
                key_card=new_key_card(),
                status=StayStatus.ACTIVE
            )
            self.db.add(stay)
            self.db.flush()
            self.availability.block_room_dates(room.id, today, until, reason=f"walk-in stay {stay.id}")

            self.rooms.set_status(room.id, RoomStatus.OCCUPIED, reason=f"walk-in stay {stay.id}")
            self._emit_checked_in(stay, is_walkin=True)

        logger.info(f"Walk-in check-in of guest {guest_id} to room {room.room_number}")
        return stay

    def assign_room_and_credentials(self, stay_id: int, room_id: int, key_card: str) -> Stay:
        """Move an active stay to another room and issue a new key card"""
        with self._lock, unit_of_work(self.db):
            stay = self._get_for_update(stay_id)
            if stay.status != StayStatus.ACTIVE:
                raise StateError(f"Stay {stay_id} is already checked out")
            room = self.rooms.lookup(room_id)
            if not room:
                raise NotFoundError("Room", room_id)

            if room.id != stay.room_id:
                if room.status != RoomStatus.AVAILABLE:
                    raise StateError(f"Room {room.room_number} is {room.status.value}")
                old_room_id = stay.room_id
                if stay.reservation_id is not None:
                    self.reservations.move_checked_in_room(stay.reservation_id, room.id)
                else:
                    start, end = self._walk_in_dates(stay)
                    self.availability.release_room_dates(old_room_id, start, end)
                    self.availability.block_room_dates(room.id, start, end, reason=f"walk-in stay {stay.id}")
                stay.room_id = room.id
                self.db.flush()
                self.rooms.set_status(old_room_id, RoomStatus.UNDER_CLEANING, reason=f"stay {stay.id} moved")
                self.rooms.set_status(room.id, RoomStatus.OCCUPIED, reason=f"stay {stay.id}")

            stay.key_card = key_card
            self.db.flush()

        logger.info(f"Stay {stay_id} now in room {room.room_number}")
        return stay

    # ============== Charges ==============

    def record_charge(self, stay_id: int, service_type: str, description: Optional[str],
                      amount: Decimal) -> IncidentalCharge:
        """Append an incidental charge to an active stay"""
        data = parse_command(ChargeCreate, service_type=service_type, description=description, amount=amount)

        with self._lock, unit_of_work(self.db):
            stay = self._get_for_update(stay_id)
            if stay.status != StayStatus.ACTIVE:
                raise StateError(f"Stay {stay_id} is checked out; charges are closed")

            charge = IncidentalCharge(
                stay_id=stay.id,
                service_type=data.service_type,
                description=data.description,
                amount=data.amount,
                charge_time=datetime.now()
            )
            self.db.add(charge)
            self.db.flush()

            event = Event(
                event_type=EventType.CHARGE_RECORDED,
                timestamp=datetime.now(),
                data=ChargeRecordedData(
                    charge_id=charge.id,
                    stay_id=stay.id,
                    service_type=charge.service_type,
                    amount=float(charge.amount)
                ).to_dict(),
                source="stay_service"
            )
            after_commit(self.db, partial(self._publish_event, event))

        logger.info(f"Stay {stay_id} charge: {data.service_type} {data.amount}")
        return charge

    # ============== Check-out ==============

    def check_out_guest(self, stay_id: int) -> Stay:
        """
        Check out and bill.
        Business rules:
        - stay closes, room goes to cleaning, reservation (if any) checks out
        - exactly one invoice is generated per stay
        - checking out an already checked-out stay is a no-op
        """
        with self._lock, unit_of_work(self.db):
            stay = self._get_for_update(stay_id)
            if stay.status == StayStatus.CHECKED_OUT:
                logger.info(f"Stay {stay_id} already checked out")
                return stay

            stay.check_out_time = datetime.now()
            stay.status = StayStatus.CHECKED_OUT
            self.db.flush()

            if stay.reservation_id is not None:
                self.reservations.mark_checked_out(stay.reservation_id)
            else:
                self.availability.release_room_dates(stay.room_id, *self._walk_in_dates(stay))
            self.rooms.set_status(stay.room_id, RoomStatus.UNDER_CLEANING, reason=f"stay {stay.id} checked out")

            invoice = self.billing.generate_invoice(stay.id)

            event = Event(
                event_type=EventType.GUEST_CHECKED_OUT,
                timestamp=datetime.now(),
                data=GuestCheckedOutData(
                    stay_id=stay.id,
                    guest_id=stay.guest_id,
                    room_id=stay.room_id,
                    room_number=stay.room.room_number,
                    check_out_time=stay.check_out_time,
                    invoice_id=invoice.id,
                    total_amount=float(invoice.total_amount)
                ).to_dict(),
                source="stay_service"
            )
            after_commit(self.db, partial(self._publish_event, event))

        logger.info(f"Checked out stay {stay_id}, invoice {invoice.id}")
        return stay

    # ============== Internals ==============

    def _get_for_update(self, stay_id: int) -> Stay:
        stay = self.db.get(Stay, stay_id, populate_existing=True)
        if not stay:
            raise NotFoundError("Stay", stay_id)
        return stay

    @staticmethod
    def _walk_in_dates(stay: Stay):
        """Blocked interval of a walk-in stay"""
        return stay.check_in_time.date(), stay.expected_check_out

    def _emit_checked_in(self, stay: Stay, is_walkin: bool) -> None:
        event = Event(
            event_type=EventType.GUEST_CHECKED_IN,
            timestamp=datetime.now(),
            data=GuestCheckedInData(
                stay_id=stay.id,
                guest_id=stay.guest_id,
                room_id=stay.room_id,
                room_number=stay.room.room_number,
                reservation_id=stay.reservation_id,
                check_in_time=stay.check_in_time,
                is_walkin=is_walkin
            ).to_dict(),
            source="stay_service"
        )
        after_commit(self.db, partial(self._publish_event, event))
