"""
Reservation service - the reservation state machine

    Reserved   --confirm-->       Confirmed
    Reserved   --cancel-->        Cancelled
    Confirmed  --cancel-->        Cancelled
    Confirmed  --assign_room-->   Confirmed (room bound)
    Confirmed  --mark_no_show-->  No-Show
    Confirmed  --check_in-->      Checked-In   (StayService)
    Checked-In --check_out-->     Checked-Out  (StayService)

Room assignment goes through the availability engine so a bound room is
always blocked for the reservation's interval.
"""
from typing import List, Optional, Callable, Iterable
from datetime import datetime, date
from functools import partial
import logging
import threading
from sqlalchemy.orm import Session

from hotelops.database import after_commit, unit_of_work
from hotelops.exceptions import NotFoundError, StateError, ValidationError
from hotelops.models.ontology import (
    Reservation, ReservationStatus, Room, RoomStatus, Stay, StayStatus
)
from hotelops.models.schemas import ReservationCreate, ReservationModify, StayDates, parse_command
from hotelops.models.events import EventType, ReservationEventData
from hotelops.services.availability_service import AvailabilityService
from hotelops.services.catalogs import GuestDirectory, RoomCatalog, RoomTypeCatalog
from hotelops.services.event_bus import event_bus, Event

logger = logging.getLogger(__name__)


class ReservationService:
    """Reservation service"""

    def __init__(self, db: Session, availability: AvailabilityService,
                 guests: GuestDirectory, rooms: RoomCatalog, room_types: RoomTypeCatalog,
                 event_publisher: Callable[[Event], None] = None,
                 lock: threading.RLock = None):
        self.db = db
        self.availability = availability
        self.guests = guests
        self.rooms = rooms
        self.room_types = room_types
        self._lock = lock or threading.RLock()
        self._publish_event = event_publisher or event_bus.publish

    # ============== Queries ==============

    def get_reservation(self, reservation_id: int) -> Reservation:
        """Get a reservation; NotFoundError when unknown"""
        reservation = self.db.get(Reservation, reservation_id)
        if not reservation:
            raise NotFoundError("Reservation", reservation_id)
        return reservation

    def get_reservation_status(self, reservation_id: int) -> ReservationStatus:
        return self.get_reservation(reservation_id).status

    def get_all_reservations(self) -> List[Reservation]:
        return self.db.query(Reservation).order_by(Reservation.id).all()

    def get_reservations_by_status(self, status: ReservationStatus) -> List[Reservation]:
        return self.db.query(Reservation).filter(
            Reservation.status == status
        ).order_by(Reservation.id).all()

    def get_reservations_by_guest(self, guest_id: int) -> List[Reservation]:
        return self.db.query(Reservation).filter(
            Reservation.guest_id == guest_id
        ).order_by(Reservation.check_in_date, Reservation.id).all()

    def get_guest_reservation_history(self, guest_id: int) -> List[Reservation]:
        """All reservations of a guest, oldest stay dates first"""
        return self.get_reservations_by_guest(guest_id)

    # ============== Creation & modification ==============

    def create_reservation(self, guest_id: int, room_type_id: int, check_in: date,
                           check_out: date, occupancy: int, notes: Optional[str] = None) -> Reservation:
        """
        Create a reservation in Reserved status.
        Business rules:
        - check-in before check-out, check-in not in the past
        - occupancy positive (capacity is enforced by room search)
        - guest and room type must exist
        """
        data = parse_command(
            ReservationCreate, guest_id=guest_id, room_type_id=room_type_id,
            check_in=check_in, check_out=check_out, occupancy=occupancy,
            special_requests=notes
        )
        self._reject_past(data.check_in)

        with self._lock, unit_of_work(self.db):
            if not self.guests.lookup(data.guest_id):
                raise NotFoundError("Guest", data.guest_id)
            if not self.room_types.lookup(data.room_type_id):
                raise NotFoundError("RoomType", data.room_type_id)

            reservation = Reservation(
                guest_id=data.guest_id,
                room_type_id=data.room_type_id,
                check_in_date=data.check_in,
                check_out_date=data.check_out,
                occupancy=data.occupancy,
                special_requests=data.special_requests,
                status=ReservationStatus.RESERVED
            )
            self.db.add(reservation)
            self.db.flush()
            self._emit(EventType.RESERVATION_CREATED, reservation)

        logger.info(f"Created reservation {reservation.id} for guest {data.guest_id}")
        return reservation

    def modify_reservation(self, reservation_id: int, check_in: date, check_out: date,
                           occupancy: int) -> Reservation:
        """
        Change dates and occupancy of an open reservation.
        A bound room keeps its binding; its block moves to the new interval.
        """
        data = parse_command(ReservationModify, check_in=check_in, check_out=check_out, occupancy=occupancy)
        self._reject_past(data.check_in)

        with self._lock, unit_of_work(self.db):
            reservation = self._get_for_update(reservation_id)
            if reservation.status not in (ReservationStatus.RESERVED, ReservationStatus.CONFIRMED):
                raise StateError(
                    f"Reservation {reservation_id} is {reservation.status.value} and cannot be modified"
                )

            if reservation.room_id is not None:
                if not self.availability.is_room_available(
                        reservation.room_id, data.check_in, data.check_out,
                        exclude_reservation_id=reservation.id):
                    raise StateError(
                        f"Room {reservation.room_id} is not available for {data.check_in} - {data.check_out}"
                    )
                self.availability.release_room_dates(
                    reservation.room_id, reservation.check_in_date, reservation.check_out_date
                )
                self.availability.block_room_dates(
                    reservation.room_id, data.check_in, data.check_out,
                    reservation_id=reservation.id, reason="reservation"
                )

            reservation.check_in_date = data.check_in
            reservation.check_out_date = data.check_out
            reservation.occupancy = data.occupancy
            self.db.flush()
            self._emit(EventType.RESERVATION_MODIFIED, reservation)

        logger.info(f"Modified reservation {reservation_id}")
        return reservation

    # ============== Status transitions ==============

    def confirm_reservation(self, reservation_id: int) -> Reservation:
        """Reserved -> Confirmed (no-op when already confirmed)"""
        return self._transition(
            reservation_id, ReservationStatus.CONFIRMED,
            (ReservationStatus.RESERVED,), EventType.RESERVATION_CONFIRMED
        )

    def cancel_reservation(self, reservation_id: int) -> Reservation:
        """Reserved/Confirmed -> Cancelled, releasing a bound room"""
        return self._transition(
            reservation_id, ReservationStatus.CANCELLED,
            (ReservationStatus.RESERVED, ReservationStatus.CONFIRMED),
            EventType.RESERVATION_CANCELLED, release_room=True
        )

    def mark_no_show(self, reservation_id: int) -> Reservation:
        """Confirmed -> No-Show, releasing a bound room"""
        return self._transition(
            reservation_id, ReservationStatus.NO_SHOW,
            (ReservationStatus.CONFIRMED,), EventType.RESERVATION_NO_SHOW, release_room=True
        )

    def mark_checked_in(self, reservation_id: int) -> Reservation:
        """Confirmed -> Checked-In; the reservation must have a room"""
        with self._lock, unit_of_work(self.db):
            reservation = self._get_for_update(reservation_id)
            if reservation.status != ReservationStatus.CONFIRMED:
                raise StateError(
                    f"Reservation {reservation_id} is {reservation.status.value}; only confirmed "
                    f"reservations can be checked in"
                )
            if reservation.room_id is None:
                raise StateError(f"Reservation {reservation_id} has no assigned room")
            reservation.status = ReservationStatus.CHECKED_IN
            self.db.flush()
        return reservation

    def mark_checked_out(self, reservation_id: int) -> Reservation:
        """Checked-In -> Checked-Out; the remaining block is released"""
        with self._lock, unit_of_work(self.db):
            reservation = self._get_for_update(reservation_id)
            if reservation.status == ReservationStatus.CHECKED_OUT:
                return reservation
            if reservation.status != ReservationStatus.CHECKED_IN:
                raise StateError(
                    f"Reservation {reservation_id} is {reservation.status.value} and cannot be checked out"
                )
            reservation.status = ReservationStatus.CHECKED_OUT
            self.db.flush()
            if reservation.room_id is not None:
                self.availability.release_room_dates(
                    reservation.room_id, reservation.check_in_date, reservation.check_out_date
                )
        return reservation

    # ============== Room assignment ==============

    def assign_room(self, reservation_id: int, room_id: int) -> Reservation:
        """
        Bind a room to a confirmed reservation.
        The room is marked occupied and blocked for the reservation's dates.
        """
        with self._lock, unit_of_work(self.db):
            reservation = self._get_for_update(reservation_id)
            room = self._get_room(room_id)
            if reservation.room_id == room.id:
                return reservation
            if reservation.room_id is not None:
                raise StateError(
                    f"Reservation {reservation_id} already has room {reservation.room_id}; use reassign_room"
                )
            self._bind_room(reservation, room)

        logger.info(f"Assigned room {room.room_number} to reservation {reservation_id}")
        return reservation

    def reassign_room(self, reservation_id: int, new_room_id: int) -> Reservation:
        """
        Move a reservation to another room in one unit of work:
        release the old block, free the old room, bind the new one.
        If binding fails nothing changes.
        """
        with self._lock, unit_of_work(self.db):
            reservation = self._get_for_update(reservation_id)
            new_room = self._get_room(new_room_id)
            if reservation.room_id == new_room.id:
                return reservation
            old_room_id = reservation.room_id
            if old_room_id is not None:
                self._release_room(reservation)
            self._bind_room(reservation, new_room)

        logger.info(f"Reassigned reservation {reservation_id}: room {old_room_id} -> {new_room_id}")
        return reservation

    def move_checked_in_room(self, reservation_id: int, room_id: int) -> Reservation:
        """Carry a checked-in reservation and its block over to the room its guest moved to"""
        with self._lock, unit_of_work(self.db):
            reservation = self._get_for_update(reservation_id)
            if reservation.status != ReservationStatus.CHECKED_IN:
                raise StateError(
                    f"Reservation {reservation_id} is {reservation.status.value}; only checked-in "
                    f"reservations move with their stay"
                )
            if reservation.room_id == room_id:
                return reservation
            if reservation.room_id is not None:
                self.availability.release_room_dates(
                    reservation.room_id, reservation.check_in_date, reservation.check_out_date
                )
            self.availability.block_room_dates(
                room_id, reservation.check_in_date, reservation.check_out_date,
                reservation_id=reservation.id, reason="reservation"
            )
            reservation.room_id = room_id
            self.db.flush()
            self._emit(EventType.ROOM_ASSIGNED, reservation)

        logger.info(f"Checked-in reservation {reservation_id} moved to room {room_id}")
        return reservation

    def search_available_rooms(self, check_in: date, check_out: date, room_type_id: int,
                               occupancy: int) -> List[int]:
        """Ids of rooms of the given type that fit ``occupancy`` and are free for the interval"""
        dates = parse_command(StayDates, check_in=check_in, check_out=check_out)
        if occupancy is None or occupancy <= 0:
            raise ValidationError("Occupancy must be positive")

        room_type = self.room_types.lookup(room_type_id)
        if not room_type:
            raise NotFoundError("RoomType", room_type_id)
        if room_type.max_occupancy < occupancy:
            return []

        candidates = [
            room.id for room in self.rooms.lookup_by_type(room_type_id)
            if room.status != RoomStatus.OUT_OF_SERVICE
        ]
        return self.availability.available_room_ids(candidates, dates.check_in, dates.check_out)

    # ============== Internals ==============

    def _get_for_update(self, reservation_id: int) -> Reservation:
        reservation = self.db.get(Reservation, reservation_id, populate_existing=True)
        if not reservation:
            raise NotFoundError("Reservation", reservation_id)
        return reservation

    def _get_room(self, room_id: int) -> Room:
        room = self.rooms.lookup(room_id)
        if not room:
            raise NotFoundError("Room", room_id)
        return room

    @staticmethod
    def _reject_past(check_in: date) -> None:
        if check_in < date.today():
            raise ValidationError(f"Check-in date {check_in} is in the past")

    def _transition(self, reservation_id: int, target: ReservationStatus,
                    allowed_from: Iterable[ReservationStatus], event_type: EventType,
                    release_room: bool = False) -> Reservation:
        with self._lock, unit_of_work(self.db):
            reservation = self._get_for_update(reservation_id)
            if reservation.status == target:
                return reservation
            if reservation.status not in allowed_from:
                logger.warning(
                    f"Rejected reservation {reservation_id} transition "
                    f"{reservation.status.value} -> {target.value}"
                )
                raise StateError(
                    f"Reservation {reservation_id} cannot go from {reservation.status.value} to {target.value}"
                )
            if release_room and reservation.room_id is not None:
                self._release_room(reservation)
            reservation.status = target
            self.db.flush()
            self._emit(event_type, reservation)

        logger.info(f"Reservation {reservation_id} -> {target.value}")
        return reservation

    def _bind_room(self, reservation: Reservation, room: Room) -> None:
        if reservation.status != ReservationStatus.CONFIRMED:
            raise StateError(
                f"Reservation {reservation.id} is {reservation.status.value}; rooms are assigned "
                f"to confirmed reservations only"
            )
        if room.room_type_id != reservation.room_type_id:
            raise ValidationError(
                f"Room {room.room_number} is not of the reserved room type {reservation.room_type_id}"
            )
        if room.status == RoomStatus.OUT_OF_SERVICE:
            raise StateError(f"Room {room.room_number} is out of service")
        if not self.availability.is_room_available(
                room.id, reservation.check_in_date, reservation.check_out_date):
            raise StateError(
                f"Room {room.room_number} is not available for "
                f"{reservation.check_in_date} - {reservation.check_out_date}"
            )

        self.availability.block_room_dates(
            room.id, reservation.check_in_date, reservation.check_out_date,
            reservation_id=reservation.id, reason="reservation"
        )
        reservation.room_id = room.id
        self.rooms.set_status(room.id, RoomStatus.OCCUPIED, reason=f"reservation {reservation.id}")
        self.db.flush()
        self._emit(EventType.ROOM_ASSIGNED, reservation)

    def _release_room(self, reservation: Reservation) -> None:
        room_id = reservation.room_id
        self.availability.release_room_dates(
            room_id, reservation.check_in_date, reservation.check_out_date
        )
        reservation.room_id = None
        self.db.flush()

        # the room may still be held by another stay or another booking
        in_use = self.db.query(Stay).filter(
            Stay.room_id == room_id, Stay.status == StayStatus.ACTIVE
        ).first()
        still_bound = self.db.query(Reservation).filter(
            Reservation.room_id == room_id,
            Reservation.id != reservation.id,
            Reservation.status.in_((ReservationStatus.CONFIRMED, ReservationStatus.CHECKED_IN))
        ).first()
        if not in_use and not still_bound:
            self.rooms.set_status(room_id, RoomStatus.AVAILABLE, reason=f"released by reservation {reservation.id}")

    def _emit(self, event_type: EventType, reservation: Reservation) -> None:
        event = Event(
            event_type=event_type,
            timestamp=datetime.now(),
            data=ReservationEventData(
                reservation_id=reservation.id,
                guest_id=reservation.guest_id,
                room_type_id=reservation.room_type_id,
                room_id=reservation.room_id,
                check_in_date=reservation.check_in_date,
                check_out_date=reservation.check_out_date,
                status=reservation.status.value
            ).to_dict(),
            source="reservation_service"
        )
        after_commit(self.db, partial(self._publish_event, event))
