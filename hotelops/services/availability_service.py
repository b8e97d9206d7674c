"""
Availability engine
Source of truth for "is room R free for [check_in, check_out)".

Blocks are half-open date intervals. Two intervals [a, b) and [c, d)
overlap iff a < d and c < b, so a stay ending on the 5th never collides
with one starting on the 5th.
"""
from typing import Iterable, List, Optional, Set
from datetime import date
import logging
import threading
from sqlalchemy.orm import Session

from hotelops.database import unit_of_work
from hotelops.exceptions import StateError, ValidationError
from hotelops.models.ontology import DateBlock

logger = logging.getLogger(__name__)


def intervals_overlap(a: date, b: date, c: date, d: date) -> bool:
    """Half-open interval overlap test for [a, b) and [c, d)"""
    return a < d and c < b


class AvailabilityService:
    """Availability engine"""

    def __init__(self, db: Session, lock: threading.RLock = None):
        self.db = db
        self._lock = lock or threading.RLock()

    def _overlapping(self, room_ids: Iterable[int], check_in: date, check_out: date,
                     exclude_reservation_id: Optional[int] = None):
        query = self.db.query(DateBlock).filter(
            DateBlock.room_id.in_(list(room_ids)),
            DateBlock.start_date < check_out,
            check_in < DateBlock.end_date
        )
        if exclude_reservation_id is not None:
            query = query.filter(
                (DateBlock.reservation_id.is_(None)) |
                (DateBlock.reservation_id != exclude_reservation_id)
            )
        return query

    def is_room_available(self, room_id: int, check_in: date, check_out: date,
                          exclude_reservation_id: Optional[int] = None) -> bool:
        """True unless a recorded block overlaps [check_in, check_out)"""
        return self._overlapping(
            [room_id], check_in, check_out, exclude_reservation_id
        ).first() is None

    def available_room_ids(self, room_ids: Iterable[int], check_in: date, check_out: date) -> List[int]:
        """Subset of ``room_ids`` free for the whole interval, input order kept"""
        room_ids = list(room_ids)
        if not room_ids:
            return []
        blocked: Set[int] = {
            block.room_id for block in self._overlapping(room_ids, check_in, check_out)
        }
        return [room_id for room_id in room_ids if room_id not in blocked]

    def get_blocks(self, room_id: int) -> List[DateBlock]:
        return self.db.query(DateBlock).filter(
            DateBlock.room_id == room_id
        ).order_by(DateBlock.start_date, DateBlock.id).all()

    def block_room_dates(self, room_id: int, check_in: date, check_out: date,
                         reservation_id: Optional[int] = None, reason: Optional[str] = None) -> DateBlock:
        """
        Record a block for a reservation or a manual hold (maintenance, cleaning).
        Overlapping blocks on the same room are rejected; adjacent ones are fine.
        """
        if check_in >= check_out:
            raise ValidationError("Block end date must be after its start date")

        with self._lock, unit_of_work(self.db):
            if not self.is_room_available(room_id, check_in, check_out):
                raise StateError(
                    f"Room {room_id} already blocked within {check_in} - {check_out}"
                )
            block = DateBlock(
                room_id=room_id,
                start_date=check_in,
                end_date=check_out,
                reservation_id=reservation_id,
                reason=reason
            )
            self.db.add(block)
            self.db.flush()

        logger.info(f"Blocked room {room_id} for [{check_in}, {check_out})")
        return block

    def release_room_dates(self, room_id: int, check_in: date, check_out: date) -> bool:
        """Remove the block matching room and interval; False when there is none"""
        with self._lock, unit_of_work(self.db):
            block = self.db.query(DateBlock).filter(
                DateBlock.room_id == room_id,
                DateBlock.start_date == check_in,
                DateBlock.end_date == check_out
            ).order_by(DateBlock.id).first()
            if block is None:
                return False
            self.db.delete(block)
            self.db.flush()

        logger.info(f"Released room {room_id} for [{check_in}, {check_out})")
        return True
