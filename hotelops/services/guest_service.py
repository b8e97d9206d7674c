"""
Guest service
Provider of the GuestDirectory contract
"""
from typing import List, Optional
import logging
import threading
from sqlalchemy import or_
from sqlalchemy.orm import Session

from hotelops.database import unit_of_work
from hotelops.exceptions import NotFoundError
from hotelops.models.ontology import Guest
from hotelops.models.schemas import GuestCreate, GuestUpdate, parse_command
from hotelops.services.catalogs import GuestDirectory

logger = logging.getLogger(__name__)


class GuestService(GuestDirectory):
    """Guest service"""

    def __init__(self, db: Session, lock: threading.RLock = None):
        self.db = db
        self._lock = lock or threading.RLock()

    def lookup(self, guest_id: int) -> Optional[Guest]:
        return self.db.get(Guest, guest_id)

    def get_guest(self, guest_id: int) -> Guest:
        guest = self.lookup(guest_id)
        if not guest:
            raise NotFoundError("Guest", guest_id)
        return guest

    def get_all_guests(self) -> List[Guest]:
        return self.db.query(Guest).order_by(Guest.id).all()

    def search_guests(self, keyword: str) -> List[Guest]:
        """Search by name, email or phone"""
        return self.db.query(Guest).filter(
            or_(
                Guest.name.contains(keyword),
                Guest.email.contains(keyword),
                Guest.phone.contains(keyword)
            )
        ).order_by(Guest.id).all()

    def create_guest(self, name: str, email: str = None, phone: str = None,
                     id_number: str = None) -> Guest:
        data = parse_command(GuestCreate, name=name, email=email, phone=phone, id_number=id_number)
        with self._lock, unit_of_work(self.db):
            guest = Guest(**data.model_dump())
            self.db.add(guest)
            self.db.flush()

        logger.info(f"Registered guest {guest.id}")
        return guest

    def update_guest(self, guest_id: int, **changes) -> Guest:
        data = parse_command(GuestUpdate, **changes)
        with self._lock, unit_of_work(self.db):
            guest = self.get_guest(guest_id)
            for key, value in data.model_dump(exclude_unset=True).items():
                setattr(guest, key, value)
        return guest

    def deactivate_guest(self, guest_id: int, reason: str) -> Guest:
        with self._lock, unit_of_work(self.db):
            guest = self.get_guest(guest_id)
            guest.is_active = False
            guest.deactivation_reason = reason

        logger.info(f"Deactivated guest {guest_id}: {reason}")
        return guest

    def reactivate_guest(self, guest_id: int) -> Guest:
        with self._lock, unit_of_work(self.db):
            guest = self.get_guest(guest_id)
            guest.is_active = True
            guest.deactivation_reason = None
        return guest
