"""
Collaborator contracts consumed by the lifecycle services

Guest registration and room/room-type management are plain data
management; the core only needs the lookups and the room status setter
below. GuestService and RoomService are the SQLAlchemy-backed providers.
"""
from abc import ABC, abstractmethod
from typing import List, Optional

from hotelops.models.ontology import Guest, Room, RoomType, RoomStatus


class GuestDirectory(ABC):
    """Guest lookup"""

    @abstractmethod
    def lookup(self, guest_id: int) -> Optional[Guest]:
        ...


class RoomCatalog(ABC):
    """Room lookup and status updates"""

    @abstractmethod
    def lookup(self, room_id: int) -> Optional[Room]:
        ...

    @abstractmethod
    def lookup_by_number(self, room_number: str) -> Optional[Room]:
        ...

    @abstractmethod
    def lookup_by_type(self, room_type_id: int) -> List[Room]:
        ...

    @abstractmethod
    def set_status(self, room_id: int, status: RoomStatus, reason: str = "") -> Room:
        ...


class RoomTypeCatalog(ABC):
    """Room type lookup"""

    @abstractmethod
    def lookup(self, room_type_id: int) -> Optional[RoomType]:
        ...
