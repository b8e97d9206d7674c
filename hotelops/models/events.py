"""
Domain events
Published by the services after each unit of work
"""
from enum import Enum
from dataclasses import dataclass, field, asdict
from datetime import datetime, date
from decimal import Decimal
from typing import Optional, Dict, Any


class EventType(str, Enum):
    """Event types"""
    # Reservations
    RESERVATION_CREATED = "reservation.created"
    RESERVATION_MODIFIED = "reservation.modified"
    RESERVATION_CONFIRMED = "reservation.confirmed"
    RESERVATION_CANCELLED = "reservation.cancelled"
    RESERVATION_NO_SHOW = "reservation.no_show"
    ROOM_ASSIGNED = "reservation.room_assigned"

    # Rooms
    ROOM_STATUS_CHANGED = "room.status_changed"

    # Stays
    GUEST_CHECKED_IN = "guest.checked_in"
    GUEST_CHECKED_OUT = "guest.checked_out"
    CHARGE_RECORDED = "stay.charge_recorded"

    # Billing
    INVOICE_GENERATED = "invoice.generated"
    PAYMENT_RECEIVED = "payment.received"
    INVOICE_DISCOUNTED = "invoice.discounted"
    INVOICE_STATUS_OVERRIDDEN = "invoice.status_overridden"


def _plain(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    return value


@dataclass
class BaseEventData:
    """Base event payload"""
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        """JSON-friendly payload"""
        return {key: _plain(value) for key, value in asdict(self).items()}


@dataclass
class ReservationEventData(BaseEventData):
    """Reservation lifecycle event payload"""
    reservation_id: int = 0
    guest_id: Optional[int] = None
    room_type_id: Optional[int] = None
    room_id: Optional[int] = None
    check_in_date: Optional[date] = None
    check_out_date: Optional[date] = None
    status: str = ""


@dataclass
class RoomStatusChangedData(BaseEventData):
    """Room status change payload"""
    room_id: int = 0
    room_number: str = ""
    old_status: str = ""
    new_status: str = ""
    reason: str = ""


@dataclass
class GuestCheckedInData(BaseEventData):
    """Check-in payload"""
    stay_id: int = 0
    guest_id: int = 0
    room_id: int = 0
    room_number: str = ""
    reservation_id: Optional[int] = None
    check_in_time: Optional[datetime] = None
    is_walkin: bool = False


@dataclass
class GuestCheckedOutData(BaseEventData):
    """Check-out payload"""
    stay_id: int = 0
    guest_id: int = 0
    room_id: int = 0
    room_number: str = ""
    check_out_time: Optional[datetime] = None
    invoice_id: Optional[int] = None
    total_amount: float = 0.0


@dataclass
class ChargeRecordedData(BaseEventData):
    """Incidental charge payload"""
    charge_id: int = 0
    stay_id: int = 0
    service_type: str = ""
    amount: float = 0.0


@dataclass
class InvoiceEventData(BaseEventData):
    """Invoice payload (generated / discounted / status override)"""
    invoice_id: int = 0
    stay_id: int = 0
    total_amount: float = 0.0
    outstanding_balance: float = 0.0
    status: str = ""
    reason: str = ""


@dataclass
class PaymentReceivedData(BaseEventData):
    """Payment payload"""
    payment_id: int = 0
    invoice_id: int = 0
    amount: float = 0.0
    method: str = ""
    transaction_reference: str = ""
    outstanding_balance: float = 0.0
