"""
Entity definitions (ORM)
Room types, rooms, guests, reservations, availability blocks, stays,
incidental charges, invoices and payments
"""
from datetime import datetime
from decimal import Decimal
from enum import Enum
from sqlalchemy import (
    Column, Integer, String, DateTime, Date, ForeignKey, Text,
    Enum as SQLEnum, Boolean, Numeric
)
from sqlalchemy.orm import relationship
from hotelops.database import Base


# ============== Enums ==============

class RoomStatus(str, Enum):
    """Room status"""
    AVAILABLE = "available"
    OCCUPIED = "occupied"
    UNDER_CLEANING = "under_cleaning"
    OUT_OF_SERVICE = "out_of_service"


class ReservationStatus(str, Enum):
    """Reservation status"""
    RESERVED = "reserved"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"
    CHECKED_IN = "checked_in"
    CHECKED_OUT = "checked_out"


class StayStatus(str, Enum):
    """Stay status"""
    ACTIVE = "active"
    CHECKED_OUT = "checked_out"


class InvoiceStatus(str, Enum):
    """Invoice status"""
    DRAFT = "draft"
    ISSUED = "issued"
    PAID = "paid"
    PARTIALLY_PAID = "partially_paid"
    OVERDUE = "overdue"


class PaymentStatus(str, Enum):
    """Payment status"""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


# ============== Entities ==============

class RoomType(Base):
    """Room type - price and tax are only changed through pricing updates"""
    __tablename__ = "room_types"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(50), unique=True, nullable=False)
    description = Column(Text)
    max_occupancy = Column(Integer, nullable=False, default=2)
    base_price = Column(Numeric(12, 2), nullable=False)
    tax_rate = Column(Numeric(5, 4), nullable=False, default=Decimal("0.10"))
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    rooms = relationship("Room", back_populates="room_type")


class Room(Base):
    """Room"""
    __tablename__ = "rooms"

    id = Column(Integer, primary_key=True, index=True)
    room_number = Column(String(10), unique=True, nullable=False)
    floor = Column(Integer, nullable=False)
    room_type_id = Column(Integer, ForeignKey("room_types.id"), nullable=False)
    status = Column(SQLEnum(RoomStatus), nullable=False, default=RoomStatus.AVAILABLE)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    room_type = relationship("RoomType", back_populates="rooms")
    date_blocks = relationship("DateBlock", back_populates="room", cascade="all, delete-orphan")


class Guest(Base):
    """Guest"""
    __tablename__ = "guests"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    email = Column(String(100))
    phone = Column(String(20))
    id_number = Column(String(50))
    is_active = Column(Boolean, default=True)
    deactivation_reason = Column(Text)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    reservations = relationship("Reservation", back_populates="guest")
    stays = relationship("Stay", back_populates="guest")


class Reservation(Base):
    """Reservation - a guest's claim on a room type for [check_in_date, check_out_date)"""
    __tablename__ = "reservations"

    id = Column(Integer, primary_key=True, index=True)
    guest_id = Column(Integer, ForeignKey("guests.id"), nullable=False)
    room_type_id = Column(Integer, ForeignKey("room_types.id"), nullable=False)
    room_id = Column(Integer, ForeignKey("rooms.id"), nullable=True)
    check_in_date = Column(Date, nullable=False)
    check_out_date = Column(Date, nullable=False)
    occupancy = Column(Integer, nullable=False, default=1)
    status = Column(SQLEnum(ReservationStatus), nullable=False, default=ReservationStatus.RESERVED)
    special_requests = Column(Text)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    guest = relationship("Guest", back_populates="reservations")
    room_type = relationship("RoomType")
    room = relationship("Room")
    stays = relationship("Stay", back_populates="reservation")

    @property
    def nights(self) -> int:
        return (self.check_out_date - self.check_in_date).days


class DateBlock(Base):
    """Availability block - room is unavailable for [start_date, end_date)"""
    __tablename__ = "date_blocks"

    id = Column(Integer, primary_key=True, index=True)
    room_id = Column(Integer, ForeignKey("rooms.id"), nullable=False, index=True)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    reservation_id = Column(Integer, ForeignKey("reservations.id"), nullable=True)
    reason = Column(String(100))
    created_at = Column(DateTime, default=datetime.now)

    room = relationship("Room", back_populates="date_blocks")


class Stay(Base):
    """Stay - physical occupancy of a room; reservation is null for walk-ins"""
    __tablename__ = "stays"

    id = Column(Integer, primary_key=True, index=True)
    reservation_id = Column(Integer, ForeignKey("reservations.id"), nullable=True)
    guest_id = Column(Integer, ForeignKey("guests.id"), nullable=False)
    room_id = Column(Integer, ForeignKey("rooms.id"), nullable=False)
    check_in_time = Column(DateTime, nullable=False)
    check_out_time = Column(DateTime)
    expected_check_out = Column(Date)
    key_card = Column(String(32))
    status = Column(SQLEnum(StayStatus), nullable=False, default=StayStatus.ACTIVE)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    reservation = relationship("Reservation", back_populates="stays")
    guest = relationship("Guest", back_populates="stays")
    room = relationship("Room")
    charges = relationship("IncidentalCharge", back_populates="stay",
                           order_by="IncidentalCharge.id")
    invoice = relationship("Invoice", back_populates="stay", uselist=False)


class IncidentalCharge(Base):
    """Incidental charge - append-only"""
    __tablename__ = "incidental_charges"

    id = Column(Integer, primary_key=True, index=True)
    stay_id = Column(Integer, ForeignKey("stays.id"), nullable=False, index=True)
    service_type = Column(String(50), nullable=False)
    description = Column(Text)
    amount = Column(Numeric(12, 2), nullable=False)
    charge_time = Column(DateTime, default=datetime.now)

    stay = relationship("Stay", back_populates="charges")


class Invoice(Base):
    """
    Invoice - one per stay
    total_amount = room_charges + incidental_charges + taxes - discounts
    outstanding_balance = total_amount - amount_paid
    """
    __tablename__ = "invoices"

    id = Column(Integer, primary_key=True, index=True)
    stay_id = Column(Integer, ForeignKey("stays.id"), nullable=False, unique=True)
    guest_id = Column(Integer, ForeignKey("guests.id"), nullable=False, index=True)
    room_charges = Column(Numeric(12, 2), nullable=False, default=0)
    incidental_charges = Column(Numeric(12, 2), nullable=False, default=0)
    taxes = Column(Numeric(12, 2), nullable=False, default=0)
    discounts = Column(Numeric(12, 2), nullable=False, default=0)
    discount_reason = Column(Text)
    total_amount = Column(Numeric(12, 2), nullable=False, default=0)
    amount_paid = Column(Numeric(12, 2), nullable=False, default=0)
    outstanding_balance = Column(Numeric(12, 2), nullable=False, default=0)
    status = Column(SQLEnum(InvoiceStatus), nullable=False, default=InvoiceStatus.DRAFT)
    status_overridden = Column(Boolean, nullable=False, default=False)
    override_reason = Column(Text)
    issued_at = Column(DateTime)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    stay = relationship("Stay", back_populates="invoice")
    guest = relationship("Guest")
    payments = relationship("Payment", back_populates="invoice", order_by="Payment.id")

    @property
    def gross_amount(self) -> Decimal:
        """Charges before discounts"""
        return self.room_charges + self.incidental_charges + self.taxes


class Payment(Base):
    """Payment - appended to exactly one invoice, never removed"""
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    invoice_id = Column(Integer, ForeignKey("invoices.id"), nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    method = Column(String(30), nullable=False)
    status = Column(SQLEnum(PaymentStatus), nullable=False, default=PaymentStatus.COMPLETED)
    transaction_reference = Column(String(32), unique=True, nullable=False)
    payment_time = Column(DateTime, default=datetime.now)

    invoice = relationship("Invoice", back_populates="payments")
