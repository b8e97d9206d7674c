"""
Pydantic schemas
Command payload validation and read models
"""
from datetime import date
from decimal import Decimal
from typing import Optional, Type, TypeVar
from pydantic import BaseModel, Field, field_validator, model_validator, ConfigDict
from pydantic import ValidationError as PydanticValidationError

from hotelops.exceptions import ValidationError
from hotelops.models.ontology import InvoiceStatus

M = TypeVar("M", bound=BaseModel)

CENT = Decimal("0.01")


def parse_command(model: Type[M], **data) -> M:
    """Validate a command payload, surfacing failures as ValidationError"""
    try:
        return model(**data)
    except PydanticValidationError as e:
        details = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or model.__name__}: {err['msg']}"
            for err in e.errors()
        )
        raise ValidationError(f"Invalid {model.__name__}: {details}") from e


def _strip_required(value: str) -> str:
    value = value.strip() if value else ""
    if not value:
        raise ValueError("must not be empty")
    return value


def _whole_cents(value: Decimal) -> Decimal:
    if value != value.quantize(CENT):
        raise ValueError("must be a whole number of cents")
    return value


# ============== Room types & rooms ==============

class RoomTypeCreate(BaseModel):
    name: str = Field(..., max_length=50)
    description: Optional[str] = None
    max_occupancy: int = Field(..., gt=0)
    base_price: Decimal = Field(..., gt=0)
    tax_rate: Optional[Decimal] = Field(None, ge=0, lt=1)

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        return _strip_required(v)

    @field_validator("base_price")
    @classmethod
    def price_in_cents(cls, v: Decimal) -> Decimal:
        return _whole_cents(v)


class RoomPricingUpdate(BaseModel):
    base_price: Decimal = Field(..., gt=0)
    tax_rate: Decimal = Field(..., ge=0, lt=1)

    @field_validator("base_price")
    @classmethod
    def price_in_cents(cls, v: Decimal) -> Decimal:
        return _whole_cents(v)


class RoomCreate(BaseModel):
    room_number: str = Field(..., max_length=10)
    floor: int = Field(..., ge=1)
    room_type_id: int

    @field_validator("room_number")
    @classmethod
    def number_not_blank(cls, v: str) -> str:
        return _strip_required(v)


# ============== Guests ==============

class GuestCreate(BaseModel):
    name: str = Field(..., max_length=100)
    email: Optional[str] = Field(None, max_length=100)
    phone: Optional[str] = Field(None, max_length=20)
    id_number: Optional[str] = Field(None, max_length=50)

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        return _strip_required(v)


class GuestUpdate(BaseModel):
    name: Optional[str] = Field(None, max_length=100)
    email: Optional[str] = Field(None, max_length=100)
    phone: Optional[str] = Field(None, max_length=20)
    id_number: Optional[str] = Field(None, max_length=50)


# ============== Reservations ==============

class StayDates(BaseModel):
    """Half-open [check_in, check_out) date range"""
    check_in: date
    check_out: date

    @model_validator(mode="after")
    def check_order(self):
        if self.check_in >= self.check_out:
            raise ValueError("check-out date must be after check-in date")
        return self


class ReservationCreate(StayDates):
    guest_id: int
    room_type_id: int
    occupancy: int = Field(..., gt=0)
    special_requests: Optional[str] = None


class ReservationModify(StayDates):
    occupancy: int = Field(..., gt=0)


# ============== Stays & billing ==============

class ChargeCreate(BaseModel):
    service_type: str = Field(..., max_length=50)
    description: Optional[str] = None
    amount: Decimal = Field(..., gt=0)

    @field_validator("service_type")
    @classmethod
    def service_type_not_blank(cls, v: str) -> str:
        return _strip_required(v)

    @field_validator("amount")
    @classmethod
    def amount_in_cents(cls, v: Decimal) -> Decimal:
        return _whole_cents(v)


class PaymentCreate(BaseModel):
    amount: Decimal = Field(..., gt=0)
    method: str = Field(..., max_length=30)

    @field_validator("method")
    @classmethod
    def method_not_blank(cls, v: str) -> str:
        return _strip_required(v)

    @field_validator("amount")
    @classmethod
    def amount_in_cents(cls, v: Decimal) -> Decimal:
        return _whole_cents(v)


class DiscountCreate(BaseModel):
    amount: Decimal = Field(..., gt=0)
    reason: Optional[str] = None

    @field_validator("amount")
    @classmethod
    def amount_in_cents(cls, v: Decimal) -> Decimal:
        return _whole_cents(v)


class StatusOverride(BaseModel):
    status: InvoiceStatus
    reason: Optional[str] = None


class ChargeBreakdown(BaseModel):
    """Charges of a stay as they would be invoiced"""
    stay_id: int
    nights: int
    nightly_rate: Decimal
    tax_rate: Decimal
    room_charges: Decimal
    incidental_charges: Decimal
    taxes: Decimal
    total_amount: Decimal

    model_config = ConfigDict(frozen=True)
