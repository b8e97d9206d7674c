"""
Billing service - invoices and payments

Invariants kept on every write:
    total_amount        = room_charges + incidental_charges + taxes - discounts
    outstanding_balance = total_amount - amount_paid
    status              = derive_invoice_status(total_amount, amount_paid)
                          unless a manual override is in place
"""
from typing import List, Optional, Callable
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from functools import partial
import logging
import threading
import uuid
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from hotelops.config import settings
from hotelops.database import after_commit, unit_of_work
from hotelops.exceptions import NotFoundError, StateError, ValidationError
from hotelops.models.ontology import (
    Invoice, InvoiceStatus, Payment, PaymentStatus, Stay, IncidentalCharge
)
from hotelops.models.schemas import (
    ChargeBreakdown, PaymentCreate, DiscountCreate, StatusOverride, parse_command
)
from hotelops.models.events import EventType, InvoiceEventData, PaymentReceivedData
from hotelops.services.event_bus import event_bus, Event

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
ZERO = Decimal("0")


def to_money(value) -> Decimal:
    """Round half-up to cents"""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def derive_invoice_status(total_amount: Decimal, amount_paid: Decimal) -> InvoiceStatus:
    """Invoice status as a pure function of total and paid amounts"""
    if total_amount - amount_paid <= 0:
        return InvoiceStatus.PAID
    if amount_paid > 0:
        return InvoiceStatus.PARTIALLY_PAID
    return InvoiceStatus.ISSUED


def calculate_nights(stay: Stay, as_of: Optional[datetime] = None) -> int:
    """
    Billable nights of a stay.
    Reservation stays are billed for the reserved nights; walk-ins for the
    calendar nights actually spent (minimum one).
    """
    if stay.reservation is not None:
        return stay.reservation.nights
    end = stay.check_out_time or as_of or datetime.now()
    return max(1, (end.date() - stay.check_in_time.date()).days)


class BillingService:
    """Billing service"""

    def __init__(self, db: Session, event_publisher: Callable[[Event], None] = None,
                 lock: threading.RLock = None):
        self.db = db
        self._lock = lock or threading.RLock()
        self._publish_event = event_publisher or event_bus.publish

    # ============== Charge computation ==============

    def compute_charges(self, stay_id: int) -> ChargeBreakdown:
        """Room, incidental and tax amounts of a stay at current rates"""
        stay = self.db.get(Stay, stay_id)
        if not stay:
            raise NotFoundError("Stay", stay_id)

        room_type = stay.room.room_type
        nights = calculate_nights(stay)
        room_charges = to_money(room_type.base_price * nights)
        incidental = self.db.query(
            func.coalesce(func.sum(IncidentalCharge.amount), 0)
        ).filter(IncidentalCharge.stay_id == stay_id).scalar()
        incidental_charges = to_money(incidental)
        taxes = to_money((room_charges + incidental_charges) * room_type.tax_rate)

        return ChargeBreakdown(
            stay_id=stay_id,
            nights=nights,
            nightly_rate=room_type.base_price,
            tax_rate=room_type.tax_rate,
            room_charges=room_charges,
            incidental_charges=incidental_charges,
            taxes=taxes,
            total_amount=room_charges + incidental_charges + taxes
        )

    def compute_total_charges(self, stay_id: int) -> Decimal:
        """Invoice total once invoiced, otherwise the live estimate"""
        invoice = self.get_invoice_by_stay(stay_id)
        if invoice is not None:
            return invoice.total_amount
        return self.compute_charges(stay_id).total_amount

    # ============== Invoices ==============

    def generate_invoice(self, stay_id: int) -> Invoice:
        """
        Issue the invoice of a stay.
        One invoice per stay: a repeated call returns the existing invoice.
        """
        with self._lock, unit_of_work(self.db):
            existing = self.get_invoice_by_stay(stay_id)
            if existing is not None:
                logger.info(f"Stay {stay_id} already invoiced ({existing.id})")
                return existing

            breakdown = self.compute_charges(stay_id)
            stay = self.db.get(Stay, stay_id)
            invoice = Invoice(
                stay_id=stay_id,
                guest_id=stay.guest_id,
                room_charges=breakdown.room_charges,
                incidental_charges=breakdown.incidental_charges,
                taxes=breakdown.taxes,
                discounts=ZERO,
                total_amount=breakdown.total_amount,
                amount_paid=ZERO,
                outstanding_balance=breakdown.total_amount,
                status=derive_invoice_status(breakdown.total_amount, ZERO),
                issued_at=datetime.now()
            )
            self.db.add(invoice)
            self.db.flush()
            self._emit_invoice(EventType.INVOICE_GENERATED, invoice)

        logger.info(
            f"Generated invoice {invoice.id} for stay {stay_id}: "
            f"{breakdown.nights} night(s), total {breakdown.total_amount}"
        )
        return invoice

    def get_invoice(self, invoice_id: int) -> Invoice:
        invoice = self.db.get(Invoice, invoice_id)
        if not invoice:
            raise NotFoundError("Invoice", invoice_id)
        return invoice

    def get_invoice_by_stay(self, stay_id: int) -> Optional[Invoice]:
        return self.db.query(Invoice).filter(Invoice.stay_id == stay_id).first()

    def get_outstanding_balance(self, invoice_id: int) -> Decimal:
        return self.get_invoice(invoice_id).outstanding_balance

    def get_unpaid_invoices(self) -> List[Invoice]:
        """Invoices with a positive outstanding balance"""
        return self.db.query(Invoice).filter(
            Invoice.outstanding_balance > 0
        ).order_by(Invoice.id).all()

    def get_invoices_by_guest(self, guest_id: int) -> List[Invoice]:
        return self.db.query(Invoice).filter(
            Invoice.guest_id == guest_id
        ).order_by(Invoice.id).all()

    def get_payments_for_invoice(self, invoice_id: int) -> List[Payment]:
        """Payments of an invoice in the order they were received"""
        self.get_invoice(invoice_id)
        return self.db.query(Payment).filter(
            Payment.invoice_id == invoice_id
        ).order_by(Payment.id).all()

    # ============== Payments & adjustments ==============

    def process_payment(self, invoice_id: int, amount: Decimal, method: str) -> Payment:
        """
        Record a completed payment.
        Overpayment is accepted as-is and shows as a negative balance.
        """
        data = parse_command(PaymentCreate, amount=amount, method=method)

        with self._lock, unit_of_work(self.db):
            invoice = self._get_for_update(invoice_id)
            payment = Payment(
                invoice_id=invoice.id,
                amount=to_money(data.amount),
                method=data.method,
                status=PaymentStatus.COMPLETED,
                transaction_reference=self._new_transaction_reference(),
                payment_time=datetime.now()
            )
            self.db.add(payment)

            invoice.amount_paid = invoice.amount_paid + payment.amount
            self._recalculate(invoice)
            try:
                self.db.flush()
            except IntegrityError as e:
                raise StateError(f"Duplicate transaction reference {payment.transaction_reference}") from e

            event = Event(
                event_type=EventType.PAYMENT_RECEIVED,
                timestamp=datetime.now(),
                data=PaymentReceivedData(
                    payment_id=payment.id,
                    invoice_id=invoice.id,
                    amount=float(payment.amount),
                    method=payment.method,
                    transaction_reference=payment.transaction_reference,
                    outstanding_balance=float(invoice.outstanding_balance)
                ).to_dict(),
                source="billing_service"
            )
            after_commit(self.db, partial(self._publish_event, event))

        logger.info(
            f"Invoice {invoice_id} payment {payment.transaction_reference}: "
            f"{payment.amount} via {payment.method}"
        )
        return payment

    def apply_discount(self, invoice_id: int, amount: Decimal, reason: Optional[str] = None) -> Invoice:
        """
        Accumulate a discount; total, balance and status are recomputed.
        Discounts may not exceed the invoice's gross charges.
        """
        data = parse_command(DiscountCreate, amount=amount, reason=reason)

        with self._lock, unit_of_work(self.db):
            invoice = self._get_for_update(invoice_id)
            discounts = invoice.discounts + to_money(data.amount)
            if discounts > invoice.gross_amount:
                raise ValidationError(
                    f"Discounts {discounts} would exceed gross charges {invoice.gross_amount}"
                )
            invoice.discounts = discounts
            if data.reason:
                invoice.discount_reason = data.reason
            self._recalculate(invoice)
            self.db.flush()
            self._emit_invoice(EventType.INVOICE_DISCOUNTED, invoice, reason=data.reason or "")

        logger.info(f"Invoice {invoice_id} discount {data.amount}: {data.reason}")
        return invoice

    def update_invoice_status(self, invoice_id: int, status: InvoiceStatus,
                              reason: Optional[str] = None) -> Invoice:
        """
        Manual status override (e.g. marking an invoice overdue).
        The override holds until the next payment or discount re-derives the status.
        """
        data = parse_command(StatusOverride, status=status, reason=reason)

        with self._lock, unit_of_work(self.db):
            invoice = self._get_for_update(invoice_id)
            invoice.status = data.status
            invoice.status_overridden = True
            invoice.override_reason = data.reason
            self.db.flush()
            self._emit_invoice(EventType.INVOICE_STATUS_OVERRIDDEN, invoice, reason=data.reason or "")

        logger.warning(f"Invoice {invoice_id} status manually set to {data.status.value}")
        return invoice

    # ============== Internals ==============

    def _get_for_update(self, invoice_id: int) -> Invoice:
        invoice = self.db.get(Invoice, invoice_id, populate_existing=True)
        if not invoice:
            raise NotFoundError("Invoice", invoice_id)
        return invoice

    @staticmethod
    def _recalculate(invoice: Invoice) -> None:
        invoice.total_amount = invoice.gross_amount - invoice.discounts
        invoice.outstanding_balance = invoice.total_amount - invoice.amount_paid
        invoice.status = derive_invoice_status(invoice.total_amount, invoice.amount_paid)
        invoice.status_overridden = False
        invoice.override_reason = None

    @staticmethod
    def _new_transaction_reference() -> str:
        return uuid.uuid4().hex[:settings.TRANSACTION_REF_LENGTH].upper()

    def _emit_invoice(self, event_type: EventType, invoice: Invoice, reason: str = "") -> None:
        event = Event(
            event_type=event_type,
            timestamp=datetime.now(),
            data=InvoiceEventData(
                invoice_id=invoice.id,
                stay_id=invoice.stay_id,
                total_amount=float(invoice.total_amount),
                outstanding_balance=float(invoice.outstanding_balance),
                status=invoice.status.value,
                reason=reason
            ).to_dict(),
            source="billing_service"
        )
        after_commit(self.db, partial(self._publish_event, event))
