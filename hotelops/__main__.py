"""
Demo run of the booking lifecycle

  python -m hotelops [DATABASE_URL]

Creates a room type and room, books three nights, checks the guest in,
records a minibar charge, checks out and settles the invoice.
"""
import logging
import sys
from datetime import date, timedelta
from decimal import Decimal

from hotelops.config import configure_logging
from hotelops.engine import HotelEngine

logger = logging.getLogger("hotelops.demo")


def run(hotel: HotelEngine) -> None:
    standard = hotel.room_types.create_room_type(
        "Standard", "Standard room with basic amenities", 2, Decimal("100"), Decimal("0.10")
    )
    room = hotel.rooms.create_room("101", 1, standard.id)
    guest = hotel.guests.create_guest("Ada Lovelace", email="ada@example.com")

    check_in = date.today()
    reservation = hotel.reservations.create_reservation(
        guest.id, standard.id, check_in, check_in + timedelta(days=3), 2, "Late arrival"
    )
    hotel.reservations.confirm_reservation(reservation.id)
    free = hotel.reservations.search_available_rooms(
        reservation.check_in_date, reservation.check_out_date, standard.id, 2
    )
    logger.info(f"Free rooms: {free}")
    hotel.reservations.assign_room(reservation.id, room.id)

    stay = hotel.stays.check_in_guest(reservation.id)
    hotel.stays.record_charge(stay.id, "Minibar", "Snacks and drinks", Decimal("25"))
    hotel.stays.check_out_guest(stay.id)

    invoice = hotel.billing.get_invoice_by_stay(stay.id)
    print(f"Invoice #{invoice.id}")
    print(f"  room charges        {invoice.room_charges:>10}")
    print(f"  incidental charges  {invoice.incidental_charges:>10}")
    print(f"  taxes               {invoice.taxes:>10}")
    print(f"  total               {invoice.total_amount:>10}")

    payment = hotel.billing.process_payment(invoice.id, invoice.total_amount, "Credit Card")
    invoice = hotel.billing.get_invoice(invoice.id)
    print(f"  paid                {invoice.amount_paid:>10}  ref {payment.transaction_reference}")
    print(f"  outstanding         {invoice.outstanding_balance:>10}  [{invoice.status.value}]")


def main() -> None:
    configure_logging()
    url = sys.argv[1] if len(sys.argv) > 1 else "sqlite:///:memory:"
    hotel = HotelEngine.from_url(url)
    try:
        run(hotel)
    finally:
        hotel.close()


if __name__ == "__main__":
    main()
