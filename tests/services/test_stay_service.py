"""
Tests for hotelops/services/stay_service.py
Covers: reservation and walk-in check-in, room moves, incidental charges,
        check-out hand-off to billing
"""
import pytest
from datetime import date, timedelta
from decimal import Decimal

from hotelops.exceptions import NotFoundError, StateError, ValidationError
from hotelops.models.events import EventType
from hotelops.models.ontology import (
    InvoiceStatus, ReservationStatus, RoomStatus, StayStatus
)


class TestCheckIn:

    def test_check_in_from_reservation(self, hotel, confirmed_reservation, room_101, events):
        hotel.reservations.assign_room(confirmed_reservation.id, room_101.id)

        stay = hotel.stays.check_in_guest(confirmed_reservation.id)

        assert stay.status == StayStatus.ACTIVE
        assert stay.room_id == room_101.id
        assert stay.guest_id == confirmed_reservation.guest_id
        assert stay.reservation_id == confirmed_reservation.id
        assert stay.expected_check_out == confirmed_reservation.check_out_date
        assert len(stay.key_card) == 16
        assert hotel.reservations.get_reservation_status(confirmed_reservation.id) == ReservationStatus.CHECKED_IN
        assert hotel.rooms.lookup(room_101.id).status == RoomStatus.OCCUPIED

        checked_in = [e for e in events if e.event_type == EventType.GUEST_CHECKED_IN.value]
        assert len(checked_in) == 1
        assert checked_in[0].data["room_number"] == "101"
        assert checked_in[0].data["is_walkin"] is False

    def test_check_in_requires_room(self, hotel, confirmed_reservation):
        with pytest.raises(StateError):
            hotel.stays.check_in_guest(confirmed_reservation.id)
        assert hotel.stays.get_active_stays() == []

    def test_check_in_requires_confirmed(self, hotel, guest, standard, tomorrow):
        reservation = hotel.reservations.create_reservation(
            guest.id, standard.id, tomorrow, tomorrow + timedelta(days=1), 1
        )
        with pytest.raises(StateError):
            hotel.stays.check_in_guest(reservation.id)

    def test_check_in_twice_rejected(self, hotel, active_stay):
        with pytest.raises(StateError):
            hotel.stays.check_in_guest(active_stay.reservation_id)
        assert len(hotel.stays.get_active_stays()) == 1

    def test_check_in_unknown_reservation(self, hotel):
        with pytest.raises(NotFoundError):
            hotel.stays.check_in_guest(999)

    def test_room_with_active_stay_rejected(self, hotel, guest_2, room_101, confirmed_reservation):
        walk_in = hotel.stays.check_in_walk_in(guest_2.id, room_101.id)
        hotel.reservations.assign_room(confirmed_reservation.id, room_101.id)

        with pytest.raises(StateError):
            hotel.stays.check_in_guest(confirmed_reservation.id)

        assert hotel.reservations.get_reservation_status(confirmed_reservation.id) == ReservationStatus.CONFIRMED
        assert hotel.stays.get_active_stay_by_room("101").id == walk_in.id


class TestWalkIn:

    def test_walk_in(self, hotel, guest, room_101, events):
        stay = hotel.stays.check_in_walk_in(guest.id, room_101.id, date.today() + timedelta(days=2))

        assert stay.reservation_id is None
        assert stay.status == StayStatus.ACTIVE
        assert stay.key_card
        assert hotel.rooms.lookup(room_101.id).status == RoomStatus.OCCUPIED
        checked_in = [e for e in events if e.event_type == EventType.GUEST_CHECKED_IN.value]
        assert checked_in[-1].data["is_walkin"] is True

    def test_walk_in_blocks_room_for_the_stay(self, hotel, guest, standard, room_101, room_102):
        today = date.today()
        hotel.stays.check_in_walk_in(guest.id, room_101.id, today + timedelta(days=2))

        blocks = hotel.availability.get_blocks(room_101.id)
        assert [(b.start_date, b.end_date, b.reservation_id) for b in blocks] == [
            (today, today + timedelta(days=2), None)
        ]
        assert hotel.reservations.search_available_rooms(
            today, today + timedelta(days=2), standard.id, 1
        ) == [room_102.id]

    def test_walk_in_defaults_to_one_night(self, hotel, guest, room_101):
        stay = hotel.stays.check_in_walk_in(guest.id, room_101.id)
        today = date.today()

        assert stay.expected_check_out == today + timedelta(days=1)
        assert not hotel.availability.is_room_available(room_101.id, today, today + timedelta(days=1))
        assert hotel.availability.is_room_available(
            room_101.id, today + timedelta(days=1), today + timedelta(days=2)
        )

    def test_walk_in_room_cannot_be_assigned_to_overlapping_reservation(self, hotel, guest, guest_2,
                                                                        standard, room_101):
        today = date.today()
        hotel.stays.check_in_walk_in(guest.id, room_101.id, today + timedelta(days=3))
        reservation = hotel.reservations.create_reservation(
            guest_2.id, standard.id, today + timedelta(days=1), today + timedelta(days=4), 1
        )
        hotel.reservations.confirm_reservation(reservation.id)

        with pytest.raises(StateError):
            hotel.reservations.assign_room(reservation.id, room_101.id)

    def test_expected_check_out_must_be_after_today(self, hotel, guest, room_101):
        with pytest.raises(ValidationError):
            hotel.stays.check_in_walk_in(guest.id, room_101.id, date.today())
        assert hotel.availability.get_blocks(room_101.id) == []
        assert hotel.rooms.lookup(room_101.id).status == RoomStatus.AVAILABLE

    def test_walk_in_occupied_room_rejected(self, hotel, guest, guest_2, room_101):
        hotel.stays.check_in_walk_in(guest.id, room_101.id)
        with pytest.raises(StateError):
            hotel.stays.check_in_walk_in(guest_2.id, room_101.id)

    def test_walk_in_blocked_tonight_rejected(self, hotel, guest, room_101):
        today = date.today()
        hotel.availability.block_room_dates(room_101.id, today, today + timedelta(days=1), reason="maintenance")
        with pytest.raises(StateError):
            hotel.stays.check_in_walk_in(guest.id, room_101.id)
        assert hotel.rooms.lookup(room_101.id).status == RoomStatus.AVAILABLE

    def test_walk_in_unknown_ids(self, hotel, guest, room_101):
        with pytest.raises(NotFoundError):
            hotel.stays.check_in_walk_in(999, room_101.id)
        with pytest.raises(NotFoundError):
            hotel.stays.check_in_walk_in(guest.id, 999)


class TestRoomMove:

    def test_move_to_another_room(self, hotel, active_stay, room_102):
        old_room_id = active_stay.room_id
        stay = hotel.stays.assign_room_and_credentials(active_stay.id, room_102.id, "NEWCARD")

        assert stay.room_id == room_102.id
        assert stay.key_card == "NEWCARD"
        assert hotel.rooms.lookup(old_room_id).status == RoomStatus.UNDER_CLEANING
        assert hotel.rooms.lookup(room_102.id).status == RoomStatus.OCCUPIED

    def test_move_carries_reservation_block(self, hotel, active_stay, room_101, room_102):
        hotel.stays.assign_room_and_credentials(active_stay.id, room_102.id, "NEWCARD")
        reservation = hotel.reservations.get_reservation(active_stay.reservation_id)

        assert reservation.room_id == room_102.id
        assert hotel.availability.get_blocks(room_101.id) == []
        assert [b.reservation_id for b in hotel.availability.get_blocks(room_102.id)] == [reservation.id]

        hotel.stays.check_out_guest(active_stay.id)
        assert hotel.availability.get_blocks(room_102.id) == []

    def test_move_carries_walk_in_block(self, hotel, guest, room_101, room_102):
        today = date.today()
        stay = hotel.stays.check_in_walk_in(guest.id, room_101.id, today + timedelta(days=2))

        hotel.stays.assign_room_and_credentials(stay.id, room_102.id, "NEWCARD")

        assert hotel.availability.get_blocks(room_101.id) == []
        assert [(b.start_date, b.end_date) for b in hotel.availability.get_blocks(room_102.id)] == [
            (today, today + timedelta(days=2))
        ]

    def test_move_to_blocked_room_rejected(self, hotel, guest, room_101, room_102):
        today = date.today()
        stay = hotel.stays.check_in_walk_in(guest.id, room_101.id, today + timedelta(days=3))
        hotel.availability.block_room_dates(
            room_102.id, today + timedelta(days=1), today + timedelta(days=2), reason="maintenance"
        )

        with pytest.raises(StateError):
            hotel.stays.assign_room_and_credentials(stay.id, room_102.id, "NEWCARD")

        assert hotel.stays.get_stay(stay.id).room_id == room_101.id
        assert len(hotel.availability.get_blocks(room_101.id)) == 1

    def test_reissue_key_card_only(self, hotel, active_stay):
        stay = hotel.stays.assign_room_and_credentials(active_stay.id, active_stay.room_id, "REISSUED")
        assert stay.key_card == "REISSUED"
        assert hotel.rooms.lookup(stay.room_id).status == RoomStatus.OCCUPIED

    def test_move_to_unavailable_room_rejected(self, hotel, active_stay, room_102):
        hotel.rooms.set_status(room_102.id, RoomStatus.UNDER_CLEANING)
        with pytest.raises(StateError):
            hotel.stays.assign_room_and_credentials(active_stay.id, room_102.id, "X")
        assert hotel.stays.get_stay(active_stay.id).room_id == active_stay.room_id


class TestCharges:

    def test_record_charges(self, hotel, active_stay, events):
        hotel.stays.record_charge(active_stay.id, "Minibar", "Snacks", Decimal("25"))
        hotel.stays.record_charge(active_stay.id, "Laundry", None, Decimal("12.50"))

        charges = hotel.stays.get_charges_for_stay(active_stay.id)
        assert [c.service_type for c in charges] == ["Minibar", "Laundry"]
        assert sum(c.amount for c in charges) == Decimal("37.50")
        assert [e for e in events if e.event_type == EventType.CHARGE_RECORDED.value][-1].data["amount"] == 12.5

    @pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-5")])
    def test_non_positive_amount_rejected(self, hotel, active_stay, amount):
        with pytest.raises(ValidationError):
            hotel.stays.record_charge(active_stay.id, "Minibar", None, amount)
        assert hotel.stays.get_charges_for_stay(active_stay.id) == []

    def test_sub_cent_amount_rejected(self, hotel, active_stay):
        with pytest.raises(ValidationError):
            hotel.stays.record_charge(active_stay.id, "Minibar", None, Decimal("0.004"))
        assert hotel.stays.get_charges_for_stay(active_stay.id) == []

    def test_amount_with_trailing_zeros_accepted(self, hotel, active_stay):
        charge = hotel.stays.record_charge(active_stay.id, "Minibar", None, Decimal("4.500"))
        assert charge.amount == Decimal("4.50")

    def test_blank_service_type_rejected(self, hotel, active_stay):
        with pytest.raises(ValidationError):
            hotel.stays.record_charge(active_stay.id, "   ", None, Decimal("5"))

    def test_unknown_stay(self, hotel):
        with pytest.raises(NotFoundError):
            hotel.stays.record_charge(999, "Minibar", None, Decimal("5"))

    def test_charges_closed_after_check_out(self, hotel, active_stay):
        hotel.stays.check_out_guest(active_stay.id)
        with pytest.raises(StateError):
            hotel.stays.record_charge(active_stay.id, "Minibar", None, Decimal("5"))


class TestCheckOut:

    def test_check_out_generates_invoice(self, hotel, active_stay, events):
        hotel.stays.record_charge(active_stay.id, "Minibar", None, Decimal("25"))

        stay = hotel.stays.check_out_guest(active_stay.id)

        assert stay.status == StayStatus.CHECKED_OUT
        assert stay.check_out_time is not None
        assert hotel.rooms.lookup(stay.room_id).status == RoomStatus.UNDER_CLEANING
        assert hotel.reservations.get_reservation_status(stay.reservation_id) == ReservationStatus.CHECKED_OUT

        invoice = hotel.billing.get_invoice_by_stay(stay.id)
        assert invoice.status == InvoiceStatus.ISSUED
        assert invoice.total_amount == Decimal("357.50")
        assert hotel.stays.get_outstanding_balance(stay.id) == Decimal("357.50")

        checked_out = [e for e in events if e.event_type == EventType.GUEST_CHECKED_OUT.value]
        assert checked_out[0].data["invoice_id"] == invoice.id

    def test_check_out_releases_room_block(self, hotel, active_stay):
        reservation = hotel.reservations.get_reservation(active_stay.reservation_id)
        hotel.stays.check_out_guest(active_stay.id)
        assert hotel.availability.is_room_available(
            active_stay.room_id, reservation.check_in_date, reservation.check_out_date
        )

    def test_check_out_twice_single_invoice(self, hotel, active_stay, events):
        hotel.stays.check_out_guest(active_stay.id)
        count = len(events)

        stay = hotel.stays.check_out_guest(active_stay.id)

        assert stay.status == StayStatus.CHECKED_OUT
        assert len(hotel.billing.get_invoices_by_guest(stay.guest_id)) == 1
        assert len(events) == count

    def test_check_out_unknown_stay(self, hotel):
        with pytest.raises(NotFoundError):
            hotel.stays.check_out_guest(999)

    def test_walk_in_billed_at_least_one_night(self, hotel, guest, room_101):
        stay = hotel.stays.check_in_walk_in(guest.id, room_101.id)
        hotel.stays.check_out_guest(stay.id)

        invoice = hotel.billing.get_invoice_by_stay(stay.id)
        assert invoice.room_charges == Decimal("100.00")
        assert invoice.taxes == Decimal("10.00")
        assert invoice.total_amount == Decimal("110.00")

    def test_walk_in_check_out_releases_block(self, hotel, guest, room_101):
        stay = hotel.stays.check_in_walk_in(guest.id, room_101.id, date.today() + timedelta(days=2))
        hotel.stays.check_out_guest(stay.id)
        assert hotel.availability.get_blocks(room_101.id) == []

    def test_outstanding_balance_before_invoice_is_zero(self, hotel, active_stay):
        assert hotel.stays.get_outstanding_balance(active_stay.id) == Decimal("0")


class TestStayQueries:

    def test_active_stays_and_history(self, hotel, guest, active_stay, room_102):
        walk_in = hotel.stays.check_in_walk_in(guest.id, room_102.id)
        assert [s.id for s in hotel.stays.get_active_stays()] == [active_stay.id, walk_in.id]

        hotel.stays.check_out_guest(active_stay.id)

        assert [s.id for s in hotel.stays.get_active_stays()] == [walk_in.id]
        assert [s.id for s in hotel.stays.get_guest_stay_history(guest.id)] == [active_stay.id, walk_in.id]
        assert hotel.stays.get_active_stay_by_room("101") is None

    def test_get_stay_unknown(self, hotel):
        with pytest.raises(NotFoundError):
            hotel.stays.get_stay(999)
