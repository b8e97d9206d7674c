"""
Pytest configuration and shared fixtures
"""
import pytest
from datetime import date, timedelta
from decimal import Decimal
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from hotelops.database import Base
from hotelops.engine import HotelEngine
from hotelops.models import ontology  # noqa


@pytest.fixture(scope="function")
def db_engine():
    """In-memory database engine"""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session(db_engine):
    """Database session"""
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture
def events():
    """Events published by the services under test"""
    return []


@pytest.fixture
def hotel(db_session, events):
    """Fully wired engine recording its events"""
    return HotelEngine(db_session, events.append)


# ============== Entity fixtures ==============

@pytest.fixture
def standard(hotel):
    """Standard room type: 2 guests, 100/night, 10% tax"""
    return hotel.room_types.create_room_type(
        "Standard", "Standard room", 2, Decimal("100"), Decimal("0.10")
    )


@pytest.fixture
def suite(hotel):
    return hotel.room_types.create_room_type(
        "Suite", "Suite with living area", 4, Decimal("350"), Decimal("0.12")
    )


@pytest.fixture
def room_101(hotel, standard):
    return hotel.rooms.create_room("101", 1, standard.id)


@pytest.fixture
def room_102(hotel, standard):
    return hotel.rooms.create_room("102", 1, standard.id)


@pytest.fixture
def guest(hotel):
    return hotel.guests.create_guest("Ada Lovelace", email="ada@example.com", phone="555-0100")


@pytest.fixture
def guest_2(hotel):
    return hotel.guests.create_guest("Grace Hopper", email="grace@example.com")


@pytest.fixture
def tomorrow():
    return date.today() + timedelta(days=1)


@pytest.fixture
def confirmed_reservation(hotel, guest, standard, tomorrow):
    """Confirmed three-night reservation starting tomorrow, no room yet"""
    reservation = hotel.reservations.create_reservation(
        guest.id, standard.id, tomorrow, tomorrow + timedelta(days=3), 2
    )
    return hotel.reservations.confirm_reservation(reservation.id)


@pytest.fixture
def active_stay(hotel, confirmed_reservation, room_101):
    """Checked-in stay of the confirmed reservation in room 101"""
    hotel.reservations.assign_room(confirmed_reservation.id, room_101.id)
    return hotel.stays.check_in_guest(confirmed_reservation.id)
