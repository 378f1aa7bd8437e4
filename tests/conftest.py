"""
Shared fixtures: in-memory SQLite database, seeded tenant data and a fake
requests.Session standing in for every gateway.
"""

import json
import os
import uuid
from datetime import date, datetime, time, timezone
from unittest.mock import MagicMock

# condonotify.db refuses to import without a database URL
os.environ["DATABASE_URL"] = "sqlite://"

import pytest
import requests
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from condonotify.config import DispatcherSettings
from condonotify.models import (
    AccessToken,
    Apartment,
    Base,
    Condominium,
    GatewayConfig,
    Occurrence,
    Package,
    PartyHallBooking,
    PartyHallSetting,
    Profile,
    Resident,
    UserRole,
)

NOW = datetime(2025, 12, 19, 15, 0, tzinfo=timezone.utc)
TOMORROW = date(2025, 12, 20)


def make_response(status_code=200, body=None, text=None, headers=None, content=b""):
    resp = MagicMock(spec=requests.Response)
    resp.status_code = status_code
    if text is None:
        text = json.dumps(body) if body is not None else ""
    resp.text = text
    resp.headers = headers or {}
    resp.content = content
    return resp


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    yield session
    session.close()


@pytest.fixture
def settings():
    return DispatcherSettings(send_delay_ms=500)


@pytest.fixture
def http():
    session = MagicMock(spec=requests.Session)
    session.post.return_value = make_response(200, {"id": "msg-1"})
    session.get.return_value = make_response(200, {"id": "msg-1"})
    return session


@pytest.fixture
def clock():
    return lambda: NOW


# ---------------------------------------------------------------------
# Seed data
# ---------------------------------------------------------------------
@pytest.fixture
def owner_id():
    return uuid.uuid4()


@pytest.fixture
def condo(db, owner_id):
    condo = Condominium(name="Residencial Jardins", owner_id=owner_id)
    db.add(condo)
    db.commit()
    return condo


@pytest.fixture
def apartment(db, condo):
    apartment = Apartment(condominium_id=condo.condominium_id, block_name="A", number="101")
    db.add(apartment)
    db.commit()
    return apartment


@pytest.fixture
def resident(db, condo, apartment):
    resident = Resident(
        condominium_id=condo.condominium_id,
        apartment_id=apartment.apartment_id,
        user_id=uuid.uuid4(),
        full_name="Maria Silva Souza",
        phone="(11) 98765-4321",
    )
    db.add(resident)
    db.commit()
    return resident


@pytest.fixture
def hall(db, condo):
    hall = PartyHallSetting(condominium_id=condo.condominium_id, name="Salão de Festas")
    db.add(hall)
    db.commit()
    return hall


@pytest.fixture
def make_booking(db, condo, resident, hall):
    def _make(booking_date=TOMORROW, status="confirmada", phone_resident=None, **kwargs):
        booking = PartyHallBooking(
            condominium_id=condo.condominium_id,
            resident_id=(phone_resident or resident).resident_id,
            party_hall_setting_id=hall.setting_id,
            booking_date=booking_date,
            start_time=kwargs.pop("start_time", time(14, 0)),
            end_time=kwargs.pop("end_time", time(22, 0)),
            status=status,
            **kwargs,
        )
        db.add(booking)
        db.commit()
        return booking

    return _make


@pytest.fixture
def booking(make_booking):
    return make_booking()


@pytest.fixture
def package(db, condo, apartment, resident):
    package = Package(
        condominium_id=condo.condominium_id,
        apartment_id=apartment.apartment_id,
        pickup_code="482913",
        tracking_code="BR123<script>",
        package_type=None,
        received_by_name="João 'Porteiro'",
        photo_url="https://cdn.example.com/pkg.jpg",
    )
    db.add(package)
    db.commit()
    return package


@pytest.fixture
def sindico(db, owner_id):
    profile = Profile(user_id=owner_id, full_name="Carlos Síndico", phone="11 91234-5678")
    db.add(profile)
    db.commit()
    return profile


@pytest.fixture
def occurrence(db, condo, resident, sindico):
    occurrence = Occurrence(
        condominium_id=condo.condominium_id,
        resident_id=resident.resident_id,
        title="Barulho após as 22h",
        type="advertencia",
    )
    db.add(occurrence)
    db.commit()
    return occurrence


@pytest.fixture
def make_config(db):
    def _make(provider="zpro", **kwargs):
        config = GatewayConfig(
            provider=provider,
            api_url=kwargs.pop("api_url", "https://gw.example.com/"),
            api_key=kwargs.pop("api_key", "secret-key"),
            instance_id=kwargs.pop("instance_id", "inst-1"),
            is_active=kwargs.pop("is_active", True),
            use_official_api=kwargs.pop("use_official_api", False),
            **kwargs,
        )
        db.add(config)
        db.commit()
        return config

    return _make


@pytest.fixture
def gateway_config(make_config):
    return make_config()


@pytest.fixture
def make_token(db):
    def _make(user_id, roles=(), token=None):
        token = token or uuid.uuid4().hex
        db.add(AccessToken(token=token, user_id=user_id))
        for role in roles:
            db.add(UserRole(user_id=user_id, role=role))
        db.commit()
        return token

    return _make
