# tests/conftest.py

import os

# Set the TESTING environment variable to use the test database
os.environ["TESTING"] = "1"

import pytest
from types import SimpleNamespace
from sqlmodel import SQLModel, Session
from unittest.mock import AsyncMock
from laundry_api.db import engine, get_session
from laundry_api.main import app, produce_message
from laundry_api.models import Role
from laundry_api.utils import get_current_principal
from helpers import make_account, add_catalog_entry


# ------------------------------ Fixtures ------------------------------

# Fixture to create the test database and tables
@pytest.fixture(name="create_test_database")
def create_test_database_fixture():
    """
    Overrides the get_session dependency to use the test database session.
    Creates all tables before tests and drops them after tests.
    """
    def override_get_session():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session

    # Setup: create tables in the test DB
    SQLModel.metadata.create_all(engine)
    yield
    # Teardown: drop tables after tests
    SQLModel.metadata.drop_all(engine)

    # Remove only the specific dependency override
    app.dependency_overrides.pop(get_session, None)


@pytest.fixture(name="session")
def session_fixture(create_test_database):
    with Session(engine) as session:
        yield session


# Fixture to mock the Kafka producer by overriding the produce_message dependency
@pytest.fixture(name="mock_kafka_producer")
def mock_kafka_producer_fixture():
    """
    Mocks the Kafka producer to prevent actual Kafka interactions during tests.
    Verifies that messages are being "sent" as expected.
    """
    mock_producer = AsyncMock()

    async def mock_produce():
        yield mock_producer

    app.dependency_overrides[produce_message] = mock_produce
    yield mock_producer
    # Remove only the specific dependency override
    app.dependency_overrides.pop(produce_message, None)


@pytest.fixture(name="act_as")
def act_as_fixture():
    """
    Returns a function that makes every following request authenticate as the
    given principal, bypassing token decoding. Role checks still run.
    """
    def act_as(principal):
        async def mock_get_current_principal():
            return principal
        app.dependency_overrides[get_current_principal] = mock_get_current_principal

    yield act_as
    # Remove only the specific dependency override
    app.dependency_overrides.pop(get_current_principal, None)


@pytest.fixture(name="actors")
def actors_fixture(session):
    """
    One account per role, a second delivery partner and a vendor catalog with
    Shirts (base 30, customer price 50) and Bedsheet (base 100, customer price 150).
    """
    vendor = make_account(session, Role.VENDOR, "Clean Dhobi", "9000000001", address="12 Laundry Lane")
    actors = SimpleNamespace(
        customer=make_account(session, Role.CUSTOMER, "Asha", "9000000002", address="7 MG Road"),
        vendor=vendor,
        partner=make_account(session, Role.DELIVERY_PARTNER, "Ravi", "9000000003", vehicle_number="KA01AB1234"),
        other_partner=make_account(session, Role.DELIVERY_PARTNER, "Imran", "9000000004"),
        admin=make_account(session, Role.ADMIN, "Ops", "9000000005"),
    )
    add_catalog_entry(session, vendor.actor_id, "Shirts", base_price=30, app_price=50)
    add_catalog_entry(session, vendor.actor_id, "Bedsheet", base_price=100, app_price=150)
    return actors
