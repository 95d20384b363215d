# tests/test_accounts.py

import pytest
from datetime import timedelta
from jose import jwt
from sqlmodel import select
from laundry_api import accounts, catalog
from laundry_api.errors import AccountExists, ServiceExists, ServiceNotFound
from laundry_api.models import (
    Account, AccountCreate, CatalogEntryCreate, CatalogEntryUpdate, Principal, Role, VendorProfile
)
from laundry_api.utils import ALGORITHM, SECRET_KEY, create_access_token, verify_password


def test_register_and_authenticate(session):
    payload = AccountCreate(
        profile=VendorProfile(name="Dhobi", mobile="9444444444", email="d@example.com", address="1 Ghat Road"),
        password="secret-pass",
    )
    account = accounts.register(session, payload)
    assert account.role == Role.VENDOR
    assert verify_password("secret-pass", account.hashed_password)

    assert accounts.authenticate(session, "9444444444", "secret-pass").id == account.id
    assert accounts.authenticate(session, "d@example.com", "secret-pass").id == account.id
    assert accounts.authenticate(session, "9444444444", "nope") is None

    with pytest.raises(AccountExists):
        accounts.register(session, payload)

    profile = accounts.profile_of(account).profile
    assert profile.role == "VENDOR"
    assert profile.address == "1 Ghat Road"


def test_default_admin_created_once(session):
    accounts.ensure_default_admin(session)
    accounts.ensure_default_admin(session)

    admins = session.exec(select(Account).where(Account.role == Role.ADMIN)).all()
    assert len(admins) == 1


def test_token_carries_role_claim():
    token = create_access_token(Principal(actor_id=7, role=Role.DELIVERY_PARTNER), timedelta(minutes=5))
    claims = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    assert claims["sub"] == "7"
    assert claims["role"] == "DELIVERY_PARTNER"


def test_catalog_entries_are_per_vendor(session, actors):
    other_vendor = actors.vendor.actor_id + 100
    entry = catalog.add_service(session, other_vendor, CatalogEntryCreate(name="Shirts", base_price=25))
    assert entry.app_price == pytest.approx(28.75)

    with pytest.raises(ServiceExists):
        catalog.add_service(session, actors.vendor.actor_id, CatalogEntryCreate(name=" SHIRTS ", base_price=25))
    with pytest.raises(ServiceNotFound):
        catalog.update_service(session, actors.vendor.actor_id, entry.id, CatalogEntryUpdate(base_price=20))

    updated = catalog.update_service(session, other_vendor, entry.id, CatalogEntryUpdate(base_price=20))
    assert updated.base_price == 20
    # the customer price stays until the vendor changes it
    assert updated.app_price == pytest.approx(28.75)
