# laundry_api/accounts.py

from sqlalchemy import or_
from sqlmodel import Session, select
from laundry_api import settings
from laundry_api.errors import AccountExists
from laundry_api.models import (
    Account, AccountCreate, AccountRead, AdminProfile, CustomerProfile, DeliveryPartnerProfile,
    VendorProfile, Role
)
from laundry_api.utils import get_password_hash, verify_password
import logging

logger = logging.getLogger(__name__)

PROFILE_TYPES = {
    Role.CUSTOMER: CustomerProfile,
    Role.VENDOR: VendorProfile,
    Role.DELIVERY_PARTNER: DeliveryPartnerProfile,
    Role.ADMIN: AdminProfile,
}


def profile_of(account: Account) -> AccountRead:
    """Project an account row onto the profile variant for its role."""
    profile_type = PROFILE_TYPES[account.role]
    fields = {"name": account.name, "mobile": account.mobile, "email": account.email}
    if account.role in (Role.CUSTOMER, Role.VENDOR):
        fields["address"] = account.address
    if account.role == Role.DELIVERY_PARTNER:
        fields["vehicle_number"] = account.vehicle_number
    return AccountRead(id=account.id, profile=profile_type(**fields))


def register(session: Session, payload: AccountCreate) -> Account:
    profile = payload.profile
    existing = session.exec(
        select(Account).where(or_(Account.mobile == profile.mobile, Account.email == profile.email))
    ).first()
    if existing:
        raise AccountExists("An account with this mobile number or email already exists.")

    account = Account(
        role=Role(profile.role),
        name=profile.name,
        mobile=profile.mobile,
        email=profile.email,
        hashed_password=get_password_hash(payload.password),
        address=getattr(profile, "address", None),
        vehicle_number=getattr(profile, "vehicle_number", None),
    )
    session.add(account)
    session.commit()
    session.refresh(account)
    logger.info(f"Registered {account.role.value} account {account.id}.")
    return account


def authenticate(session: Session, login: str, password: str) -> Account|None:
    """Look an account up by mobile number or email and check its password."""
    account = session.exec(
        select(Account).where(or_(Account.mobile == login, Account.email == login))
    ).first()
    if account is None or not verify_password(password, account.hashed_password):
        return None
    return account


def ensure_default_admin(session: Session) -> None:
    """Create the configured admin account if no admin exists yet."""
    admin = session.exec(select(Account).where(Account.role == Role.ADMIN)).first()
    if admin:
        return
    admin = Account(
        role=Role.ADMIN,
        name="admin",
        mobile=settings.DEFAULT_ADMIN_MOBILE,
        email=settings.DEFAULT_ADMIN_EMAIL,
        hashed_password=get_password_hash(str(settings.DEFAULT_ADMIN_PASSWORD)),
    )
    session.add(admin)
    session.commit()
    logger.info("Default admin user created.")


def list_vendors(session: Session) -> list[Account]:
    return session.exec(select(Account).where(Account.role == Role.VENDOR).order_by(Account.name)).all()
