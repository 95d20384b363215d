# laundry_api/catalog.py

from sqlmodel import Session, select
from laundry_api import settings
from laundry_api.errors import ServiceExists, ServiceNotFound
from laundry_api.models import CatalogEntryCreate, CatalogEntryUpdate, ServiceCatalogEntry
from laundry_api.utils import round_money
import logging

logger = logging.getLogger(__name__)


def default_app_price(base_price: float) -> float:
    """Customer price when the vendor sets none: base price plus the platform markup."""
    return round_money(base_price * (1 + settings.PLATFORM_MARKUP))


def list_services(session: Session, vendor_id: int) -> list[ServiceCatalogEntry]:
    return session.exec(
        select(ServiceCatalogEntry)
        .where(ServiceCatalogEntry.vendor_id == vendor_id)
        .order_by(ServiceCatalogEntry.name)
    ).all()


def _vendor_entry(session: Session, vendor_id: int, entry_id: int) -> ServiceCatalogEntry:
    entry = session.get(ServiceCatalogEntry, entry_id)
    if entry is None or entry.vendor_id != vendor_id:
        raise ServiceNotFound(f"Service {entry_id} not found in your catalog.")
    return entry


def add_service(session: Session, vendor_id: int, payload: CatalogEntryCreate) -> ServiceCatalogEntry:
    name = payload.name.strip()
    if any(entry.name.casefold() == name.casefold() for entry in list_services(session, vendor_id)):
        raise ServiceExists(f"'{name}' is already in your catalog.")
    entry = ServiceCatalogEntry(
        vendor_id=vendor_id,
        name=name,
        description=payload.description,
        base_price=round_money(payload.base_price),
        app_price=round_money(payload.app_price or default_app_price(payload.base_price)),
    )
    session.add(entry)
    session.commit()
    session.refresh(entry)
    logger.info(f"Vendor {vendor_id} added service '{entry.name}' at base {entry.base_price}.")
    return entry


def update_service(session: Session, vendor_id: int, entry_id: int,
                   payload: CatalogEntryUpdate) -> ServiceCatalogEntry:
    """Change prices or description; orders already placed keep the prices they were charged."""
    entry = _vendor_entry(session, vendor_id, entry_id)
    changes = payload.model_dump(exclude_unset=True)
    for key in ("base_price", "app_price"):
        if changes.get(key) is not None:
            changes[key] = round_money(changes[key])
    for key, value in changes.items():
        setattr(entry, key, value)
    session.add(entry)
    session.commit()
    session.refresh(entry)
    logger.info(f"Vendor {vendor_id} updated service {entry_id}: {changes}")
    return entry


def remove_service(session: Session, vendor_id: int, entry_id: int) -> None:
    entry = _vendor_entry(session, vendor_id, entry_id)
    session.delete(entry)
    session.commit()
    logger.info(f"Vendor {vendor_id} removed service {entry_id}.")
