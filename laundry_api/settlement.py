# laundry_api/settlement.py

from datetime import datetime
from sqlalchemy import update
from sqlmodel import Session, select
from laundry_api import settings, wallet
from laundry_api.db import conditional_update
from laundry_api.errors import AlreadyCredited
from laundry_api.models import (
    Orders, OrderLineItem, ServiceCatalogEntry, Role, Settlement, SettlementLine, utcnow
)
from laundry_api.utils import round_money
import logging

logger = logging.getLogger(__name__)

# Which marker guards which leg of delivery-partner work
PARTNER_LEG_MARKERS = {
    "pickup": Orders.pickup_credited,
    "delivery": Orders.delivery_credited,
}


def _claim_marker(session: Session, order_id: int, marker) -> None:
    """Flip a settlement marker from False to True or raise AlreadyCredited."""
    flipped = conditional_update(
        session,
        update(Orders).where(Orders.id == order_id, marker.is_(False)).values({marker: True}),
    )
    if flipped != 1:
        raise AlreadyCredited(
            f"Order {order_id} has already been settled ({marker.key}).",
            order_id=order_id,
        )


def vendor_settlement_lines(session: Session, order: Orders) -> list[SettlementLine]:
    """
    Price each line item at the vendor's current base price.

    The customer-facing unit price stored on the order is ignored. A service the
    vendor no longer lists contributes nothing and is marked as a mismatch.
    """
    catalog = {
        entry.name.casefold(): entry
        for entry in session.exec(
            select(ServiceCatalogEntry).where(ServiceCatalogEntry.vendor_id == order.vendor_id)
        ).all()
    }
    items = session.exec(
        select(OrderLineItem).where(OrderLineItem.order_id == order.id).order_by(OrderLineItem.position)
    ).all()

    lines = []
    for item in items:
        entry = catalog.get(item.service_name.casefold())
        if entry is None:
            lines.append(SettlementLine(
                service_name=item.service_name,
                quantity=item.quantity,
                base_price=0,
                amount=0,
                catalog_mismatch=True,
            ))
            continue
        lines.append(SettlementLine(
            service_name=item.service_name,
            quantity=item.quantity,
            base_price=entry.base_price,
            amount=round_money(entry.base_price * item.quantity),
        ))
    return lines


def credit_vendor(session: Session, order_id: int, now: datetime|None = None) -> Settlement:
    """
    Credit the vendor for a washed order exactly once.

    Must run inside the transaction that moves the order to Washed; the caller
    commits. A second call raises AlreadyCredited without touching the wallet.
    """
    now = now or utcnow()
    _claim_marker(session, order_id, Orders.vendor_credited)
    order = session.get(Orders, order_id)

    lines = vendor_settlement_lines(session, order)
    amount = round_money(sum(line.amount for line in lines))

    mismatched = [line.service_name for line in lines if line.catalog_mismatch]
    if mismatched:
        note = f"No vendor base price for: {', '.join(mismatched)}"
        logger.warning(f"CatalogMismatch on order {order_id}: {note}")
        conditional_update(
            session,
            update(Orders).where(Orders.id == order_id).values(needs_review=True, review_note=note),
        )

    wallet.credit(session, order.vendor_id, Role.VENDOR, amount,
                  order_id=order_id, note="Washing completed", now=now)
    return Settlement(
        order_id=order_id,
        actor_id=order.vendor_id,
        role=Role.VENDOR,
        amount=amount,
        lines=lines,
    )


def credit_partner_leg(session: Session, order_id: int, partner_id: int, leg: str,
                       now: datetime|None = None) -> Settlement:
    """Credit the flat per-leg fee to a delivery partner exactly once per leg."""
    _claim_marker(session, order_id, PARTNER_LEG_MARKERS[leg])
    fee = settings.PARTNER_LEG_FEE
    wallet.credit(session, partner_id, Role.DELIVERY_PARTNER, fee,
                  order_id=order_id, note=f"{leg.capitalize()} completed", now=now)
    return Settlement(
        order_id=order_id,
        actor_id=partner_id,
        role=Role.DELIVERY_PARTNER,
        amount=fee,
    )
