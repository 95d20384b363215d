# tests/helpers.py

from sqlmodel import Session
from laundry_api import lifecycle, otp
from laundry_api.cod import confirm_collection
from laundry_api.models import (
    Account, LineItemCreate, OrderCreate, OrderStatus, PaymentMethod, Principal, Role,
    ServiceCatalogEntry, Transition
)


def make_account(session: Session, role: Role, name: str, mobile: str, **extra) -> Principal:
    account = Account(
        role=role,
        name=name,
        mobile=mobile,
        email=f"{mobile}@example.com",
        hashed_password="not-a-real-hash",
        **extra,
    )
    session.add(account)
    session.commit()
    session.refresh(account)
    return Principal(actor_id=account.id, role=role)


def add_catalog_entry(session: Session, vendor_id: int, name: str, base_price: float, app_price: float):
    entry = ServiceCatalogEntry(vendor_id=vendor_id, name=name, base_price=base_price, app_price=app_price)
    session.add(entry)
    session.commit()
    session.refresh(entry)
    return entry


def place(session, actors, items=(("Shirts", 3),), payment_method=PaymentMethod.ONLINE, now=None) -> int:
    payload = OrderCreate(
        vendor_id=actors.vendor.actor_id,
        items=[LineItemCreate(service_name=name, quantity=quantity) for name, quantity in items],
        customer_mobile="9876543210",
        customer_address="7 MG Road",
        payment_method=payment_method,
    )
    return lifecycle.place_order(session, actors.customer, payload, now=now).id


def handoff(session, order_id, presenter, receiver, transition, now=None):
    """Presenter issues a code, receiver enters it."""
    code = otp.generate(session, presenter, order_id, now=now)
    return otp.verify(session, receiver, order_id, code, transition, now=now)


def drive_to(session, order_id, target: OrderStatus, actors, partner=None, now=None):
    """
    Walk an order forward through the normal happy path until it reaches `target`,
    starting from wherever it is now.

    COD cash is confirmed just before the final delivery.
    """
    partner = partner or actors.partner
    steps = [
        (OrderStatus.IN_PROGRESS,
         lambda: lifecycle.accept_order(session, actors.vendor, order_id)),
        (OrderStatus.READY_FOR_PICKUP,
         lambda: lifecycle.claim_pickup(session, partner, order_id)),
        (OrderStatus.PICKED_UP,
         lambda: handoff(session, order_id, actors.customer, partner, Transition.PICKUP, now)),
        (OrderStatus.WASHING,
         lambda: handoff(session, order_id, partner, actors.vendor, Transition.VENDOR_RECEIVE, now)),
        (OrderStatus.WASHED,
         lambda: lifecycle.mark_washed(session, actors.vendor, order_id, now=now)),
        (OrderStatus.PICKING_UP,
         lambda: lifecycle.claim_delivery(session, partner, order_id)),
        (OrderStatus.DELIVERY_PICKED_UP,
         lambda: handoff(session, order_id, actors.vendor, partner, Transition.DELIVERY_PICKUP, now)),
        (OrderStatus.DELIVERED, lambda: _deliver(session, order_id, actors, partner, now)),
    ]
    current = lifecycle.load_order(session, order_id).status
    reached = [status for status, _ in steps]
    if current in reached:
        steps = steps[reached.index(current) + 1:]
    for status, step in steps:
        step()
        if status == target:
            break
    return lifecycle.load_order(session, order_id)


def _deliver(session, order_id, actors, partner, now):
    order = lifecycle.load_order(session, order_id)
    if order.payment_method == PaymentMethod.COD and not order.cod_confirmed:
        confirm_collection(session, partner, order_id, order.total_price, now=now)
    return handoff(session, order_id, actors.customer, partner, Transition.DELIVER, now)
