# laundry_api/lifecycle.py

import hmac
from datetime import datetime
from typing import NamedTuple
from sqlalchemy import update
from sqlmodel import Session, select
from laundry_api import settings, settlement
from laundry_api.db import conditional_update
from laundry_api.errors import (
    LaundryError, InvalidTransition, WrongActorRole, NotOrderParticipant, OtpMismatch,
    AlreadyClaimed, AlreadyCredited, CodNotConfirmed, InvalidOrder, OrderNotFound
)
from laundry_api.models import (
    Account, Orders, OrderLineItem, OrderCreate, OrderRead, LineItemRead, OrderStatus,
    PaymentMethod, PaymentStatus, Principal, Role, ServiceCatalogEntry, Settlement,
    Transition, TransitionResult, utcnow
)
from laundry_api.utils import round_money
import logging

logger = logging.getLogger(__name__)


class Rule(NamedTuple):
    role: Role
    sources: tuple[OrderStatus, ...]
    target: OrderStatus
    # role that holds the OTP for this handoff; None when no code is needed
    presenter: Role|None = None


TRANSITIONS: dict[Transition, Rule] = {
    Transition.CANCEL: Rule(Role.CUSTOMER, (OrderStatus.SCHEDULED,), OrderStatus.CANCELLED),
    Transition.ACCEPT: Rule(Role.VENDOR, (OrderStatus.SCHEDULED,), OrderStatus.IN_PROGRESS),
    Transition.CLAIM_PICKUP: Rule(
        Role.DELIVERY_PARTNER,
        (OrderStatus.SCHEDULED, OrderStatus.IN_PROGRESS),
        OrderStatus.READY_FOR_PICKUP,
    ),
    Transition.PICKUP: Rule(
        Role.DELIVERY_PARTNER, (OrderStatus.READY_FOR_PICKUP,), OrderStatus.PICKED_UP,
        presenter=Role.CUSTOMER,
    ),
    Transition.VENDOR_RECEIVE: Rule(
        Role.VENDOR, (OrderStatus.PICKED_UP,), OrderStatus.WASHING,
        presenter=Role.DELIVERY_PARTNER,
    ),
    Transition.MARK_WASHED: Rule(Role.VENDOR, (OrderStatus.WASHING,), OrderStatus.WASHED),
    Transition.CLAIM_DELIVERY: Rule(Role.DELIVERY_PARTNER, (OrderStatus.WASHED,), OrderStatus.PICKING_UP),
    Transition.DELIVERY_PICKUP: Rule(
        Role.DELIVERY_PARTNER, (OrderStatus.PICKING_UP,), OrderStatus.DELIVERY_PICKED_UP,
        presenter=Role.VENDOR,
    ),
    Transition.DELIVER: Rule(
        Role.DELIVERY_PARTNER, (OrderStatus.DELIVERY_PICKED_UP,), OrderStatus.DELIVERED,
        presenter=Role.CUSTOMER,
    ),
}

TERMINAL_STATUSES = (OrderStatus.DELIVERED, OrderStatus.CANCELLED)

# Claims write the claiming partner into these columns
CLAIM_COLUMNS = {
    Transition.CLAIM_PICKUP: Orders.pickup_partner_id,
    Transition.CLAIM_DELIVERY: Orders.delivery_partner_id,
}

# Status an order sits in while waiting for each OTP handoff
OTP_HANDOFFS: dict[OrderStatus, Transition] = {
    rule.sources[0]: transition
    for transition, rule in TRANSITIONS.items()
    if rule.presenter is not None
}


def assigned_actor(order: Orders, transition: Transition) -> int|None:
    """Account allowed to perform `transition` on this order; None means any actor of the role."""
    if transition == Transition.CANCEL:
        return order.customer_id
    if transition in (Transition.ACCEPT, Transition.VENDOR_RECEIVE, Transition.MARK_WASHED):
        return order.vendor_id
    if transition == Transition.PICKUP:
        return order.pickup_partner_id
    if transition in (Transition.DELIVERY_PICKUP, Transition.DELIVER):
        return order.delivery_partner_id
    return None


def presenting_actor(order: Orders, transition: Transition) -> int|None:
    """Account that holds the code for an OTP-gated handoff."""
    if transition in (Transition.PICKUP, Transition.DELIVER):
        return order.customer_id
    if transition == Transition.VENDOR_RECEIVE:
        return order.pickup_partner_id
    if transition == Transition.DELIVERY_PICKUP:
        return order.vendor_id
    return None


def load_order(session: Session, order_id: int) -> Orders:
    order = session.get(Orders, order_id)
    if order is None:
        raise OrderNotFound(order_id)
    return order


def order_read(session: Session, order: Orders) -> OrderRead:
    items = session.exec(
        select(OrderLineItem).where(OrderLineItem.order_id == order.id).order_by(OrderLineItem.position)
    ).all()
    return OrderRead.model_validate(
        order,
        from_attributes=True,
        update={"items": [LineItemRead.model_validate(item, from_attributes=True) for item in items]},
    )


def _check(order: Orders, principal: Principal, transition: Transition, otp: str|None) -> None:
    """
    Raise the error a transition attempt deserves, in a fixed order:
    role, assignment, settlement, claim, code, status, cash collection.
    """
    rule = TRANSITIONS[transition]
    if principal.role != rule.role:
        raise WrongActorRole(
            f"'{transition.value}' is reserved for {rule.role.value}, not {principal.role.value}.",
            required_role=rule.role.value,
        )
    expected = assigned_actor(order, transition)
    if transition not in CLAIM_COLUMNS and expected != principal.actor_id:
        raise NotOrderParticipant(f"Order {order.id} is not assigned to you.")
    if transition == Transition.MARK_WASHED and order.vendor_credited:
        raise AlreadyCredited(f"Order {order.id} has already been settled.", order_id=order.id)
    if transition in CLAIM_COLUMNS and getattr(order, CLAIM_COLUMNS[transition].key) is not None:
        raise AlreadyClaimed(f"Order {order.id} has already been claimed.", order_id=order.id)
    if rule.presenter is not None:
        if not otp or not order.otp or not hmac.compare_digest(order.otp, otp):
            raise OtpMismatch("The OTP entered is incorrect.")
    if order.status not in rule.sources:
        raise InvalidTransition(order.status, transition)
    if (transition == Transition.DELIVER
            and order.payment_method == PaymentMethod.COD
            and not order.cod_confirmed):
        raise CodNotConfirmed(f"Cash collection for order {order.id} has not been confirmed.")


def _settle(session: Session, order: Orders, principal: Principal, transition: Transition,
            now: datetime) -> Settlement|None:
    if transition == Transition.PICKUP:
        return settlement.credit_partner_leg(session, order.id, principal.actor_id, "pickup", now)
    if transition == Transition.MARK_WASHED:
        return settlement.credit_vendor(session, order.id, now)
    if transition == Transition.DELIVER:
        return settlement.credit_partner_leg(session, order.id, principal.actor_id, "delivery", now)
    return None


def apply_transition(
    session: Session,
    principal: Principal,
    order_id: int,
    transition: Transition,
    otp: str|None = None,
    now: datetime|None = None,
) -> TransitionResult:
    """
    Move an order along the lifecycle and settle any earnings it unlocks.

    The status change is a single guarded UPDATE whose WHERE clause repeats
    every precondition (source status, unclaimed leg, matching code, confirmed
    cash), so the first of two racing callers wins and the second is
    re-diagnosed against the fresh row. Credits are written in the same
    transaction as the status change.
    """
    now = now or utcnow()
    rule = TRANSITIONS[transition]
    order = load_order(session, order_id)
    _check(order, principal, transition, otp)

    conditions = [Orders.id == order_id, Orders.status.in_(rule.sources)]
    values = {Orders.status: rule.target, Orders.updated_at: now}
    if transition in CLAIM_COLUMNS:
        column = CLAIM_COLUMNS[transition]
        conditions.append(column.is_(None))
        values[column] = principal.actor_id
    if rule.presenter is not None:
        conditions.append(Orders.otp == otp)
        values[Orders.otp] = None
    if transition == Transition.DELIVER:
        values[Orders.completed_at] = now
        if order.payment_method == PaymentMethod.COD:
            conditions.append(Orders.cod_confirmed.is_(True))
        else:
            values[Orders.payment_status] = PaymentStatus.PAID

    try:
        moved = conditional_update(session, update(Orders).where(*conditions).values(values))
        if moved != 1:
            # lost a race; report what the winner left behind
            session.rollback()
            _check(load_order(session, order_id), principal, transition, otp)
            raise InvalidTransition(load_order(session, order_id).status, transition)
        order = load_order(session, order_id)
        earned = _settle(session, order, principal, transition, now)
        session.commit()
    except LaundryError:
        session.rollback()
        raise

    order = load_order(session, order_id)
    logger.info(
        f"Order {order_id}: '{transition.value}' by {principal.role.value} {principal.actor_id}, "
        f"now '{order.status.value}'."
    )
    return TransitionResult(order=order_read(session, order), settlement=earned)


# ------------------------------ Placement ------------------------------

def place_order(session: Session, principal: Principal, payload: OrderCreate,
                now: datetime|None = None) -> Orders:
    """
    Create a Scheduled order priced from the vendor's catalog.

    Unit prices are the vendor's current customer-facing prices; nothing the
    client sends is trusted for money. Price fields are never written again.
    """
    if principal.role != Role.CUSTOMER:
        raise WrongActorRole("Only customers can place orders.", required_role=Role.CUSTOMER.value)
    now = now or utcnow()
    customer = session.get(Account, principal.actor_id)
    vendor = session.get(Account, payload.vendor_id)
    if vendor is None or vendor.role != Role.VENDOR:
        raise InvalidOrder(f"Vendor {payload.vendor_id} does not exist.")
    if not payload.items:
        raise InvalidOrder("An order needs at least one service.")

    catalog = {
        entry.name.casefold(): entry
        for entry in session.exec(
            select(ServiceCatalogEntry).where(ServiceCatalogEntry.vendor_id == vendor.id)
        ).all()
    }
    priced = []
    for item in payload.items:
        if item.quantity < 1:
            raise InvalidOrder(f"Quantity for '{item.service_name}' must be at least 1.")
        entry = catalog.get(item.service_name.casefold())
        if entry is None:
            raise InvalidOrder(f"Vendor {vendor.id} does not offer '{item.service_name}'.")
        priced.append((entry.name, item.quantity, entry.app_price))

    items_total = round_money(sum(quantity * price for _, quantity, price in priced))
    customer_name = payload.customer_name or (customer.name if customer else None)
    order = Orders(
        customer_id=principal.actor_id,
        customer_name=customer_name or "Customer",
        customer_mobile=payload.customer_mobile,
        customer_address=payload.customer_address,
        vendor_id=vendor.id,
        vendor_address=vendor.address,
        items_total=items_total,
        pickup_fee=settings.PICKUP_FEE,
        total_price=round_money(items_total + settings.PICKUP_FEE),
        payment_method=payload.payment_method,
        created_at=now,
        updated_at=now,
    )
    session.add(order)
    session.flush()
    for position, (name, quantity, price) in enumerate(priced):
        session.add(OrderLineItem(
            order_id=order.id, position=position, service_name=name, quantity=quantity, unit_price=price
        ))
    session.commit()
    session.refresh(order)
    logger.info(f"Order {order.id} placed by customer {order.customer_id} with vendor {order.vendor_id}.")
    return order


def cancel_order(session: Session, principal: Principal, order_id: int) -> TransitionResult:
    return apply_transition(session, principal, order_id, Transition.CANCEL)


def accept_order(session: Session, principal: Principal, order_id: int) -> TransitionResult:
    return apply_transition(session, principal, order_id, Transition.ACCEPT)


def claim_pickup(session: Session, principal: Principal, order_id: int) -> TransitionResult:
    return apply_transition(session, principal, order_id, Transition.CLAIM_PICKUP)


def claim_delivery(session: Session, principal: Principal, order_id: int) -> TransitionResult:
    return apply_transition(session, principal, order_id, Transition.CLAIM_DELIVERY)


def mark_washed(session: Session, principal: Principal, order_id: int,
                now: datetime|None = None) -> TransitionResult:
    return apply_transition(session, principal, order_id, Transition.MARK_WASHED, now=now)


# ------------------------------ Queries ------------------------------

def is_participant(order: Orders, principal: Principal) -> bool:
    if principal.role == Role.ADMIN:
        return True
    if principal.role == Role.CUSTOMER:
        return order.customer_id == principal.actor_id
    if principal.role == Role.VENDOR:
        return order.vendor_id == principal.actor_id
    if principal.actor_id in (order.pickup_partner_id, order.delivery_partner_id):
        return True
    # partners may inspect orders still waiting in the claim pools
    return (order.pickup_partner_id is None and order.status in TRANSITIONS[Transition.CLAIM_PICKUP].sources) \
        or (order.delivery_partner_id is None and order.status == OrderStatus.WASHED)


def get_order(session: Session, principal: Principal, order_id: int) -> Orders:
    order = load_order(session, order_id)
    if not is_participant(order, principal):
        raise NotOrderParticipant(f"Order {order_id} is not visible to you.")
    return order


def customer_orders(session: Session, customer_id: int) -> list[Orders]:
    return session.exec(
        select(Orders).where(Orders.customer_id == customer_id).order_by(Orders.created_at.desc())
    ).all()


def unclaimed_pickups(session: Session) -> list[Orders]:
    return session.exec(
        select(Orders)
        .where(Orders.pickup_partner_id.is_(None),
               Orders.status.in_(TRANSITIONS[Transition.CLAIM_PICKUP].sources))
        .order_by(Orders.created_at)
    ).all()


def unclaimed_deliveries(session: Session) -> list[Orders]:
    return session.exec(
        select(Orders)
        .where(Orders.delivery_partner_id.is_(None), Orders.status == OrderStatus.WASHED)
        .order_by(Orders.updated_at)
    ).all()


def partner_deals(session: Session, partner_id: int) -> list[Orders]:
    return session.exec(
        select(Orders)
        .where((Orders.pickup_partner_id == partner_id) | (Orders.delivery_partner_id == partner_id))
        .order_by(Orders.updated_at.desc())
    ).all()


def vendor_orders(session: Session, vendor_id: int, status: OrderStatus|None = None) -> list[Orders]:
    statement = select(Orders).where(Orders.vendor_id == vendor_id)
    if status is not None:
        statement = statement.where(Orders.status == status)
    return session.exec(statement.order_by(Orders.created_at.desc())).all()


def all_orders(session: Session) -> list[Orders]:
    return session.exec(select(Orders).order_by(Orders.created_at.desc())).all()


def changes_since(session: Session, since: datetime) -> list[Orders]:
    return session.exec(
        select(Orders).where(Orders.updated_at > since).order_by(Orders.updated_at)
    ).all()


def review_queue(session: Session) -> list[Orders]:
    return session.exec(
        select(Orders).where(Orders.needs_review.is_(True)).order_by(Orders.updated_at)
    ).all()


def clear_review(session: Session, order_id: int) -> Orders:
    load_order(session, order_id)
    conditional_update(
        session,
        update(Orders).where(Orders.id == order_id).values(needs_review=False, updated_at=utcnow()),
    )
    session.commit()
    return load_order(session, order_id)
