# laundry_api/otp.py

import secrets
from datetime import datetime
from sqlalchemy import update
from sqlmodel import Session
from laundry_api.db import conditional_update
from laundry_api.errors import InvalidTransition, WrongActorRole, NotOrderParticipant
from laundry_api.lifecycle import (
    TRANSITIONS, OTP_HANDOFFS, apply_transition, load_order, presenting_actor
)
from laundry_api.models import Orders, Principal, Transition, TransitionResult, utcnow
import logging

logger = logging.getLogger(__name__)

OTP_DIGITS = 4


def new_code() -> str:
    return f"{secrets.randbelow(10 ** OTP_DIGITS):0{OTP_DIGITS}d}"


def generate(session: Session, principal: Principal, order_id: int,
             now: datetime|None = None) -> str:
    """
    Issue a fresh handoff code for an order and return it.

    Only the party who hands the laundry over (and so shows the code to the
    receiver) may generate it. Any earlier code for the order stops working.
    The order's status is left alone.
    """
    order = load_order(session, order_id)
    transition = OTP_HANDOFFS.get(order.status)
    if transition is None:
        raise InvalidTransition(order.status, "generate_otp")
    presenter = TRANSITIONS[transition].presenter
    if principal.role != presenter:
        raise WrongActorRole(
            f"The code for '{transition.value}' is held by {presenter.value}.",
            required_role=presenter.value,
        )
    if presenting_actor(order, transition) != principal.actor_id:
        raise NotOrderParticipant(f"Order {order_id} is not assigned to you.")

    status = order.status
    code = new_code()
    stored = conditional_update(
        session,
        update(Orders)
        .where(Orders.id == order_id, Orders.status == status)
        .values(otp=code, updated_at=now or utcnow()),
    )
    if stored != 1:
        session.rollback()
        raise InvalidTransition(load_order(session, order_id).status, "generate_otp")
    session.commit()
    logger.info(f"OTP issued for order {order_id} ({transition.value}) by {principal.role.value} {principal.actor_id}.")
    return code


def verify(
    session: Session,
    principal: Principal,
    order_id: int,
    code: str,
    transition: Transition,
    now: datetime|None = None,
) -> TransitionResult:
    """
    Check a handoff code and apply its transition in the same update.

    The code is cleared when the transition lands, so replaying it fails. A
    wrong code leaves both the code and the status untouched.
    """
    if TRANSITIONS[transition].presenter is None:
        raise InvalidTransition(load_order(session, order_id).status, transition)
    return apply_transition(session, principal, order_id, transition, otp=code, now=now)
