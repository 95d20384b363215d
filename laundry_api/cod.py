# laundry_api/cod.py

from datetime import datetime
from sqlalchemy import update
from sqlmodel import Session, select
from laundry_api import payments, settings
from laundry_api.db import conditional_update
from laundry_api.errors import (
    InvalidTransition, WrongActorRole, NotOrderParticipant, PaymentNotCod, CodAlreadyConfirmed,
    CodAmountMismatch, NothingToSubmit, PaymentNotCompleted, SubmissionNotFound
)
from laundry_api.lifecycle import load_order
from laundry_api.models import (
    Orders, OrderLineItem, OrderStatus, PaymentMethod, PaymentStatus, Principal, Role,
    CodCollection, CodCollectionRead, CodSubmission, CodSubmissionStatus, CodSubmissionStart,
    CodReceipt, CodWalletRead, utcnow
)
from laundry_api.utils import ledger_day, round_money
import logging

logger = logging.getLogger(__name__)

# Cash can be taken once the partner holds the return leg
COLLECTABLE_STATUSES = (OrderStatus.PICKING_UP, OrderStatus.DELIVERY_PICKED_UP)


def confirm_collection(session: Session, principal: Principal, order_id: int, amount: float,
                       now: datetime|None = None) -> CodCollection:
    """
    Record that the delivery partner has the customer's cash in hand.

    This is what unlocks the final delivery of a COD order. The amount must be
    the order's full price; a second confirmation is refused.
    """
    if principal.role != Role.DELIVERY_PARTNER:
        raise WrongActorRole("Only delivery partners collect cash.", required_role=Role.DELIVERY_PARTNER.value)
    now = now or utcnow()
    order = load_order(session, order_id)
    if order.payment_method != PaymentMethod.COD:
        raise PaymentNotCod(f"Order {order_id} was paid online.")
    if order.delivery_partner_id != principal.actor_id:
        raise NotOrderParticipant(f"Order {order_id} is not assigned to you.")
    if order.cod_confirmed:
        raise CodAlreadyConfirmed(f"Cash for order {order_id} was already collected.")
    if order.status not in COLLECTABLE_STATUSES:
        raise InvalidTransition(order.status, "confirm_cod")
    if abs(amount - order.total_price) > 0.005:
        raise CodAmountMismatch(
            f"Collected {amount} does not match the order total {order.total_price}.",
            expected=order.total_price,
        )

    confirmed = conditional_update(
        session,
        update(Orders)
        .where(
            Orders.id == order_id,
            Orders.cod_confirmed.is_(False),
            Orders.delivery_partner_id == principal.actor_id,
            Orders.status.in_(COLLECTABLE_STATUSES),
        )
        .values(cod_confirmed=True, payment_status=PaymentStatus.COLLECTED, updated_at=now),
    )
    if confirmed != 1:
        session.rollback()
        raise CodAlreadyConfirmed(f"Cash for order {order_id} was already collected.")

    order = load_order(session, order_id)
    items = session.exec(
        select(OrderLineItem).where(OrderLineItem.order_id == order_id).order_by(OrderLineItem.position)
    ).all()
    collection = CodCollection(
        partner_id=principal.actor_id,
        order_id=order_id,
        customer_name=order.customer_name,
        customer_mobile=order.customer_mobile,
        service_name=items[0].service_name if items else "",
        quantity=sum(item.quantity for item in items),
        amount=round_money(amount),
        collected_at=now,
    )
    session.add(collection)
    session.commit()
    session.refresh(collection)
    logger.info(f"Partner {principal.actor_id} collected {amount} cash for order {order_id}.")
    return collection


def cod_wallet(session: Session, partner_id: int, now: datetime|None = None) -> CodWalletRead:
    """
    Summarise a partner's cash position.

    The late penalty is 150 per calendar day since the last collection and only
    applies while some cash is still unsubmitted.
    """
    now = now or utcnow()
    collections = session.exec(
        select(CodCollection)
        .where(CodCollection.partner_id == partner_id)
        .order_by(CodCollection.collected_at.desc())
    ).all()
    pending = [c for c in collections if c.submitted_at is None]
    submitted = [c for c in collections if c.submitted_at is not None]
    pending_submission = round_money(sum(c.amount for c in pending))

    last_collection = collections[0].collected_at if collections else None
    last_submission = max((c.submitted_at for c in submitted), default=None)
    days = 0
    if last_collection is not None:
        days = max((ledger_day(now) - ledger_day(last_collection)).days, 0)
    penalty = days * settings.COD_PENALTY_PER_DAY if pending_submission > 0 else 0

    return CodWalletRead(
        partner_id=partner_id,
        pending_submission=pending_submission,
        total_collected=round_money(sum(c.amount for c in collections)),
        total_submitted=round_money(sum(c.amount for c in submitted)),
        last_collection_date=last_collection,
        last_submission_date=last_submission,
        days_since_last_collection=days,
        penalty_amount=penalty,
        pending_collections=[CodCollectionRead.model_validate(c, from_attributes=True) for c in pending],
        submitted_collections=[CodCollectionRead.model_validate(c, from_attributes=True) for c in submitted],
    )


def initiate_submission(session: Session, principal: Principal,
                        now: datetime|None = None) -> CodSubmissionStart:
    """
    Open a gateway payment for everything the partner currently owes.

    A partner has at most one open remittance: while one is still pending it is
    handed back (with a fresh client secret) instead of charging the same cash
    twice. It covers the collections made up to when it was opened.
    """
    if principal.role != Role.DELIVERY_PARTNER:
        raise WrongActorRole("Only delivery partners submit cash.", required_role=Role.DELIVERY_PARTNER.value)
    now = now or utcnow()
    open_submission = session.exec(
        select(CodSubmission).where(
            CodSubmission.partner_id == principal.actor_id,
            CodSubmission.status == CodSubmissionStatus.PENDING,
        )
    ).first()
    if open_submission is not None:
        logger.info(f"Partner {principal.actor_id} resumed remittance {open_submission.id}.")
        return CodSubmissionStart(
            submission_id=open_submission.id,
            payment_intent_id=open_submission.payment_ref,
            client_secret=payments.remittance_client_secret(open_submission.payment_ref),
            amount=open_submission.amount,
            currency=payments.CURRENCY,
        )

    pending = cod_wallet(session, principal.actor_id, now).pending_submission
    if pending <= 0:
        raise NothingToSubmit("No pending collections to submit.")

    submission = CodSubmission(partner_id=principal.actor_id, amount=pending, created_at=now)
    session.add(submission)
    session.flush()
    try:
        intent = payments.create_remittance_intent(pending, principal.actor_id, submission.id)
    except PaymentNotCompleted:
        session.rollback()
        raise
    submission.payment_ref = intent["payment_intent_id"]
    session.add(submission)
    session.commit()
    session.refresh(submission)
    logger.info(f"Partner {principal.actor_id} started remittance {submission.id} of {pending}.")
    return CodSubmissionStart(
        submission_id=submission.id,
        payment_intent_id=submission.payment_ref,
        client_secret=intent["client_secret"],
        amount=submission.amount,
        currency=payments.CURRENCY,
    )


def _receipt(submission: CodSubmission) -> CodReceipt:
    return CodReceipt(
        submission_id=submission.id,
        receipt_number=submission.receipt_number,
        amount=submission.amount,
        paid_at=submission.paid_at,
    )


def verify_submission(session: Session, principal: Principal, payment_intent_id: str,
                      now: datetime|None = None) -> CodReceipt:
    """
    Settle a remittance once the gateway reports the payment succeeded.

    Every collection still pending when the remittance was opened is stamped
    as submitted in one update; submission is all-or-nothing. Verifying an
    already settled remittance returns its receipt again.
    """
    now = now or utcnow()
    submission = session.exec(
        select(CodSubmission).where(
            CodSubmission.payment_ref == payment_intent_id,
            CodSubmission.partner_id == principal.actor_id,
        )
    ).first()
    if submission is None:
        raise SubmissionNotFound(f"No remittance found for payment {payment_intent_id}.")
    if submission.status == CodSubmissionStatus.PAID:
        return _receipt(submission)
    if not payments.remittance_succeeded(payment_intent_id):
        raise PaymentNotCompleted("Payment has not been completed.")

    submission_id, opened_at = submission.id, submission.created_at
    receipt_number = f"COD-{ledger_day(now):%Y%m%d}-{submission_id:05d}"
    settled = conditional_update(
        session,
        update(CodSubmission)
        .where(CodSubmission.id == submission_id, CodSubmission.status == CodSubmissionStatus.PENDING)
        .values(status=CodSubmissionStatus.PAID, paid_at=now, receipt_number=receipt_number),
    )
    if settled == 1:
        conditional_update(
            session,
            update(CodCollection)
            .where(
                CodCollection.partner_id == principal.actor_id,
                CodCollection.submitted_at.is_(None),
                CodCollection.collected_at <= opened_at,
            )
            .values(submitted_at=now, submission_id=submission_id),
        )
        session.commit()
        logger.info(f"Remittance {submission_id} settled with receipt {receipt_number}.")
    else:
        session.rollback()

    submission = session.get(CodSubmission, submission_id)
    return _receipt(submission)
