# tests/test_cod.py

import pytest
import stripe
from datetime import datetime, timedelta
from types import SimpleNamespace
from unittest.mock import patch
from laundry_api import cod, lifecycle, otp
from laundry_api.errors import (
    CodAlreadyConfirmed, CodAmountMismatch, CodNotConfirmed, NotOrderParticipant,
    NothingToSubmit, PaymentNotCod, PaymentNotCompleted, SubmissionNotFound
)
from laundry_api.models import OrderStatus, PaymentMethod, PaymentStatus, Transition
from helpers import place, drive_to

# 3 Bedsheets at 150 plus the 50 pickup fee
BEDSHEETS = (("Bedsheet", 3),)
DAY_D = datetime(2024, 5, 1, 6, 0)


def cod_order(session, actors, status=OrderStatus.PICKING_UP):
    order_id = place(session, actors, items=BEDSHEETS, payment_method=PaymentMethod.COD)
    drive_to(session, order_id, status, actors)
    return order_id


@pytest.fixture(name="mock_stripe")
def mock_stripe_fixture():
    """
    Patches the Stripe PaymentIntent API so no request leaves the test run.
    """
    with patch("laundry_api.payments.stripe.PaymentIntent.create") as create, \
            patch("laundry_api.payments.stripe.PaymentIntent.retrieve") as retrieve:
        create.return_value = SimpleNamespace(id="pi_test_123", client_secret="pi_test_123_secret")
        retrieve.return_value = SimpleNamespace(
            id="pi_test_123", client_secret="pi_test_123_secret", status="succeeded"
        )
        yield SimpleNamespace(create=create, retrieve=retrieve)


def test_confirm_collection_records_cash(session, actors):
    order_id = cod_order(session, actors)

    collection = cod.confirm_collection(session, actors.partner, order_id, 500, now=DAY_D)

    assert collection.amount == 500
    assert collection.service_name == "Bedsheet"
    assert collection.quantity == 3
    assert collection.customer_name == "Asha"
    order = lifecycle.load_order(session, order_id)
    assert order.cod_confirmed is True
    assert order.payment_status == PaymentStatus.COLLECTED


def test_collection_is_confirmed_once(session, actors):
    order_id = cod_order(session, actors)
    cod.confirm_collection(session, actors.partner, order_id, 500, now=DAY_D)

    with pytest.raises(CodAlreadyConfirmed):
        cod.confirm_collection(session, actors.partner, order_id, 500, now=DAY_D)
    assert cod.cod_wallet(session, actors.partner.actor_id, now=DAY_D).pending_submission == 500


def test_collection_checks(session, actors):
    online = place(session, actors, items=BEDSHEETS)
    with pytest.raises(PaymentNotCod):
        cod.confirm_collection(session, actors.partner, online, 500)

    order_id = cod_order(session, actors, status=OrderStatus.WASHED)
    with pytest.raises(NotOrderParticipant):
        cod.confirm_collection(session, actors.partner, order_id, 500)

    lifecycle.claim_delivery(session, actors.partner, order_id)
    with pytest.raises(NotOrderParticipant):
        cod.confirm_collection(session, actors.other_partner, order_id, 500)
    with pytest.raises(CodAmountMismatch) as excinfo:
        cod.confirm_collection(session, actors.partner, order_id, 450)
    assert excinfo.value.context == {"expected": 500}
    assert lifecycle.load_order(session, order_id).cod_confirmed is False


def test_cod_delivery_needs_confirmed_cash(session, actors):
    order_id = cod_order(session, actors, status=OrderStatus.DELIVERY_PICKED_UP)
    code = otp.generate(session, actors.customer, order_id)

    with pytest.raises(CodNotConfirmed):
        otp.verify(session, actors.partner, order_id, code, Transition.DELIVER)
    order = lifecycle.load_order(session, order_id)
    assert order.status == OrderStatus.DELIVERY_PICKED_UP
    assert order.otp == code

    cod.confirm_collection(session, actors.partner, order_id, 500)
    result = otp.verify(session, actors.partner, order_id, code, Transition.DELIVER)
    assert result.order.status == OrderStatus.DELIVERED
    assert result.order.payment_status == PaymentStatus.COLLECTED


def test_penalty_grows_per_day_while_cash_is_held(session, actors):
    order_id = cod_order(session, actors)
    cod.confirm_collection(session, actors.partner, order_id, 500, now=DAY_D)

    same_day = cod.cod_wallet(session, actors.partner.actor_id, now=DAY_D)
    assert same_day.pending_submission == 500
    assert same_day.penalty_amount == 0

    later = cod.cod_wallet(session, actors.partner.actor_id, now=DAY_D + timedelta(days=3))
    assert later.pending_submission == 500
    assert later.days_since_last_collection == 3
    assert later.penalty_amount == 450
    assert [c.order_id for c in later.pending_collections] == [order_id]


def test_same_day_submission_clears_penalty(session, actors, mock_stripe):
    order_id = cod_order(session, actors)
    cod.confirm_collection(session, actors.partner, order_id, 500, now=DAY_D)

    start = cod.initiate_submission(session, actors.partner, now=DAY_D)
    assert start.amount == 500
    assert start.currency == "inr"
    assert start.payment_intent_id == "pi_test_123"
    assert mock_stripe.create.call_args.kwargs["amount"] == 50000

    receipt = cod.verify_submission(session, actors.partner, "pi_test_123", now=DAY_D)
    assert receipt.receipt_number == f"COD-20240501-{start.submission_id:05d}"
    assert receipt.amount == 500

    view = cod.cod_wallet(session, actors.partner.actor_id, now=DAY_D)
    assert view.pending_submission == 0
    assert view.penalty_amount == 0
    assert view.total_submitted == 500
    assert view.last_submission_date == DAY_D
    # nothing pending, so no penalty accrues later either
    assert cod.cod_wallet(session, actors.partner.actor_id, now=DAY_D + timedelta(days=5)).penalty_amount == 0


def test_verify_twice_returns_the_same_receipt(session, actors, mock_stripe):
    order_id = cod_order(session, actors)
    cod.confirm_collection(session, actors.partner, order_id, 500, now=DAY_D)
    cod.initiate_submission(session, actors.partner, now=DAY_D)

    first = cod.verify_submission(session, actors.partner, "pi_test_123", now=DAY_D)
    second = cod.verify_submission(session, actors.partner, "pi_test_123", now=DAY_D + timedelta(hours=1))
    assert second == first
    assert mock_stripe.retrieve.call_count == 1


def test_open_remittance_is_resumed_not_opened_twice(session, actors, mock_stripe):
    order_id = cod_order(session, actors)
    cod.confirm_collection(session, actors.partner, order_id, 500, now=DAY_D)

    first = cod.initiate_submission(session, actors.partner, now=DAY_D)
    # the partner left the payment screen and starts over
    again = cod.initiate_submission(session, actors.partner, now=DAY_D + timedelta(minutes=10))

    assert again == first
    assert again.client_secret == "pi_test_123_secret"
    assert mock_stripe.create.call_count == 1

    # cash collected after the remittance was opened waits for the next one
    later_id = cod_order(session, actors)
    cod.confirm_collection(session, actors.partner, later_id, 500, now=DAY_D + timedelta(minutes=20))
    assert cod.initiate_submission(session, actors.partner, now=DAY_D + timedelta(minutes=25)) == first

    receipt = cod.verify_submission(session, actors.partner, "pi_test_123", now=DAY_D + timedelta(minutes=30))
    assert receipt.amount == 500
    view = cod.cod_wallet(session, actors.partner.actor_id, now=DAY_D + timedelta(minutes=30))
    assert view.total_submitted == 500
    assert [c.order_id for c in view.pending_collections] == [later_id]

    mock_stripe.create.return_value = SimpleNamespace(id="pi_test_456", client_secret="pi_test_456_secret")
    second = cod.initiate_submission(session, actors.partner, now=DAY_D + timedelta(minutes=35))
    assert second.submission_id != first.submission_id
    assert second.amount == 500


def test_nothing_to_submit(session, actors, mock_stripe):
    with pytest.raises(NothingToSubmit):
        cod.initiate_submission(session, actors.partner)
    mock_stripe.create.assert_not_called()


def test_unpaid_intent_settles_nothing(session, actors, mock_stripe):
    mock_stripe.retrieve.return_value = SimpleNamespace(id="pi_test_123", status="requires_payment_method")
    order_id = cod_order(session, actors)
    cod.confirm_collection(session, actors.partner, order_id, 500, now=DAY_D)
    cod.initiate_submission(session, actors.partner, now=DAY_D)

    with pytest.raises(PaymentNotCompleted):
        cod.verify_submission(session, actors.partner, "pi_test_123", now=DAY_D)
    assert cod.cod_wallet(session, actors.partner.actor_id, now=DAY_D).pending_submission == 500


def test_gateway_error_leaves_no_submission(session, actors, mock_stripe):
    mock_stripe.create.side_effect = stripe.StripeError("card declined")
    order_id = cod_order(session, actors)
    cod.confirm_collection(session, actors.partner, order_id, 500, now=DAY_D)

    with pytest.raises(PaymentNotCompleted):
        cod.initiate_submission(session, actors.partner, now=DAY_D)
    with pytest.raises(SubmissionNotFound):
        cod.verify_submission(session, actors.partner, "pi_test_123", now=DAY_D)


def test_other_partners_cannot_settle_a_remittance(session, actors, mock_stripe):
    order_id = cod_order(session, actors)
    cod.confirm_collection(session, actors.partner, order_id, 500, now=DAY_D)
    cod.initiate_submission(session, actors.partner, now=DAY_D)

    with pytest.raises(SubmissionNotFound):
        cod.verify_submission(session, actors.other_partner, "pi_test_123", now=DAY_D)
