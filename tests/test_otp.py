# tests/test_otp.py

import pytest
from laundry_api import lifecycle, otp
from laundry_api.errors import InvalidTransition, NotOrderParticipant, OtpMismatch, WrongActorRole
from laundry_api.models import OrderStatus, Transition
from helpers import place, drive_to


def test_new_code_is_four_digits():
    for _ in range(50):
        code = otp.new_code()
        assert len(code) == 4 and code.isdigit()


def test_generate_leaves_status_alone(session, actors):
    order_id = place(session, actors)
    drive_to(session, order_id, OrderStatus.READY_FOR_PICKUP, actors)

    code = otp.generate(session, actors.customer, order_id)

    order = lifecycle.load_order(session, order_id)
    assert order.status == OrderStatus.READY_FOR_PICKUP
    assert order.otp == code


def test_wrong_code_changes_nothing(session, actors):
    order_id = place(session, actors)
    drive_to(session, order_id, OrderStatus.READY_FOR_PICKUP, actors)
    code = otp.generate(session, actors.customer, order_id)
    wrong = "0000" if code != "0000" else "1111"

    with pytest.raises(OtpMismatch) as excinfo:
        otp.verify(session, actors.partner, order_id, wrong, Transition.PICKUP)
    assert code not in str(excinfo.value.message)

    order = lifecycle.load_order(session, order_id)
    assert order.status == OrderStatus.READY_FOR_PICKUP
    assert order.otp == code
    assert order.pickup_credited is False


def test_right_code_moves_once_and_is_consumed(session, actors):
    order_id = place(session, actors)
    drive_to(session, order_id, OrderStatus.READY_FOR_PICKUP, actors)
    code = otp.generate(session, actors.customer, order_id)

    result = otp.verify(session, actors.partner, order_id, code, Transition.PICKUP)
    assert result.order.status == OrderStatus.PICKED_UP
    assert lifecycle.load_order(session, order_id).otp is None

    # replaying the consumed code is a wrong code, not a state error
    with pytest.raises(OtpMismatch):
        otp.verify(session, actors.partner, order_id, code, Transition.PICKUP)
    assert lifecycle.load_order(session, order_id).status == OrderStatus.PICKED_UP


def test_regenerating_invalidates_the_old_code(session, actors):
    order_id = place(session, actors)
    drive_to(session, order_id, OrderStatus.READY_FOR_PICKUP, actors)
    first = otp.generate(session, actors.customer, order_id)
    second = otp.generate(session, actors.customer, order_id)

    if first != second:
        with pytest.raises(OtpMismatch):
            otp.verify(session, actors.partner, order_id, first, Transition.PICKUP)
    result = otp.verify(session, actors.partner, order_id, second, Transition.PICKUP)
    assert result.order.status == OrderStatus.PICKED_UP


def test_only_the_presenter_generates(session, actors):
    order_id = place(session, actors)
    drive_to(session, order_id, OrderStatus.PICKED_UP, actors)

    # at Picked Up the pickup partner holds the code for the vendor
    with pytest.raises(WrongActorRole):
        otp.generate(session, actors.customer, order_id)
    with pytest.raises(NotOrderParticipant):
        otp.generate(session, actors.other_partner, order_id)
    assert otp.generate(session, actors.partner, order_id)


def test_generate_outside_a_handoff_is_invalid(session, actors):
    order_id = place(session, actors)

    with pytest.raises(InvalidTransition) as excinfo:
        otp.generate(session, actors.customer, order_id)
    assert excinfo.value.context["requested"] == "generate_otp"


def test_verify_for_a_transition_without_a_code(session, actors):
    order_id = place(session, actors)
    with pytest.raises(InvalidTransition):
        otp.verify(session, actors.vendor, order_id, "1234", Transition.ACCEPT)


def test_role_checked_before_code(session, actors):
    order_id = place(session, actors)
    drive_to(session, order_id, OrderStatus.READY_FOR_PICKUP, actors)
    code = otp.generate(session, actors.customer, order_id)

    with pytest.raises(WrongActorRole):
        otp.verify(session, actors.vendor, order_id, code, Transition.PICKUP)
    assert lifecycle.load_order(session, order_id).otp == code


def test_code_for_one_handoff_does_not_fit_another(session, actors):
    order_id = place(session, actors)
    drive_to(session, order_id, OrderStatus.READY_FOR_PICKUP, actors)
    code = otp.generate(session, actors.customer, order_id)

    # the pickup code cannot be used to skip straight to the vendor handoff
    with pytest.raises(InvalidTransition):
        otp.verify(session, actors.vendor, order_id, code, Transition.VENDOR_RECEIVE)
    assert lifecycle.load_order(session, order_id).status == OrderStatus.READY_FOR_PICKUP
