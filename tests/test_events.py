# tests/test_events.py

import asyncio
import pytest
from unittest.mock import AsyncMock
from laundry_api import events, lifecycle
from laundry_api.models import OrderStatus
from helpers import place


@pytest.mark.parametrize("status", list(OrderStatus))
def test_order_status_mapping(status):
    value = events.map_python_to_protobuf_order_status(status)
    assert events.map_protobuf_to_python_order_status(value) == status


def test_unknown_protobuf_status():
    with pytest.raises(ValueError):
        events.map_protobuf_to_python_order_status(99)


def test_order_event_payload(session, actors):
    order = lifecycle.order_read(session, lifecycle.load_order(session, place(session, actors)))

    message = events.OrderEvent()
    message.ParseFromString(events.order_event(order, "CREATE"))

    assert message.order_id == order.id
    assert message.vendor_id == actors.vendor.actor_id
    assert message.pickup_partner_id == 0
    assert message.total_price == 200
    assert message.action == events.ActionType.Value("CREATE")
    assert message.payment_method == "online"


def test_publish_without_producer_is_a_no_op(session, actors):
    order = lifecycle.order_read(session, lifecycle.load_order(session, place(session, actors)))
    asyncio.run(events.publish_order_event(None, order))


def test_publish_failure_is_logged_not_raised(session, actors, caplog):
    order = lifecycle.order_read(session, lifecycle.load_order(session, place(session, actors)))
    producer = AsyncMock()
    producer.send_and_wait.side_effect = RuntimeError("broker down")

    asyncio.run(events.publish_order_event(producer, order))

    assert "broker down" in caplog.text
