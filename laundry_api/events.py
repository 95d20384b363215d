# laundry_api/events.py

import asyncio
from aiokafka import AIOKafkaProducer
from aiokafka.admin import AIOKafkaAdminClient, NewTopic
from aiokafka.errors import (
    KafkaConnectionError,
    TopicAlreadyExistsError,
    NotControllerError,
    LeaderNotAvailableError,
)
from google.protobuf import descriptor_pb2, descriptor_pool, message_factory
from google.protobuf.internal import enum_type_wrapper
from laundry_api import settings
from laundry_api.models import OrderRead, OrderStatus, WithdrawalRequest, WithdrawalStatus
import logging

logger = logging.getLogger(__name__)

PACKAGE = "laundry"

_FIELD = descriptor_pb2.FieldDescriptorProto


def _add_enum(file_proto, name: str, values: list[str]) -> None:
    # proto3 enum values share the package scope, so names must stay unique across enums
    enum = file_proto.enum_type.add(name=name)
    for number, value in enumerate(values):
        enum.value.add(name=value, number=number)


def _add_message(file_proto, name: str, fields: list[tuple]) -> None:
    message = file_proto.message_type.add(name=name)
    for number, (field_name, field_type, *type_name) in enumerate(fields, start=1):
        field = message.field.add(
            name=field_name, number=number, type=field_type, label=_FIELD.LABEL_OPTIONAL
        )
        if type_name:
            field.type_name = f".{PACKAGE}.{type_name[0]}"


def _build_schema() -> descriptor_pb2.FileDescriptorProto:
    """
    Schema of the events this service publishes.

    Equivalent .proto:

        enum OrderStatus { SCHEDULED = 0; IN_PROGRESS = 1; ... CANCELLED = 9; }
        enum ActionType { CREATE = 0; UPDATE = 1; }
        enum WithdrawalStatus { PENDING = 0; APPROVED = 1; PAID = 2; REJECTED = 3; }
        message OrderEvent { int64 order_id = 1; int64 customer_id = 2; ... }
        message WithdrawalEvent { int64 withdrawal_id = 1; ... }
    """
    file_proto = descriptor_pb2.FileDescriptorProto(
        name="laundry_events.proto", package=PACKAGE, syntax="proto3"
    )
    _add_enum(file_proto, "OrderStatus", [status.name for status in OrderStatus])
    _add_enum(file_proto, "ActionType", ["CREATE", "UPDATE"])
    _add_enum(file_proto, "WithdrawalStatus", [status.name for status in WithdrawalStatus])
    _add_message(file_proto, "OrderEvent", [
        ("order_id", _FIELD.TYPE_INT64),
        ("customer_id", _FIELD.TYPE_INT64),
        ("vendor_id", _FIELD.TYPE_INT64),
        ("pickup_partner_id", _FIELD.TYPE_INT64),
        ("delivery_partner_id", _FIELD.TYPE_INT64),
        ("order_status", _FIELD.TYPE_ENUM, "OrderStatus"),
        ("total_price", _FIELD.TYPE_DOUBLE),
        ("payment_method", _FIELD.TYPE_STRING),
        ("payment_status", _FIELD.TYPE_STRING),
        ("cod_confirmed", _FIELD.TYPE_BOOL),
        ("action", _FIELD.TYPE_ENUM, "ActionType"),
        ("updated_at", _FIELD.TYPE_STRING),
    ])
    _add_message(file_proto, "WithdrawalEvent", [
        ("withdrawal_id", _FIELD.TYPE_INT64),
        ("actor_id", _FIELD.TYPE_INT64),
        ("role", _FIELD.TYPE_STRING),
        ("amount", _FIELD.TYPE_DOUBLE),
        ("withdraw_from", _FIELD.TYPE_STRING),
        ("status", _FIELD.TYPE_ENUM, "WithdrawalStatus"),
        ("action", _FIELD.TYPE_ENUM, "ActionType"),
    ])
    return file_proto


_pool = descriptor_pool.DescriptorPool()
_pool.AddSerializedFile(_build_schema().SerializeToString())

OrderEvent = message_factory.GetMessageClass(_pool.FindMessageTypeByName(f"{PACKAGE}.OrderEvent"))
WithdrawalEvent = message_factory.GetMessageClass(_pool.FindMessageTypeByName(f"{PACKAGE}.WithdrawalEvent"))
ProtoOrderStatus = enum_type_wrapper.EnumTypeWrapper(_pool.FindEnumTypeByName(f"{PACKAGE}.OrderStatus"))
ActionType = enum_type_wrapper.EnumTypeWrapper(_pool.FindEnumTypeByName(f"{PACKAGE}.ActionType"))
ProtoWithdrawalStatus = enum_type_wrapper.EnumTypeWrapper(
    _pool.FindEnumTypeByName(f"{PACKAGE}.WithdrawalStatus")
)


def map_python_to_protobuf_order_status(status: OrderStatus) -> int:
    return ProtoOrderStatus.Value(status.name)


def map_protobuf_to_python_order_status(value: int) -> OrderStatus:
    try:
        return OrderStatus[ProtoOrderStatus.Name(value)]
    except (KeyError, ValueError):
        raise ValueError(f"Unknown Protobuf OrderStatus: {value}")


def order_event(order: OrderRead, action: str) -> bytes:
    message = OrderEvent(
        order_id=order.id,
        customer_id=order.customer_id,
        vendor_id=order.vendor_id,
        pickup_partner_id=order.pickup_partner_id or 0,
        delivery_partner_id=order.delivery_partner_id or 0,
        order_status=map_python_to_protobuf_order_status(order.status),
        total_price=order.total_price,
        payment_method=order.payment_method.value,
        payment_status=order.payment_status.value,
        cod_confirmed=order.cod_confirmed,
        action=ActionType.Value(action),
        updated_at=order.updated_at.isoformat(),
    )
    return message.SerializeToString()


def withdrawal_event(withdrawal: WithdrawalRequest, action: str) -> bytes:
    message = WithdrawalEvent(
        withdrawal_id=withdrawal.id,
        actor_id=withdrawal.actor_id,
        role=withdrawal.role.value,
        amount=withdrawal.amount,
        withdraw_from=withdrawal.withdraw_from.value,
        status=ProtoWithdrawalStatus.Value(withdrawal.status.name),
        action=ActionType.Value(action),
    )
    return message.SerializeToString()


async def produce_message():
    """Dependency yielding a started Kafka producer, or None when Kafka is disabled."""
    if not settings.KAFKA_ENABLED:
        yield None
        return
    producer = AIOKafkaProducer(bootstrap_servers=settings.KAFKA_BOOTSTRAP_SERVERS)
    await producer.start()
    try:
        yield producer
    finally:
        # Wait for all pending messages to be delivered or expire.
        await producer.stop()


async def publish_order_event(producer: AIOKafkaProducer|None, order: OrderRead, action: str = "UPDATE") -> None:
    """Publish an order change; failures are logged, the committed change stands."""
    if producer is None:
        return
    try:
        await producer.send_and_wait(settings.KAFKA_ORDER_TOPIC, order_event(order, action))
        logger.info(f"Published {action} event for order {order.id} ({order.status.value}).")
    except Exception as e:
        logger.error(f"Error publishing event for order {order.id}: {e}")


async def publish_withdrawal_event(producer: AIOKafkaProducer|None, withdrawal: WithdrawalRequest,
                                   action: str = "UPDATE") -> None:
    if producer is None:
        return
    try:
        await producer.send_and_wait(settings.KAFKA_WITHDRAWAL_TOPIC, withdrawal_event(withdrawal, action))
        logger.info(f"Published {action} event for withdrawal {withdrawal.id}.")
    except Exception as e:
        logger.error(f"Error publishing event for withdrawal {withdrawal.id}: {e}")


async def create_kafka_topics(
    topic_names: list[str],
    num_partitions: int = 1,
    replication_factor: int = 1,
    max_retries: int = 5,
    retry_interval: int = 10,
) -> None:
    """
    Creates the Kafka topics this service publishes to.

    Transient broker errors are retried `max_retries` times, `retry_interval`
    seconds apart. Topics that already exist are left as they are.
    """
    admin_client = AIOKafkaAdminClient(bootstrap_servers=settings.KAFKA_BOOTSTRAP_SERVERS)
    retries = 0

    try:
        await admin_client.start()
        while retries < max_retries:
            try:
                await admin_client.create_topics(
                    new_topics=[
                        NewTopic(name=name, num_partitions=num_partitions, replication_factor=replication_factor)
                        for name in topic_names
                    ],
                    validate_only=False,
                )
                logger.info(f"Topics {topic_names} created successfully.")
                break
            except TopicAlreadyExistsError:
                logger.info(f"Topics {topic_names} already exist.")
                break
            except (NotControllerError, LeaderNotAvailableError, KafkaConnectionError) as e:
                retries += 1
                logger.warning(f"Transient error ({e}), retrying {retries}/{max_retries} after {retry_interval} seconds...")
                await asyncio.sleep(retry_interval)
        else:
            raise RuntimeError(f"Failed to create Kafka topics {topic_names} after {max_retries} retries.")
    finally:
        await admin_client.close()
