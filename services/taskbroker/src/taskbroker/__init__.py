"""AMQP broker client for Celery-style task queues.

Publishes task messages to, and consumes them from, a RabbitMQ queue with
explicit exchange/queue topology and prefetch-based flow control.
"""

from .broker import AMQPBroker
from .config import BrokerSettings, get_settings
from .connection import ConnectionManager, connect
from .consumer import Consumer
from .exceptions import (
    BrokerConnectionError,
    BrokerError,
    ConsumeError,
    IdentifierError,
    PublishError,
    SerializationError,
    TopologyError,
)
from .flow import FlowController
from .ids import generate_uuid
from .messages import Delivery, PublishEnvelope, TaskMessage, decode_task_message, encode_task_message
from .producer import Producer
from .topology import Exchange, Queue, TopologyManager

__version__ = "0.1.0"

__all__ = [
    "AMQPBroker",
    "BrokerConnectionError",
    "BrokerError",
    "BrokerSettings",
    "ConnectionManager",
    "ConsumeError",
    "Consumer",
    "Delivery",
    "Exchange",
    "FlowController",
    "IdentifierError",
    "Producer",
    "PublishEnvelope",
    "PublishError",
    "Queue",
    "SerializationError",
    "TaskMessage",
    "TopologyError",
    "TopologyManager",
    "connect",
    "decode_task_message",
    "encode_task_message",
    "generate_uuid",
    "get_settings",
]
