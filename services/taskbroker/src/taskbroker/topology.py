"""Exchange and queue declaration."""

from __future__ import annotations

from dataclasses import dataclass

from pika.adapters.blocking_connection import BlockingChannel
from pika.exceptions import AMQPError

from .exceptions import TopologyError
from .logging import get_logger

LOGGER = get_logger(__name__)

PRECONDITION_FAILED = 406
DEFAULT_EXCHANGE = ""


@dataclass(frozen=True)
class Exchange:
    """Exchange configuration. Fixed for the lifetime of a broker."""

    name: str
    kind: str = "direct"
    durable: bool = True
    auto_delete: bool = True

    @classmethod
    def named(cls, name: str) -> Exchange:
        """Direct, durable, auto-deleted exchange called ``name``."""
        return cls(name=name)


@dataclass(frozen=True)
class Queue:
    """Queue configuration. Fixed for the lifetime of a broker."""

    name: str
    durable: bool = True
    auto_delete: bool = False

    @classmethod
    def named(cls, name: str) -> Queue:
        """Durable, non auto-deleted queue called ``name``."""
        return cls(name=name)


def _declare_error(kind: str, name: str, exc: AMQPError) -> TopologyError:
    reply_code = getattr(exc, "reply_code", None)
    if reply_code == PRECONDITION_FAILED:
        message = f"{kind} {name!r} already exists with different flags: {exc}"
    else:
        message = f"Failed to declare {kind} {name!r}: {exc!r}"
    LOGGER.error("Topology declaration failed", kind=kind, name=name, reply_code=reply_code)
    return TopologyError(message, reply_code=reply_code)


class TopologyManager:
    """Declares exchanges and queues on a channel.

    Declarations are idempotent: repeating one with identical flags is a
    no-op on the broker. Repeating it with different flags closes the channel
    with 406 PRECONDITION_FAILED, surfaced here as TopologyError.
    """

    def __init__(self, channel: BlockingChannel) -> None:
        self._channel = channel

    def declare_exchange(self, exchange: Exchange) -> None:
        if exchange.name == DEFAULT_EXCHANGE:
            # The nameless default exchange always exists and cannot be declared.
            return
        try:
            self._channel.exchange_declare(
                exchange=exchange.name,
                exchange_type=exchange.kind,
                durable=exchange.durable,
                auto_delete=exchange.auto_delete,
            )
        except AMQPError as exc:
            raise _declare_error("exchange", exchange.name, exc) from exc

        LOGGER.debug(
            "Declared exchange",
            exchange=exchange.name,
            type=exchange.kind,
            durable=exchange.durable,
            auto_delete=exchange.auto_delete,
        )

    def declare_queue(self, queue: Queue) -> None:
        try:
            self._channel.queue_declare(
                queue=queue.name,
                durable=queue.durable,
                auto_delete=queue.auto_delete,
            )
        except AMQPError as exc:
            raise _declare_error("queue", queue.name, exc) from exc

        LOGGER.debug(
            "Declared queue",
            queue=queue.name,
            durable=queue.durable,
            auto_delete=queue.auto_delete,
        )

    def declare(self, exchange: Exchange, queue: Queue) -> None:
        """Declare the exchange, then the queue."""
        self.declare_exchange(exchange)
        self.declare_queue(queue)

    def bind(self, exchange: Exchange, queue: Queue, routing_key: str = "") -> None:
        """Bind ``queue`` to ``exchange`` under ``routing_key``."""
        if exchange.name == DEFAULT_EXCHANGE:
            raise TopologyError("Queues cannot be bound to the default exchange")
        try:
            self._channel.queue_bind(
                queue=queue.name,
                exchange=exchange.name,
                routing_key=routing_key,
            )
        except AMQPError as exc:
            raise _declare_error("binding", f"{exchange.name}->{queue.name}", exc) from exc

        LOGGER.debug(
            "Bound queue to exchange",
            queue=queue.name,
            exchange=exchange.name,
            routing_key=routing_key,
        )


__all__ = ["DEFAULT_EXCHANGE", "Exchange", "Queue", "TopologyManager"]
