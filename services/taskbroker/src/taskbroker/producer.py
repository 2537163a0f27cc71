"""Task message publishing."""

from __future__ import annotations

from pika.adapters.blocking_connection import BlockingChannel
from pika.exceptions import AMQPError, NackError, UnroutableError

from .exceptions import PublishError
from .logging import get_logger
from .messages import PublishEnvelope, TaskMessage, encode_task_message
from .topology import DEFAULT_EXCHANGE, Exchange, Queue, TopologyManager

LOGGER = get_logger(__name__)


class Producer:
    """Serializes task messages and publishes them onto the broker's queue.

    Messages go through the default exchange with the queue name as routing
    key, so they land on the queue whether or not it is bound anywhere.

    Example:
        producer = Producer(channel, TopologyManager(channel), exchange, queue)
        producer.send_message(TaskMessage(task="add", args=[1, 2]))
    """

    def __init__(
        self,
        channel: BlockingChannel,
        topology: TopologyManager,
        exchange: Exchange,
        queue: Queue,
        publisher_confirms: bool = True,
    ) -> None:
        self._channel = channel
        self._topology = topology
        self._exchange = exchange
        self._queue = queue
        self._publisher_confirms = publisher_confirms
        self._confirming = False

    def _enable_confirms(self) -> None:
        if not self._publisher_confirms or self._confirming:
            return
        try:
            self._channel.confirm_delivery()
        except AMQPError as exc:
            raise PublishError(f"Unable to enable publisher confirms: {exc!r}") from exc
        self._confirming = True

    def send_message(self, message: TaskMessage) -> PublishEnvelope:
        """Publish ``message`` as a persistent JSON message.

        The queue and exchange are declared again first, so a broker that
        lost its topology (e.g. after a restart) still routes the message.

        Returns:
            The envelope that was published.

        Raises:
            PublishError: If the channel is closed or the broker rejects the
                message.
            TopologyError: If redeclaring the queue or exchange conflicts.
            SerializationError: If the message cannot be encoded.
        """
        if not self._channel.is_open:
            raise PublishError(f"Cannot publish task {message.id}: channel is closed")

        self._topology.declare_queue(self._queue)
        self._topology.declare_exchange(self._exchange)
        self._enable_confirms()

        envelope = PublishEnvelope(
            exchange=DEFAULT_EXCHANGE,
            routing_key=self._queue.name,
            body=encode_task_message(message),
        )

        try:
            self._channel.basic_publish(
                exchange=envelope.exchange,
                routing_key=envelope.routing_key,
                body=envelope.body,
                properties=envelope.properties,
                mandatory=envelope.mandatory,
            )
        except (NackError, UnroutableError) as exc:
            LOGGER.error("Broker rejected message", task_id=message.id, queue=self._queue.name)
            raise PublishError(f"Broker rejected task {message.id}: {exc!r}") from exc
        except AMQPError as exc:
            LOGGER.error(
                "Failed to publish message",
                task_id=message.id,
                queue=self._queue.name,
                error=str(exc),
            )
            raise PublishError(
                f"Failed to publish task {message.id}: {exc!r}",
                reply_code=getattr(exc, "reply_code", None),
            ) from exc

        LOGGER.debug(
            "Published message",
            task_id=message.id,
            task=message.task,
            routing_key=envelope.routing_key,
            size_bytes=len(envelope.body),
        )
        return envelope


__all__ = ["Producer"]
