"""Task message consumption with acknowledge-on-receive semantics."""

from __future__ import annotations

import threading
import time
from collections import deque
from typing import Deque, Optional

import pika
from pika.adapters.blocking_connection import BlockingChannel
from pika.exceptions import AMQPError

from .exceptions import ConsumeError, SerializationError
from .flow import FlowController
from .logging import get_logger
from .messages import Delivery, TaskMessage, decode_task_message
from .topology import Queue

LOGGER = get_logger(__name__)

NOT_FOUND = 404


class Consumer:
    """Pulls task messages off a queue one at a time.

    Every delivery is acknowledged as soon as it is taken off the stream,
    *before* it is decoded and handed to the caller. A caller that crashes
    while processing a message therefore loses it: delivery is at-most-once.

    Example:
        consumer = Consumer(connection, channel, Queue.named("celery"))
        consumer.start()
        message = consumer.receive(timeout=5.0)
    """

    def __init__(
        self,
        connection: pika.BlockingConnection,
        channel: BlockingChannel,
        queue: Queue,
        flow: Optional[FlowController] = None,
        poll_interval: float = 0.1,
    ) -> None:
        self._connection = connection
        self._channel = channel
        self._queue = queue
        self._flow = flow
        self._poll_interval = poll_interval

        self._consumer_tag: Optional[str] = None
        self._buffer: Deque[Delivery] = deque()

    @property
    def is_consuming(self) -> bool:
        return self._consumer_tag is not None

    def start(self) -> None:
        """Open the consuming stream in manual acknowledgment mode.

        Raises:
            ConsumeError: If the queue does not exist or the channel refuses
                the consumer.
        """
        if self._consumer_tag is not None:
            return

        try:
            self._consumer_tag = self._channel.basic_consume(
                queue=self._queue.name,
                on_message_callback=self._on_message,
                auto_ack=False,
            )
        except AMQPError as exc:
            reply_code = getattr(exc, "reply_code", None)
            if reply_code == NOT_FOUND:
                message = f"Queue {self._queue.name!r} does not exist"
            else:
                message = f"Unable to consume from {self._queue.name!r}: {exc!r}"
            LOGGER.error("Failed to start consumer", queue=self._queue.name, reply_code=reply_code)
            raise ConsumeError(message, reply_code=reply_code) from exc

        if self._flow is not None:
            self._flow.lock()

        LOGGER.info(
            "Started consumer",
            queue=self._queue.name,
            consumer_tag=self._consumer_tag,
            prefetch_count=self._flow.prefetch_count if self._flow else None,
        )

    def stop(self) -> None:
        """Cancel the consumer and return buffered deliveries to the queue.

        Deliveries that were pulled off the stream but not yet handed out by
        :meth:`receive` are rejected with ``requeue=True``. When the channel
        is already closed the broker requeues them on its own.
        """
        consumer_tag, self._consumer_tag = self._consumer_tag, None
        pending, self._buffer = self._buffer, deque()
        if consumer_tag is None or not self._channel.is_open:
            return
        try:
            self._channel.basic_cancel(consumer_tag)
        except AMQPError as exc:
            raise ConsumeError(f"Unable to cancel consumer {consumer_tag}: {exc!r}") from exc
        for delivery in pending:
            try:
                self._channel.basic_reject(delivery_tag=delivery.delivery_tag, requeue=True)
            except AMQPError as exc:
                raise ConsumeError(f"Unable to requeue delivery {delivery.delivery_tag}: {exc!r}") from exc
        LOGGER.info(
            "Stopped consumer",
            queue=self._queue.name,
            consumer_tag=consumer_tag,
            requeued=len(pending),
        )

    def _on_message(self, channel, method, properties, body) -> None:
        self._buffer.append(
            Delivery(
                body=body,
                delivery_tag=method.delivery_tag,
                redelivered=bool(method.redelivered),
                routing_key=method.routing_key,
                content_type=getattr(properties, "content_type", None),
            )
        )

    def _ensure_stream_open(self) -> None:
        if not self._channel.is_open:
            raise ConsumeError(f"Channel closed while consuming from {self._queue.name!r}")
        if self._consumer_tag not in self._channel.consumer_tags:
            raise ConsumeError(f"Consumer on {self._queue.name!r} was cancelled by the broker")

    def _next_delivery(
        self,
        timeout: Optional[float],
        cancel: Optional[threading.Event],
    ) -> Optional[Delivery]:
        if self._consumer_tag is None:
            raise ConsumeError("Consumer has not been started")

        deadline = None if timeout is None else time.monotonic() + timeout
        polled = False
        while not self._buffer:
            self._ensure_stream_open()
            if cancel is not None and cancel.is_set():
                return None

            if deadline is None:
                time_limit = self._poll_interval if cancel is not None else None
            else:
                # an expired deadline still gets one non-blocking poll
                remaining = max(deadline - time.monotonic(), 0.0)
                if remaining == 0 and polled:
                    return None
                time_limit = min(remaining, self._poll_interval) if cancel is not None else remaining

            try:
                self._connection.process_data_events(time_limit=time_limit)
            except AMQPError as exc:
                raise ConsumeError(f"Stream on {self._queue.name!r} closed: {exc!r}") from exc
            polled = True

        return self._buffer.popleft()

    def _ack(self, delivery: Delivery) -> None:
        try:
            self._channel.basic_ack(delivery_tag=delivery.delivery_tag)
        except AMQPError as exc:
            raise ConsumeError(f"Unable to acknowledge delivery {delivery.delivery_tag}: {exc!r}") from exc

    def receive(
        self,
        timeout: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
    ) -> Optional[TaskMessage]:
        """Wait for the next delivery, acknowledge it, then decode it.

        Args:
            timeout: Maximum seconds to wait. None waits indefinitely.
            cancel: Event that aborts the wait when set.

        Returns:
            The decoded task message, or None if the timeout expired or
            ``cancel`` was set before a delivery arrived.

        Raises:
            ConsumeError: If the stream is not started or has closed.
            SerializationError: If the body is not a valid task message. The
                delivery has already been acknowledged and the stream stays
                usable.
        """
        delivery = self._next_delivery(timeout, cancel)
        if delivery is None:
            return None

        self._ack(delivery)
        LOGGER.debug(
            "Acknowledged delivery",
            queue=self._queue.name,
            delivery_tag=delivery.delivery_tag,
            redelivered=delivery.redelivered,
        )

        try:
            return decode_task_message(delivery.body)
        except SerializationError:
            LOGGER.warning(
                "Discarded undecodable delivery",
                queue=self._queue.name,
                delivery_tag=delivery.delivery_tag,
                size_bytes=len(delivery.body),
            )
            raise


__all__ = ["Consumer"]
