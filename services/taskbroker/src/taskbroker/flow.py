"""Prefetch (QoS) flow control."""

from __future__ import annotations

from typing import Optional

from pika.adapters.blocking_connection import BlockingChannel
from pika.exceptions import AMQPError

from .exceptions import BrokerError, ConsumeError
from .logging import get_logger

LOGGER = get_logger(__name__)


class FlowController:
    """Limits how many unacknowledged deliveries the broker pushes at once.

    The limit must be set before consumption starts. Once :meth:`lock` has
    been called the value is frozen.
    """

    def __init__(self, channel: BlockingChannel) -> None:
        self._channel = channel
        self._prefetch_count: Optional[int] = None
        self._locked = False

    @property
    def prefetch_count(self) -> Optional[int]:
        """The last accepted prefetch count, or None if never set."""
        return self._prefetch_count

    @property
    def locked(self) -> bool:
        return self._locked

    def set_prefetch(self, count: int) -> None:
        """Allow at most ``count`` unacknowledged deliveries (0 = unlimited).

        Raises:
            ValueError: If ``count`` is negative or not an int.
            ConsumeError: If consumption has already started.
            BrokerError: If the broker rejects the QoS request.
        """
        if isinstance(count, bool) or not isinstance(count, int) or count < 0:
            raise ValueError(f"prefetch count must be a non-negative int, got {count!r}")
        if self._locked:
            raise ConsumeError("Prefetch cannot be changed once consumption has started")

        try:
            self._channel.basic_qos(prefetch_count=count)
        except AMQPError as exc:
            reply_code = getattr(exc, "reply_code", None)
            raise BrokerError(f"Failed to set prefetch to {count}: {exc!r}", reply_code=reply_code) from exc

        self._prefetch_count = count
        LOGGER.debug("Set prefetch", prefetch_count=count)

    def lock(self) -> None:
        """Freeze the prefetch count; called when the consumer starts."""
        self._locked = True


__all__ = ["FlowController"]
