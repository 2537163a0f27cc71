"""Exception hierarchy for broker operations.

No operation in this package retries. Every failure surfaces synchronously as
one of these, with the underlying pika exception chained as ``__cause__``.
"""

from __future__ import annotations

from typing import Optional

__all__ = (
    "BrokerConnectionError",
    "BrokerError",
    "ConsumeError",
    "IdentifierError",
    "PublishError",
    "SerializationError",
    "TopologyError",
)


class BrokerError(Exception):
    """Base exception for all broker operations."""

    def __init__(self, message: str, reply_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.reply_code = reply_code


class BrokerConnectionError(BrokerError):
    """Transport could not be established or the channel could not be opened.

    Fatal for the broker instance: the caller must build a new one.
    """


class TopologyError(BrokerError):
    """Exchange or queue declaration was rejected by the broker."""


class SerializationError(BrokerError):
    """A task message could not be encoded, or a delivery body decoded."""


class PublishError(BrokerError):
    """The broker rejected a publish, or the channel was unusable."""


class ConsumeError(BrokerError):
    """The consuming stream could not be opened or ended unexpectedly."""


class IdentifierError(BrokerError):
    """No identifier could be generated (entropy source unavailable)."""
