"""Task message, delivery and publish envelope models plus the JSON codec."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

import pika

from .exceptions import SerializationError
from .ids import generate_uuid

CONTENT_TYPE_JSON = "application/json"
PERSISTENT_DELIVERY_MODE = 2


@dataclass
class TaskMessage:
    """Celery (protocol v1) task message.

    Only ``id`` matters to the broker; the remaining fields belong to the
    worker that executes the task and are carried through untouched.

    ``args`` and ``kwargs`` must stay inside the JSON data model: lists,
    str-keyed dicts, strings, numbers, booleans and None. A tuple passed as
    ``args`` is converted to a list on construction; anything else outside
    that model is refused by :func:`encode_task_message` rather than being
    silently reshaped on the wire.
    """

    task: str
    args: List[Any] = field(default_factory=list)
    kwargs: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=generate_uuid)
    retries: int = 0
    eta: Optional[str] = None
    expires: Optional[datetime] = None

    def __post_init__(self) -> None:
        if isinstance(self.args, tuple):
            self.args = list(self.args)

    def to_dict(self) -> Dict[str, Any]:
        """Convert task message to dictionary."""
        return {
            "id": self.id,
            "task": self.task,
            "args": self.args,
            "kwargs": self.kwargs,
            "retries": self.retries,
            "eta": self.eta,
            "expires": self.expires.isoformat() if self.expires else None,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> TaskMessage:
        """Create task message from dictionary.

        Field types are checked, never coerced: a body whose ``args`` is a
        string or whose ``retries`` is not an integer is malformed.
        """
        if not isinstance(data, Mapping):
            raise SerializationError(
                f"Task message must be a JSON object, got {type(data).__name__}"
            )
        missing = [key for key in ("id", "task") if key not in data]
        if missing:
            raise SerializationError(f"Task message is missing fields: {', '.join(missing)}")

        args = data.get("args")
        kwargs = data.get("kwargs")
        retries = data.get("retries", 0)
        eta = data.get("eta")
        expires = data.get("expires")

        _expect_type("id", data["id"], str)
        _expect_type("task", data["task"], str)
        _expect_type("args", args, list, nullable=True)
        _expect_type("kwargs", kwargs, dict, nullable=True)
        # bool is an int subclass; JSON true is not a retry count
        if isinstance(retries, bool) or not isinstance(retries, int):
            raise SerializationError(
                f"Task message field 'retries' must be int, got {type(retries).__name__}"
            )
        _expect_type("eta", eta, str, nullable=True)
        _expect_type("expires", expires, str, nullable=True)

        try:
            expires_at = datetime.fromisoformat(expires) if expires else None
        except ValueError as exc:
            raise SerializationError(f"Invalid task message expires: {exc}") from exc

        return cls(
            id=data["id"],
            task=data["task"],
            args=args if args is not None else [],
            kwargs=kwargs if kwargs is not None else {},
            retries=retries,
            eta=eta,
            expires=expires_at,
        )


def _expect_type(name: str, value: Any, expected: type, nullable: bool = False) -> None:
    if value is None and nullable:
        return
    if not isinstance(value, expected):
        raise SerializationError(
            f"Task message field {name!r} must be {expected.__name__}, got {type(value).__name__}"
        )


def _check_json_value(value: Any, path: str) -> None:
    """Refuse values that JSON would reshape instead of round-tripping."""
    if value is None or isinstance(value, (str, bool, int, float)):
        return
    if isinstance(value, list):
        for index, item in enumerate(value):
            _check_json_value(item, f"{path}[{index}]")
        return
    if isinstance(value, dict):
        for key, item in value.items():
            if not isinstance(key, str):
                raise SerializationError(
                    f"{path} has a non-string key {key!r}; JSON object keys must be strings"
                )
            _check_json_value(item, f"{path}[{key!r}]")
        return
    raise SerializationError(
        f"{path} holds a {type(value).__name__}, which does not survive a JSON round trip"
    )


def encode_task_message(message: TaskMessage) -> bytes:
    """Serialize a task message to canonical JSON bytes."""
    payload = message.to_dict()
    _expect_type("args", payload["args"], list)
    _expect_type("kwargs", payload["kwargs"], dict)
    _check_json_value(payload["args"], "args")
    _check_json_value(payload["kwargs"], "kwargs")
    try:
        return json.dumps(
            payload,
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=False,
            allow_nan=False,
        ).encode("utf-8")
    except (TypeError, ValueError) as exc:
        raise SerializationError(f"Task message {message.id} is not JSON serializable: {exc}") from exc


def decode_task_message(body: bytes) -> TaskMessage:
    """Deserialize a delivery body back into a task message."""
    try:
        data = json.loads(body)
    except (TypeError, ValueError) as exc:
        # UnicodeDecodeError and JSONDecodeError are both ValueErrors
        raise SerializationError(f"Malformed task message body: {exc}") from exc
    return TaskMessage.from_dict(data)


@dataclass(frozen=True)
class Delivery:
    """A message pulled off the queue, not yet decoded."""

    body: bytes
    delivery_tag: int
    redelivered: bool = False
    routing_key: str = ""
    content_type: Optional[str] = None


@dataclass(frozen=True)
class PublishEnvelope:
    """Everything needed for one ``basic_publish`` call."""

    exchange: str
    routing_key: str
    body: bytes
    mandatory: bool = False
    # Kept for completeness; RabbitMQ rejects immediate publishes.
    immediate: bool = False
    content_type: str = CONTENT_TYPE_JSON
    delivery_mode: int = PERSISTENT_DELIVERY_MODE
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def properties(self) -> pika.BasicProperties:
        """AMQP basic properties for this envelope."""
        return pika.BasicProperties(
            content_type=self.content_type,
            delivery_mode=self.delivery_mode,
            timestamp=int(self.timestamp.timestamp()),
        )


__all__ = [
    "CONTENT_TYPE_JSON",
    "PERSISTENT_DELIVERY_MODE",
    "Delivery",
    "PublishEnvelope",
    "TaskMessage",
    "decode_task_message",
    "encode_task_message",
]
