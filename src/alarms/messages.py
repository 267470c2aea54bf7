"""Message shapes for the remote alert and list-alarms exchanges.

Encoding and transport belong to the messaging layer; these models only
describe what crosses the boundary.  Alarm payloads travel as
``AlarmSnapshot`` dicts (JSON-safe), so a ``Message`` survives a
``model_dump_json()`` / ``model_validate_json()`` round trip unchanged.
"""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from src.alarms.exceptions import AlarmMessageError
from src.alarms.types import STATE_RANK, AlarmState

if TYPE_CHECKING:
    from collections.abc import Iterable

    from src.alarms.alarm import Alarm

MESSAGE_FIELD_ALARM = "Alarm"
MESSAGE_FIELD_ALARMS_LIST = "Alarms"

COMMAND_LIST_ALARMS = "list-alarms"


class MessageType(StrEnum):
    """Kinds of message the alarm manager produces or consumes."""

    ALERT = "ALERT"
    COMMAND = "COMMAND"
    COMMAND_RESPONSE = "COMMAND_RESPONSE"


class AlarmSnapshot(BaseModel):
    """Alarm fields transmitted to remote peers (no code, no timestamps)."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str | None = None
    source: str | None = None
    state: AlarmState
    message: str = ""


class Message(BaseModel):
    """Envelope exchanged with the external messaging collaborator."""

    type: MessageType
    target: str | None = None
    command: str | None = None
    sub_type: int = 0
    values: dict[str, Any] = Field(default_factory=dict)

    def has_value(self, key: str) -> bool:
        return self.values.get(key) is not None

    def get(self, key: str, default: Any = None) -> Any:
        return self.values.get(key, default)

    def add_value(self, key: str, value: Any) -> None:
        self.values[key] = value


# ── Builders ──────────────────────────────────────────────────


def create_alert_message(alarm: Alarm, target: str | None = None) -> Message:
    """Build an ALERT message carrying a snapshot of *alarm*.

    ``sub_type`` carries the state's severity rank.
    """
    msg = Message(
        type=MessageType.ALERT,
        target=target,
        sub_type=STATE_RANK[alarm.state],
    )
    msg.add_value(MESSAGE_FIELD_ALARM, alarm.to_snapshot().model_dump(mode="json"))
    return msg


def is_alert_message(message: Message) -> bool:
    return message.type == MessageType.ALERT and message.has_value(MESSAGE_FIELD_ALARM)


def create_list_alarms_message(target: str) -> Message:
    """Build the list-alarms command addressed to *target*."""
    return Message(
        type=MessageType.COMMAND,
        target=target,
        command=COMMAND_LIST_ALARMS,
    )


def add_alarms_list(message: Message, alarms: Iterable[Alarm]) -> None:
    """Attach snapshots of *alarms* to a list-alarms response."""
    message.add_value(
        MESSAGE_FIELD_ALARMS_LIST,
        [a.to_snapshot().model_dump(mode="json") for a in alarms],
    )


# ── Readers ───────────────────────────────────────────────────


def read_alert(message: Message) -> AlarmSnapshot:
    """Extract the alarm snapshot from an ALERT message.

    Raises:
        AlarmMessageError: wrong message type, missing or invalid payload.
    """
    if message.type != MessageType.ALERT:
        raise AlarmMessageError(
            f"Message is of type {message.type}, it must be of type {MessageType.ALERT}"
        )
    if not message.has_value(MESSAGE_FIELD_ALARM):
        raise AlarmMessageError(f"Alert message does not contain a {MESSAGE_FIELD_ALARM} field")
    return _parse_snapshot(message.get(MESSAGE_FIELD_ALARM))


def read_alarms_list(message: Message) -> list[AlarmSnapshot]:
    """Extract the ordered alarm snapshots from a list-alarms response.

    Raises:
        AlarmMessageError: missing or invalid payload.
    """
    if not message.has_value(MESSAGE_FIELD_ALARMS_LIST):
        raise AlarmMessageError(f"Message does not contain a {MESSAGE_FIELD_ALARMS_LIST} field")
    raw = message.get(MESSAGE_FIELD_ALARMS_LIST)
    if not isinstance(raw, list):
        raise AlarmMessageError(f"{MESSAGE_FIELD_ALARMS_LIST} field must be a list")
    return [_parse_snapshot(item) for item in raw]


def _parse_snapshot(raw: Any) -> AlarmSnapshot:
    if isinstance(raw, AlarmSnapshot):
        return raw
    try:
        return AlarmSnapshot.model_validate(raw)
    except ValidationError as e:
        raise AlarmMessageError(f"Invalid alarm payload: {e}") from e
