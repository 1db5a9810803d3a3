from __future__ import annotations

"""
Inbound events of the live ingestion stream, independent of any SDK types.

Design intent:
- Transports translate vendor messages into these records; everything downstream only sees them.
- Tool-call arguments stay untyped here and are validated by the evidence merge boundary.
"""

from dataclasses import dataclass, field
from typing import Any, Union

ACK_REGISTERED = "registered"
ACK_IGNORED = "ignored"


@dataclass(frozen=True)
class TranscriptionEvent:
    text: str
    is_user_channel: bool
    is_final: bool = False


@dataclass(frozen=True)
class ToolCall:
    name: str
    args: Any = None
    id: str | None = None


@dataclass(frozen=True)
class ToolCallEvent:
    calls: tuple[ToolCall, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class ErrorEvent:
    message: str


@dataclass(frozen=True)
class ClosedEvent:
    reason: str = ""


LiveEvent = Union[TranscriptionEvent, ToolCallEvent, ErrorEvent, ClosedEvent]


def tool_call_ack(call: ToolCall, status: str = ACK_REGISTERED) -> dict[str, Any]:
    return {"id": call.id, "name": call.name, "response": {"status": status}}
