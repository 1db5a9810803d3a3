from __future__ import annotations

"""
Own the lifecycle of one live ingestion stream and route its events.

Design intent:
- States: idle -> connecting -> active -> closing -> idle, with error reachable from connecting/active.
- Every start/stop/failure bumps a generation counter; events and acks from an older generation are dropped.
- Failures force-close the connection and media handle, keep `last_error` for display, and settle in idle.
- No automatic retry; restarting is always a caller decision.
"""

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Optional, Protocol, Sequence, Union

from scribe.internal_core.contracts import LifecycleState
from scribe.live.events import ClosedEvent, ErrorEvent, LiveEvent, ToolCall, ToolCallEvent, TranscriptionEvent
from scribe.live.transport import (
    LiveConnection,
    LiveSessionConfig,
    LiveTransport,
    LiveTransportError,
    MediaPermissionError,
)

logger = logging.getLogger(__name__)

MaybeAwaitable = Union[Any, Awaitable[Any]]
TranscriptionHandler = Callable[[TranscriptionEvent], MaybeAwaitable]
ToolCallHandler = Callable[[Sequence[ToolCall]], MaybeAwaitable]
StateListener = Callable[[LifecycleState, Optional[str]], MaybeAwaitable]


class MediaHandle(Protocol):
    def close(self) -> MaybeAwaitable: ...


async def _resolve(value: MaybeAwaitable) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class SessionLifecycleController:
    def __init__(
        self,
        *,
        session_id: str,
        transport: LiveTransport,
        on_transcription: TranscriptionHandler,
        on_tool_calls: ToolCallHandler,
        on_state_change: StateListener | None = None,
    ):
        self.session_id = session_id
        self._transport = transport
        self._on_transcription = on_transcription
        self._on_tool_calls = on_tool_calls
        self._on_state_change = on_state_change

        self.state: LifecycleState = "idle"
        self.last_error: str | None = None
        self.media_status: dict[str, bool] = {"microphone": False, "camera": False}

        self._generation = 0
        self._connection: LiveConnection | None = None
        self._media: MediaHandle | None = None
        self._pump_task: asyncio.Task | None = None

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def is_active(self) -> bool:
        return self.state == "active"

    async def _set_state(self, state: LifecycleState, error: str | None = None) -> None:
        self.state = state
        logger.info("live_state session_id=%s state=%s generation=%d", self.session_id, state, self._generation)
        if self._on_state_change is not None:
            await _resolve(self._on_state_change(state, error))

    async def start(self, config: LiveSessionConfig, *, media: MediaHandle | None = None) -> bool:
        """
        Open the stream. Returns False without side effects when already connecting or active.

        Connection failures are converted to the error -> idle path, never raised.
        """
        if self.state in ("connecting", "active"):
            logger.info("live_start_ignored session_id=%s state=%s", self.session_id, self.state)
            return False

        self._generation += 1
        generation = self._generation
        self.last_error = None
        self._media = media
        self.media_status["microphone"] = media is not None
        await self._set_state("connecting")

        try:
            connection = await self._transport.connect(config)
        except LiveTransportError as exc:
            await self._fail(generation, exc.message, code=exc.code)
            return False
        except Exception as exc:
            await self._fail(generation, f"Failed to start live consultation session: {exc}", code="connect_failed")
            return False

        if generation != self._generation:
            # Stopped while connecting.
            await self._close_connection(connection)
            return False

        self._connection = connection
        self.media_status["microphone"] = True
        await self._set_state("active")
        self._pump_task = asyncio.create_task(self._pump(generation, connection))
        return True

    async def stop(self) -> None:
        """Close the stream. Safe to call in any state, any number of times."""
        if self.state == "idle" and self._connection is None and self._pump_task is None:
            return
        self._generation += 1
        await self._set_state("closing")
        await self._release()
        await self._set_state("idle")

    async def send_audio(self, pcm: bytes) -> bool:
        connection = self._connection
        if self.state != "active" or connection is None:
            return False
        generation = self._generation
        try:
            await connection.send_audio(pcm)
        except Exception as exc:
            await self._fail(generation, f"Live session failed: {exc}", code="send_failed")
            return False
        return True

    async def report_media_error(self, kind: str, detail: str = "") -> MediaPermissionError:
        """
        Record a capture-device denial reported by the client.

        A denied microphone ends a connecting or active stream. A denied camera only clears its flag.
        """
        error = MediaPermissionError("media_permission_denied", f"{kind} access denied: {detail}".strip())
        self.media_status[kind] = False
        logger.warning("live_media_error session_id=%s kind=%s", self.session_id, kind)
        if kind == "microphone" and self.state in ("connecting", "active"):
            await self._fail(self._generation, error.message, code=error.code)
        else:
            self.last_error = error.message
        return error

    async def handle_event(self, event: LiveEvent, generation: int | None = None) -> bool:
        """Apply one inbound event. Returns False when the event is stale or the stream is not active."""
        expected = self._generation if generation is None else generation
        if expected != self._generation or self.state != "active":
            logger.debug(
                "live_event_dropped session_id=%s event=%s generation=%d current=%d",
                self.session_id,
                type(event).__name__,
                expected,
                self._generation,
            )
            return False

        if isinstance(event, TranscriptionEvent):
            await _resolve(self._on_transcription(event))
            return True

        if isinstance(event, ToolCallEvent):
            acks = await _resolve(self._on_tool_calls(event.calls))
            connection = self._connection
            if expected != self._generation or connection is None:
                return False
            try:
                await connection.send_tool_responses(list(acks or []))
            except Exception as exc:
                await self._fail(expected, f"Live session failed: {exc}", code="ack_failed")
                return False
            return True

        if isinstance(event, ErrorEvent):
            await self._fail(expected, f"Live session failed: {event.message}", code="stream_error")
            return True

        if isinstance(event, ClosedEvent):
            await self._close_stream(expected)
            return True

        return False

    async def _pump(self, generation: int, connection: LiveConnection) -> None:
        try:
            async for event in connection.events():
                if generation != self._generation:
                    break
                await self.handle_event(event, generation=generation)
                if generation != self._generation:
                    break
            else:
                logger.info("live_stream_ended session_id=%s", self.session_id)
                await self._close_stream(generation)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            await self._fail(generation, f"Live session failed: {exc}", code="stream_error")

    async def _close_stream(self, generation: int) -> None:
        if generation != self._generation:
            return
        self._generation += 1
        await self._set_state("closing")
        await self._release()
        await self._set_state("idle")

    async def _fail(self, generation: int, message: str, *, code: str) -> None:
        if generation != self._generation:
            return
        self._generation += 1
        self.last_error = message
        logger.warning("live_error session_id=%s code=%s", self.session_id, code)
        await self._set_state("error", message)
        await self._release()
        await self._set_state("idle", message)

    async def _release(self) -> None:
        task, self._pump_task = self._pump_task, None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        connection, self._connection = self._connection, None
        if connection is not None:
            await self._close_connection(connection)

        media, self._media = self._media, None
        if media is not None:
            try:
                await _resolve(media.close())
            except Exception as exc:
                logger.warning("media_close_failed session_id=%s err=%s", self.session_id, type(exc).__name__)
        self.media_status["microphone"] = False

    async def _close_connection(self, connection: LiveConnection) -> None:
        try:
            await connection.close()
        except Exception as exc:
            logger.warning("live_close_failed session_id=%s err=%s", self.session_id, type(exc).__name__)
