from __future__ import annotations

"""
Streaming connection to the hosted live model.

Design intent:
- `LiveTransport.connect` opens one bidirectional stream; the returned `LiveConnection` is the only handle.
- SDK messages are translated into `scribe.live.events` records so the controller never sees vendor types.
- Connection failures raise `LiveTransportError` with a stable code and a readable message.
"""

import contextlib
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Protocol, Sequence

from google import genai
from google.genai import types

from scribe.live.audio import pcm_mime_type
from scribe.live.events import ClosedEvent, ErrorEvent, LiveEvent, ToolCall, ToolCallEvent, TranscriptionEvent

logger = logging.getLogger(__name__)


class LiveTransportError(RuntimeError):
    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


class MediaPermissionError(LiveTransportError):
    """Microphone or camera access was denied by the capturing client."""


@dataclass(frozen=True)
class LiveSessionConfig:
    model: str
    system_instruction: str
    tools: Sequence[dict[str, Any]] = field(default_factory=tuple)
    voice: str = "Charon"
    sample_rate_hz: int = 16000


class LiveConnection(Protocol):
    async def send_audio(self, pcm: bytes) -> None: ...

    async def send_tool_responses(self, responses: Sequence[dict[str, Any]]) -> None: ...

    def events(self) -> AsyncIterator[LiveEvent]: ...

    async def close(self) -> None: ...


class LiveTransport(Protocol):
    async def connect(self, config: LiveSessionConfig) -> LiveConnection: ...


def build_live_connect_config(config: LiveSessionConfig) -> types.LiveConnectConfig:
    tools = []
    if config.tools:
        tools.append(
            types.Tool(
                function_declarations=[types.FunctionDeclaration.model_validate(tool) for tool in config.tools]
            )
        )
    return types.LiveConnectConfig(
        # Native-audio live models only start reliably with AUDIO responses; the audio itself is discarded.
        response_modalities=[types.Modality.AUDIO],
        system_instruction=config.system_instruction,
        input_audio_transcription=types.AudioTranscriptionConfig(),
        output_audio_transcription=types.AudioTranscriptionConfig(),
        tools=tools,
        speech_config=types.SpeechConfig(
            voice_config=types.VoiceConfig(
                prebuilt_voice_config=types.PrebuiltVoiceConfig(voice_name=config.voice),
            )
        ),
    )


def map_server_message(message: Any) -> list[LiveEvent]:
    """Translate one SDK server message into zero or more live events."""
    events: list[LiveEvent] = []
    content = getattr(message, "server_content", None)
    if content is not None:
        is_final = bool(getattr(content, "turn_complete", False))
        input_tx = getattr(content, "input_transcription", None)
        if input_tx is not None and getattr(input_tx, "text", None):
            events.append(TranscriptionEvent(text=str(input_tx.text), is_user_channel=True, is_final=is_final))
        output_tx = getattr(content, "output_transcription", None)
        if output_tx is not None and getattr(output_tx, "text", None):
            events.append(TranscriptionEvent(text=str(output_tx.text), is_user_channel=False, is_final=is_final))

    tool_call = getattr(message, "tool_call", None)
    function_calls = getattr(tool_call, "function_calls", None) if tool_call is not None else None
    if function_calls:
        calls = tuple(
            ToolCall(
                name=str(getattr(fc, "name", "") or ""),
                args=getattr(fc, "args", None),
                id=getattr(fc, "id", None),
            )
            for fc in function_calls
        )
        events.append(ToolCallEvent(calls=calls))
    return events


class GeminiLiveConnection:
    def __init__(self, session: Any, exit_stack: contextlib.AsyncExitStack, *, sample_rate_hz: int):
        self._session = session
        self._exit_stack = exit_stack
        self._mime_type = pcm_mime_type(sample_rate_hz)
        self._closed = False

    async def send_audio(self, pcm: bytes) -> None:
        await self._session.send_realtime_input(audio=types.Blob(data=pcm, mime_type=self._mime_type))

    async def send_tool_responses(self, responses: Sequence[dict[str, Any]]) -> None:
        if not responses:
            return
        await self._session.send_tool_response(
            function_responses=[
                types.FunctionResponse(id=item.get("id"), name=item.get("name"), response=item.get("response"))
                for item in responses
            ]
        )

    async def events(self) -> AsyncIterator[LiveEvent]:
        # receive() stops after each completed model turn; an empty pass means the socket is gone.
        while not self._closed:
            received = 0
            try:
                async for message in self._session.receive():
                    received += 1
                    for event in map_server_message(message):
                        yield event
            except Exception as exc:
                if self._closed:
                    return
                yield ErrorEvent(message=f"{type(exc).__name__}: {exc}")
                return
            if received == 0:
                yield ClosedEvent(reason="stream_ended")
                return

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._exit_stack.aclose()


class GeminiLiveTransport:
    def __init__(self, api_key: str = "", *, client: Any = None):
        self._api_key = api_key
        self._client = client

    def _get_client(self) -> Any:
        if self._client is not None:
            return self._client
        if not self._api_key:
            raise LiveTransportError("missing_api_key", "API key is not configured.")
        self._client = genai.Client(api_key=self._api_key)
        return self._client

    async def connect(self, config: LiveSessionConfig) -> GeminiLiveConnection:
        client = self._get_client()
        exit_stack = contextlib.AsyncExitStack()
        try:
            session = await exit_stack.enter_async_context(
                client.aio.live.connect(model=config.model, config=build_live_connect_config(config))
            )
        except Exception as exc:
            await exit_stack.aclose()
            logger.warning("live_connect_failed model=%s err=%s", config.model, type(exc).__name__)
            raise LiveTransportError("connect_failed", f"Live session failed: {exc}") from exc
        logger.info("live_connected model=%s", config.model)
        return GeminiLiveConnection(session, exit_stack, sample_rate_hz=config.sample_rate_hz)
