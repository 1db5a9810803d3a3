import asyncio

from scribe.live.controller import SessionLifecycleController
from scribe.live.events import ClosedEvent, ErrorEvent, ToolCall, ToolCallEvent, TranscriptionEvent
from scribe.live.transport import LiveSessionConfig, LiveTransportError

CONFIG = LiveSessionConfig(model="live-test", system_instruction="listen")


class FakeConnection:
    def __init__(self) -> None:
        self.queue: asyncio.Queue = asyncio.Queue()
        self.audio: list[bytes] = []
        self.acks: list[list[dict]] = []
        self.closed = 0
        self.fail_audio = False

    async def send_audio(self, pcm: bytes) -> None:
        if self.fail_audio:
            raise ConnectionResetError("socket gone")
        self.audio.append(pcm)

    async def send_tool_responses(self, responses) -> None:
        self.acks.append(list(responses))

    async def events(self):
        while True:
            event = await self.queue.get()
            if event is None:
                return
            yield event

    async def close(self) -> None:
        self.closed += 1


class FakeTransport:
    def __init__(self, error: Exception | None = None, gate: asyncio.Event | None = None) -> None:
        self.error = error
        self.gate = gate
        self.connections: list[FakeConnection] = []

    async def connect(self, config):
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        connection = FakeConnection()
        self.connections.append(connection)
        return connection


class FakeMedia:
    def __init__(self) -> None:
        self.closed = 0

    def close(self) -> None:
        self.closed += 1


def _controller(transport, *, transcripts=None, states=None, acks=None):
    transcripts = transcripts if transcripts is not None else []
    states = states if states is not None else []

    async def on_tool_calls(calls):
        return [{"id": call.id, "name": call.name, "response": {"status": "registered"}} for call in calls]

    return SessionLifecycleController(
        session_id="s-1",
        transport=transport,
        on_transcription=transcripts.append,
        on_tool_calls=acks or on_tool_calls,
        on_state_change=lambda state, error: states.append((state, error)),
    )


async def _settle() -> None:
    for _ in range(10):
        await asyncio.sleep(0)


def test_start_then_second_start_is_a_no_op() -> None:
    async def scenario():
        transport = FakeTransport()
        states: list = []
        controller = _controller(transport, states=states)

        assert await controller.start(CONFIG) is True
        generation = controller.generation
        assert await controller.start(CONFIG) is False

        assert controller.state == "active"
        assert controller.generation == generation
        assert len(transport.connections) == 1
        assert [state for state, _ in states] == ["connecting", "active"]
        await controller.stop()

    asyncio.run(scenario())


def test_stop_is_idempotent_and_releases_resources() -> None:
    async def scenario():
        transport = FakeTransport()
        media = FakeMedia()
        controller = _controller(transport)

        await controller.start(CONFIG, media=media)
        await controller.stop()
        await controller.stop()

        assert controller.state == "idle"
        assert transport.connections[0].closed == 1
        assert media.closed == 1
        assert controller.media_status["microphone"] is False
        assert controller.last_error is None

    asyncio.run(scenario())


def test_pumped_events_reach_handlers_and_acks_are_sent() -> None:
    async def scenario():
        transport = FakeTransport()
        transcripts: list = []
        controller = _controller(transport, transcripts=transcripts)
        await controller.start(CONFIG)
        connection = transport.connections[0]

        await connection.queue.put(TranscriptionEvent(text="I feel dizzy", is_user_channel=True))
        await connection.queue.put(ToolCallEvent(calls=(ToolCall(name="updateClinicalIntelligence", id="c1"),)))
        await _settle()

        assert [event.text for event in transcripts] == ["I feel dizzy"]
        assert connection.acks == [
            [{"id": "c1", "name": "updateClinicalIntelligence", "response": {"status": "registered"}}]
        ]
        await controller.stop()

    asyncio.run(scenario())


def test_connect_failure_surfaces_error_then_settles_idle() -> None:
    async def scenario():
        states: list = []
        error = LiveTransportError("missing_api_key", "API key is not configured.")
        controller = _controller(FakeTransport(error=error), states=states)

        assert await controller.start(CONFIG) is False

        assert controller.state == "idle"
        assert controller.last_error == "API key is not configured."
        assert [state for state, _ in states] == ["connecting", "error", "idle"]
        assert states[1][1] == "API key is not configured."

    asyncio.run(scenario())


def test_stream_error_event_forces_close_and_keeps_message() -> None:
    async def scenario():
        transport = FakeTransport()
        controller = _controller(transport)
        await controller.start(CONFIG)
        connection = transport.connections[0]

        await connection.queue.put(ErrorEvent(message="quota exceeded"))
        await _settle()

        assert controller.state == "idle"
        assert controller.last_error == "Live session failed: quota exceeded"
        assert connection.closed == 1

    asyncio.run(scenario())


def test_events_from_previous_generation_are_dropped() -> None:
    async def scenario():
        transport = FakeTransport()
        transcripts: list = []
        controller = _controller(transport, transcripts=transcripts)
        await controller.start(CONFIG)
        old_generation = controller.generation
        await controller.stop()
        await controller.start(CONFIG)

        handled = await controller.handle_event(TranscriptionEvent(text="late", is_user_channel=True), old_generation)

        assert handled is False
        assert transcripts == []
        assert await controller.handle_event(TranscriptionEvent(text="fresh", is_user_channel=True)) is True
        assert [event.text for event in transcripts] == ["fresh"]
        await controller.stop()

    asyncio.run(scenario())


def test_acks_are_skipped_when_stream_restarted_during_handler() -> None:
    async def scenario():
        transport = FakeTransport()
        holder: dict = {}

        async def slow_ack(calls):
            await holder["controller"].stop()
            return [{"id": "c1", "name": "updateClinicalIntelligence", "response": {"status": "registered"}}]

        controller = _controller(transport, acks=slow_ack)
        holder["controller"] = controller
        await controller.start(CONFIG)

        handled = await controller.handle_event(ToolCallEvent(calls=(ToolCall(name="updateClinicalIntelligence"),)))

        assert handled is False
        assert transport.connections[0].acks == []

    asyncio.run(scenario())


def test_stop_while_connecting_discards_late_connection() -> None:
    async def scenario():
        gate = asyncio.Event()
        transport = FakeTransport(gate=gate)
        controller = _controller(transport)

        start_task = asyncio.create_task(controller.start(CONFIG))
        await _settle()
        assert controller.state == "connecting"
        await controller.stop()
        gate.set()

        assert await start_task is False
        assert controller.state == "idle"
        assert transport.connections[0].closed == 1

    asyncio.run(scenario())


def test_audio_only_flows_while_active_and_send_failure_fails_stream() -> None:
    async def scenario():
        transport = FakeTransport()
        controller = _controller(transport)

        assert await controller.send_audio(b"\x00\x00") is False
        await controller.start(CONFIG)
        assert await controller.send_audio(b"\x01\x00") is True
        assert transport.connections[0].audio == [b"\x01\x00"]

        transport.connections[0].fail_audio = True
        assert await controller.send_audio(b"\x02\x00") is False
        assert controller.state == "idle"
        assert "socket gone" in controller.last_error

    asyncio.run(scenario())


def test_microphone_denial_ends_stream_but_camera_denial_does_not() -> None:
    async def scenario():
        transport = FakeTransport()
        controller = _controller(transport)
        await controller.start(CONFIG)
        controller.media_status["camera"] = True

        camera = await controller.report_media_error("camera", "blocked by browser")
        assert camera.code == "media_permission_denied"
        assert controller.state == "active"
        assert controller.media_status["camera"] is False

        await controller.report_media_error("microphone", "NotAllowedError")
        assert controller.state == "idle"
        assert controller.last_error == "microphone access denied: NotAllowedError"
        assert transport.connections[0].closed == 1

    asyncio.run(scenario())


def test_closed_event_returns_to_idle_without_error() -> None:
    async def scenario():
        transport = FakeTransport()
        states: list = []
        controller = _controller(transport, states=states)
        await controller.start(CONFIG)

        await transport.connections[0].queue.put(ClosedEvent(reason="stream_ended"))
        await _settle()

        assert controller.state == "idle"
        assert controller.last_error is None
        assert [state for state, _ in states][-2:] == ["closing", "idle"]

    asyncio.run(scenario())


def test_event_stream_ending_without_close_event_returns_to_idle() -> None:
    async def scenario():
        transport = FakeTransport()
        media = FakeMedia()
        transcripts: list = []
        states: list = []
        controller = _controller(transport, transcripts=transcripts, states=states)
        await controller.start(CONFIG, media=media)

        connection = transport.connections[0]
        await connection.queue.put(TranscriptionEvent(text="still here", is_user_channel=True))
        await connection.queue.put(None)
        await _settle()

        assert [event.text for event in transcripts] == ["still here"]
        assert controller.state == "idle"
        assert controller.last_error is None
        assert connection.closed == 1
        assert media.closed == 1
        assert [state for state, _ in states][-2:] == ["closing", "idle"]
        assert await controller.send_audio(b"\x00\x00") is False

    asyncio.run(scenario())
