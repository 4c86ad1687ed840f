import asyncio
import queue
import unittest
from pathlib import Path
import sys
from typing import AsyncIterator, Optional

import numpy as np

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from voicementor.audio.codec import INPUT_MIME_TYPE
from voicementor.audio.mic_capture import MicFrame
from voicementor.audio.output import AudioOutput
from voicementor.live.connection import LiveConnection, LiveConnector, LiveMessage
from voicementor.live.session import LiveSessionController, SessionState

SR = 24000


def _pcm(seconds: float) -> bytes:
    return b"\x00\x00" * int(round(seconds * SR))


class FakeCapture:
    def __init__(self, sample_rate: int = 16000) -> None:
        self.sample_rate = sample_rate
        self.queue: "queue.Queue[MicFrame]" = queue.Queue()
        self.started = 0
        self.stopped = 0
        self.dropped_frames = 0

    def start(self, preferred_sample_rate: int, block_samples: int = 4096) -> int:
        self.started += 1
        return self.sample_rate

    def next_frame(self, timeout: float = 0.2) -> Optional[MicFrame]:
        try:
            return self.queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> None:
        while not self.queue.empty():
            self.queue.get_nowait()

    def stop(self) -> None:
        self.stopped += 1


class FakeConnection(LiveConnection):
    def __init__(self) -> None:
        self.sent: list[tuple[bytes, str]] = []
        self.inbound: "asyncio.Queue[Optional[LiveMessage]]" = asyncio.Queue()
        self.send_failures = 0
        self.close_error: Optional[Exception] = None
        self.closed = 0

    async def send_audio(self, pcm: bytes, mime_type: str) -> None:
        if self.send_failures:
            self.send_failures -= 1
            raise ConnectionError("socket closed")
        self.sent.append((pcm, mime_type))

    async def messages(self) -> AsyncIterator[LiveMessage]:
        while True:
            message = await self.inbound.get()
            if message is None:
                return
            yield message

    async def close(self) -> None:
        self.closed += 1
        if self.close_error is not None:
            raise self.close_error


class FakeConnector(LiveConnector):
    def __init__(self, connection: Optional[FakeConnection] = None, error: Optional[Exception] = None) -> None:
        self.connection = connection or FakeConnection()
        self.error = error
        self.gate: Optional[asyncio.Event] = None

    async def connect(self) -> LiveConnection:
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.connection


async def _eventually(predicate, timeout: float = 2.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


class TestPlaybackScheduling(unittest.TestCase):
    def setUp(self) -> None:
        self.output = AudioOutput(sample_rate=SR)
        self.controller = LiveSessionController(FakeConnector(), self.output, capture_factory=FakeCapture)

    def test_chunks_are_laid_end_to_end(self) -> None:
        first = self.controller.handle_message(LiveMessage(audio=_pcm(0.5)))
        second = self.controller.handle_message(LiveMessage(audio=_pcm(0.3)))

        self.assertAlmostEqual(first.start_time, 0.0)
        self.assertAlmostEqual(second.start_time, 0.5)
        self.assertAlmostEqual(self.controller.next_start_time, 0.8)
        self.assertEqual(len(self.controller.scheduled_sources), 2)

    def test_start_times_are_cumulative_durations(self) -> None:
        durations = [0.25, 0.5, 0.1, 0.4]
        slots = [self.controller.handle_message(LiveMessage(audio=_pcm(d))) for d in durations]
        expected = np.cumsum([0.0] + durations[:-1])
        for slot, start in zip(slots, expected):
            self.assertAlmostEqual(slot.start_time, float(start))

    def test_late_chunk_starts_at_current_time(self) -> None:
        self.controller.handle_message(LiveMessage(audio=_pcm(0.1)))
        self.output.render(int(0.5 * SR))
        slot = self.controller.handle_message(LiveMessage(audio=_pcm(0.2)))
        self.assertAlmostEqual(slot.start_time, 0.5)
        self.assertAlmostEqual(self.controller.next_start_time, 0.7)

    def test_finished_chunks_leave_the_active_set(self) -> None:
        self.controller.handle_message(LiveMessage(audio=_pcm(0.1)))
        self.controller.handle_message(LiveMessage(audio=_pcm(0.1)))
        self.output.render(int(0.1 * SR))
        self.assertEqual(len(self.controller.scheduled_sources), 1)
        self.output.render(int(0.1 * SR))
        self.assertEqual(self.controller.scheduled_sources, [])

    def test_interruption_drops_queued_audio(self) -> None:
        self.controller.handle_message(LiveMessage(audio=_pcm(0.5)))
        self.controller.handle_message(LiveMessage(audio=_pcm(0.5)))
        sources = self.controller.scheduled_sources

        self.assertIsNone(self.controller.handle_message(LiveMessage(interrupted=True)))
        self.assertEqual(self.controller.scheduled_sources, [])
        self.assertEqual(self.controller.next_start_time, 0.0)
        self.assertTrue(all(s.stopped for s in sources))
        self.assertEqual(self.output.active_sources, [])

        slot = self.controller.handle_message(LiveMessage(audio=_pcm(0.2)))
        self.assertAlmostEqual(slot.start_time, 0.0)

    def test_base64_audio_is_accepted(self) -> None:
        slot = self.controller.handle_message(LiveMessage(audio="AAAAAA=="))
        self.assertAlmostEqual(slot.duration, 2 / SR)

    def test_undecodable_chunk_is_skipped(self) -> None:
        self.assertIsNone(self.controller.handle_message(LiveMessage(audio=b"\x00")))
        self.assertEqual(self.controller.next_start_time, 0.0)
        slot = self.controller.handle_message(LiveMessage(audio=_pcm(0.1)))
        self.assertAlmostEqual(slot.start_time, 0.0)

    def test_turn_complete_without_audio_is_ignored(self) -> None:
        self.assertIsNone(self.controller.handle_message(LiveMessage(turn_complete=True)))
        self.assertEqual(self.controller.scheduled_sources, [])


class RenderingOutput(AudioOutput):
    """Output whose device thread renders one block just before every schedule call."""

    def schedule(self, samples, when=0.0):
        self.render(int(0.02 * self.sample_rate))
        return super().schedule(samples, when)


class TestPlaybackRaces(unittest.TestCase):
    def test_clock_moving_during_schedule_does_not_overlap(self) -> None:
        output = RenderingOutput(sample_rate=SR)
        output.render(SR)
        controller = LiveSessionController(FakeConnector(), output, capture_factory=FakeCapture)

        first = controller.handle_message(LiveMessage(audio=_pcm(0.5)))
        second = controller.handle_message(LiveMessage(audio=_pcm(0.3)))
        sources = sorted(output.active_sources, key=lambda s: s.start_time)

        self.assertAlmostEqual(first.start_time, sources[0].start_time)
        self.assertAlmostEqual(second.start_time, sources[1].start_time)
        self.assertGreaterEqual(sources[1].start_time, sources[0].end_time - 1e-9)
        self.assertAlmostEqual(controller.next_start_time, sources[1].end_time)

    def test_model_audio_is_resampled_to_device_rate(self) -> None:
        output = AudioOutput(sample_rate=48000)
        controller = LiveSessionController(FakeConnector(), output, capture_factory=FakeCapture)

        first = controller.handle_message(LiveMessage(audio=_pcm(0.5)))
        second = controller.handle_message(LiveMessage(audio=_pcm(0.3)))

        self.assertAlmostEqual(first.duration, 0.5)
        self.assertAlmostEqual(second.start_time, 0.5)
        self.assertEqual(output.active_sources[0].duration * 48000, 24000)


class TestLiveSessionLifecycle(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.output = AudioOutput(sample_rate=SR)
        self.capture = FakeCapture()
        self.connector = FakeConnector()
        self.states: list[SessionState] = []
        self.controller = LiveSessionController(
            self.connector,
            self.output,
            capture_factory=lambda: self.capture,
            on_state_changed=self.states.append,
        )

    async def asyncTearDown(self) -> None:
        await self.controller.stop()

    async def test_start_and_stop(self) -> None:
        self.assertTrue(await self.controller.start())
        self.assertIs(self.controller.state, SessionState.ACTIVE)
        self.assertEqual(self.capture.started, 1)

        await self.controller.stop()
        self.assertIs(self.controller.state, SessionState.IDLE)
        self.assertEqual(self.connector.connection.closed, 1)
        self.assertEqual(self.capture.stopped, 1)
        self.assertEqual(self.states, [SessionState.CONNECTING, SessionState.ACTIVE, SessionState.IDLE])

    async def test_stop_is_idempotent(self) -> None:
        await self.controller.stop()
        self.assertTrue(await self.controller.start())
        self.connector.connection.close_error = RuntimeError("already closed")
        await self.controller.stop()
        await self.controller.stop()
        self.assertIs(self.controller.state, SessionState.IDLE)
        self.assertEqual(self.connector.connection.closed, 1)
        self.assertEqual(self.capture.stopped, 1)

    async def test_stop_reports_dropped_microphone_frames(self) -> None:
        await self.controller.start()
        self.capture.dropped_frames = 3
        await self.controller.stop()
        self.assertEqual(self.controller.dropped_frames, 3)

        self.assertTrue(await self.controller.start())
        self.assertEqual(self.controller.dropped_frames, 0)

    async def test_second_start_is_rejected(self) -> None:
        self.assertTrue(await self.controller.start())
        self.assertFalse(await self.controller.start())
        self.assertEqual(self.capture.started, 1)

    async def test_connect_failure_returns_to_idle(self) -> None:
        self.connector.error = ConnectionError("handshake refused")
        self.assertFalse(await self.controller.start())
        self.assertIs(self.controller.state, SessionState.IDLE)
        self.assertEqual(self.capture.stopped, 1)
        self.assertEqual(self.states, [SessionState.CONNECTING, SessionState.IDLE])

    async def test_stop_while_connecting_discards_connection(self) -> None:
        self.connector.gate = asyncio.Event()
        starting = asyncio.create_task(self.controller.start())
        await asyncio.sleep(0)
        self.assertIs(self.controller.state, SessionState.CONNECTING)

        await self.controller.stop()
        self.connector.gate.set()
        self.assertFalse(await starting)
        self.assertIs(self.controller.state, SessionState.IDLE)
        self.assertEqual(self.connector.connection.closed, 1)

    async def test_frames_are_quantized_and_forwarded(self) -> None:
        await self.controller.start()
        self.capture.queue.put(MicFrame(samples=np.full(4096, 0.5, dtype=np.float32), sample_rate=16000))

        connection = self.connector.connection
        await _eventually(lambda: len(connection.sent) == 1)
        pcm, mime = connection.sent[0]
        self.assertEqual(mime, INPUT_MIME_TYPE)
        self.assertEqual(len(pcm), 8192)
        self.assertTrue(np.all(np.frombuffer(pcm, dtype="<i2") == 16384))
        self.assertEqual(self.controller.frames_sent, 1)

    async def test_frames_at_device_rate_are_resampled(self) -> None:
        self.capture.sample_rate = 48000
        await self.controller.start()
        self.capture.queue.put(MicFrame(samples=np.zeros(12288, dtype=np.float32), sample_rate=48000))

        connection = self.connector.connection
        await _eventually(lambda: len(connection.sent) == 1)
        self.assertEqual(len(connection.sent[0][0]), 4096 * 2)

    async def test_send_failure_drops_only_that_frame(self) -> None:
        await self.controller.start()
        connection = self.connector.connection
        connection.send_failures = 1
        for _ in range(2):
            self.capture.queue.put(MicFrame(samples=np.zeros(16, dtype=np.float32), sample_rate=16000))

        await _eventually(lambda: len(connection.sent) == 1)
        self.assertIs(self.controller.state, SessionState.ACTIVE)
        self.assertEqual(connection.send_failures, 0)

    async def test_inbound_audio_is_scheduled(self) -> None:
        await self.controller.start()
        self.connector.connection.inbound.put_nowait(LiveMessage(audio=_pcm(0.5)))
        self.connector.connection.inbound.put_nowait(LiveMessage(audio=_pcm(0.3)))

        await _eventually(lambda: len(self.controller.scheduled_sources) == 2)
        self.assertAlmostEqual(self.controller.next_start_time, 0.8)

    async def test_remote_close_ends_session(self) -> None:
        await self.controller.start()
        self.connector.connection.inbound.put_nowait(LiveMessage(audio=_pcm(0.5)))
        self.connector.connection.inbound.put_nowait(None)

        await _eventually(lambda: self.controller.state is SessionState.IDLE)
        self.assertEqual(self.capture.stopped, 1)
        self.assertEqual(self.controller.scheduled_sources, [])
        self.assertEqual(self.output.active_sources, [])

    async def test_restart_after_stop(self) -> None:
        await self.controller.start()
        await self.controller.stop()
        self.connector.connection = FakeConnection()
        self.assertTrue(await self.controller.start())
        self.assertIs(self.controller.state, SessionState.ACTIVE)


if __name__ == "__main__":
    unittest.main()
