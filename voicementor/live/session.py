from __future__ import annotations

import asyncio
from enum import Enum
from typing import Callable, Optional

import structlog

from voicementor.audio.chunk import PlaybackSlot
from voicementor.audio.codec import (
    INPUT_MIME_TYPE,
    OUTPUT_WIRE_RATE,
    decode_audio_payload,
    float32_to_pcm16,
    resample_audio,
    to_output_samples,
)
from voicementor.audio.mic_capture import MicCapture
from voicementor.audio.output import AudioOutput, ScheduledSource
from voicementor.errors import DecodeFailed
from voicementor.live.connection import LiveConnection, LiveConnector, LiveMessage

logger = structlog.get_logger(__name__)


class SessionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    ACTIVE = "active"


class LiveSessionController:
    """Duplex voice session: microphone frames out, model audio chunks in.

    Inbound chunks are laid end to end on the output clock. An ``interrupted``
    message drops everything queued and hands the timeline back to the remote side.
    """

    def __init__(
        self,
        connector: LiveConnector,
        output: AudioOutput,
        *,
        capture_factory: Optional[Callable[[], MicCapture]] = None,
        input_sample_rate: int = 16000,
        frame_samples: int = 4096,
        on_state_changed: Optional[Callable[[SessionState], None]] = None,
    ) -> None:
        self._connector = connector
        self._output = output
        self._capture_factory = capture_factory or MicCapture
        self._input_sample_rate = int(input_sample_rate)
        self._frame_samples = int(frame_samples)
        self._on_state_changed = on_state_changed

        self._state = SessionState.IDLE
        self._attempt = 0
        self._connection: Optional[LiveConnection] = None
        self._capture: Optional[MicCapture] = None
        self._tasks: list[asyncio.Task] = []

        self._sources: set[ScheduledSource] = set()
        self._next_start_time = 0.0
        self._seq = 0
        self._frames_sent = 0
        self._dropped_frames = 0

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def next_start_time(self) -> float:
        return float(self._next_start_time)

    @property
    def scheduled_sources(self) -> list[ScheduledSource]:
        return list(self._sources)

    @property
    def frames_sent(self) -> int:
        return int(self._frames_sent)

    @property
    def dropped_frames(self) -> int:
        """Microphone frames lost to backpressure during the last session."""
        return int(self._dropped_frames)

    async def start(self) -> bool:
        if self._state is not SessionState.IDLE:
            logger.debug("Live session already running", state=self._state.value)
            return False

        self._attempt += 1
        attempt = self._attempt
        self._set_state(SessionState.CONNECTING)
        self._reset_playback()
        self._seq = 0
        self._frames_sent = 0
        self._dropped_frames = 0

        capture: Optional[MicCapture] = None
        try:
            capture = self._capture_factory()
            capture_sr = capture.start(self._input_sample_rate, self._frame_samples)
            connection = await self._connector.connect()
        except Exception as exc:
            logger.error("Failed to start voice assistant", error=str(exc))
            if capture is not None:
                self._stop_capture(capture)
            if attempt == self._attempt:
                self._set_state(SessionState.IDLE)
            return False

        if attempt != self._attempt:
            # stop() ran while we were connecting.
            await self._close_connection(connection)
            self._stop_capture(capture)
            return False

        self._connection = connection
        self._capture = capture
        self._set_state(SessionState.ACTIVE)
        logger.info("Live session active", input_sample_rate=capture_sr)

        capture.drain()
        loop = asyncio.get_running_loop()
        self._tasks = [
            loop.create_task(self._pump_input(connection, capture, int(capture_sr))),
            loop.create_task(self._pump_output(connection)),
        ]
        return True

    async def stop(self) -> None:
        self._attempt += 1
        connection, self._connection = self._connection, None
        capture, self._capture = self._capture, None
        tasks, self._tasks = self._tasks, []

        current = asyncio.current_task()
        pending = [t for t in tasks if t is not current]
        for task in pending:
            task.cancel()

        if connection is not None:
            await self._close_connection(connection)
        if capture is not None:
            self._stop_capture(capture)
            self._dropped_frames = capture.dropped_frames
        self._reset_playback()

        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        if self._state is not SessionState.IDLE:
            self._set_state(SessionState.IDLE)
            logger.info("Live session stopped", frames_sent=self._frames_sent, dropped_frames=self._dropped_frames)

    def handle_message(self, message: LiveMessage) -> Optional[PlaybackSlot]:
        slot: Optional[PlaybackSlot] = None
        if message.audio:
            try:
                chunk = decode_audio_payload(message.audio, OUTPUT_WIRE_RATE, seq=self._seq)
            except DecodeFailed as exc:
                logger.warning("Dropping undecodable audio chunk", seq=self._seq, error=str(exc))
            else:
                self._seq += 1
                # schedule() clamps to the output clock under its lock; trust the source for timing.
                source = self._output.schedule(to_output_samples(chunk, self._output.sample_rate), when=self._next_start_time)
                self._sources.add(source)
                source.add_done_callback(self._sources.discard)
                self._next_start_time = source.end_time
                slot = PlaybackSlot(start_time=source.start_time, duration=source.duration)

        if message.interrupted:
            dropped = len(self._sources)
            self._reset_playback()
            logger.debug("Live playback interrupted", dropped_sources=dropped)
        return slot

    async def _pump_input(self, connection: LiveConnection, capture: MicCapture, capture_sr: int) -> None:
        loop = asyncio.get_running_loop()
        while True:
            frame = await loop.run_in_executor(None, capture.next_frame, 0.2)
            if frame is None:
                continue
            samples = frame.samples
            if int(frame.sample_rate) != self._input_sample_rate:
                samples = resample_audio(samples, orig_sr=int(frame.sample_rate), target_sr=self._input_sample_rate)
            try:
                await connection.send_audio(float32_to_pcm16(samples), INPUT_MIME_TYPE)
                self._frames_sent += 1
            except Exception as exc:
                logger.debug("Dropped input frame", error=str(exc))

    async def _pump_output(self, connection: LiveConnection) -> None:
        try:
            async for message in connection.messages():
                self.handle_message(message)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error("Live session error", error=str(exc))

        if self._connection is connection:
            logger.info("Live session closed by remote")
            await self.stop()

    async def _close_connection(self, connection: LiveConnection) -> None:
        try:
            await connection.close()
        except Exception as exc:
            logger.debug("Ignoring error while closing live connection", error=str(exc))

    def _stop_capture(self, capture: MicCapture) -> None:
        try:
            capture.stop()
        except Exception as exc:
            logger.debug("Ignoring error while stopping microphone", error=str(exc))

    def _reset_playback(self) -> None:
        for source in list(self._sources):
            source.stop()
        self._sources.clear()
        self._next_start_time = 0.0

    def _set_state(self, state: SessionState) -> None:
        self._state = state
        if self._on_state_changed is not None:
            self._on_state_changed(state)
