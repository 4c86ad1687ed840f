from __future__ import annotations

import asyncio
from functools import partial
from typing import Awaitable, Callable, Optional

import structlog

from voicementor.audio.codec import OUTPUT_WIRE_RATE, decode_audio_payload, to_output_samples
from voicementor.audio.output import AudioOutput, ScheduledSource
from voicementor.errors import StaleResult

logger = structlog.get_logger(__name__)

FetchAudio = Callable[[str, str], Awaitable[str]]


class ClipPlayer:
    """Plays one synthesized answer at a time on its own output clock.

    Each ``play`` call bumps a generation counter; a fetch that completes after a
    newer ``play`` (or a ``stop``) sees a different generation and is dropped.
    """

    def __init__(
        self,
        output: AudioOutput,
        fetch_audio: FetchAudio,
        *,
        sample_rate: Optional[int] = None,
        on_playing_changed: Optional[Callable[[bool], None]] = None,
    ) -> None:
        self._output = output
        self._fetch_audio = fetch_audio
        self._sample_rate = int(sample_rate) if sample_rate is not None else OUTPUT_WIRE_RATE
        self._on_playing_changed = on_playing_changed

        self._generation = 0
        self._active_id: Optional[str] = None
        self._source: Optional[ScheduledSource] = None
        self._playing = False
        self._loading = False
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def is_playing(self) -> bool:
        return bool(self._playing)

    @property
    def is_loading(self) -> bool:
        return bool(self._loading)

    @property
    def active_id(self) -> Optional[str]:
        return self._active_id

    async def play(self, clip_id: str, text: str) -> bool:
        self.stop()
        generation = self._generation
        self._active_id = clip_id
        self._loading = True

        try:
            payload = await self._fetch_audio(clip_id, text)
            self._ensure_current(generation)
            chunk = decode_audio_payload(payload, self._sample_rate)

            source = self._output.schedule(to_output_samples(chunk, self._output.sample_rate), when=0.0)
            source.add_done_callback(partial(self._on_source_done, generation))
            self._source = source
            self._set_playing(True)
            logger.info("Clip playback started", clip_id=clip_id, duration=round(source.duration, 2))
            return True
        except StaleResult:
            logger.debug("Discarding stale clip", clip_id=clip_id)
            return False
        except Exception as exc:
            if generation == self._generation:
                logger.error("Failed to play audio", clip_id=clip_id, error=str(exc))
            else:
                logger.debug("Stale clip request failed", clip_id=clip_id, error=str(exc))
            return False
        finally:
            if generation == self._generation:
                self._loading = False

    def stop(self) -> None:
        self._generation += 1
        self._active_id = None
        self._loading = False
        source = self._source
        self._source = None
        if source is not None:
            source.stop()
        self._set_playing(False)

    async def wait(self) -> None:
        await self._idle.wait()

    def _ensure_current(self, generation: int) -> None:
        if generation != self._generation:
            raise StaleResult()

    def _on_source_done(self, generation: int, source: ScheduledSource) -> None:
        if generation != self._generation or source is not self._source:
            return
        self._source = None
        self._set_playing(False)
        logger.debug("Clip playback ended", clip_id=self._active_id, stopped=source.stopped)

    def _set_playing(self, playing: bool) -> None:
        if playing == self._playing:
            return
        self._playing = playing
        if playing:
            self._idle.clear()
        else:
            self._idle.set()
        if self._on_playing_changed is not None:
            self._on_playing_changed(playing)
