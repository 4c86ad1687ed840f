from __future__ import annotations

import asyncio
import threading
from typing import Callable, Optional

import numpy as np
import structlog

logger = structlog.get_logger(__name__)

DoneCallback = Callable[["ScheduledSource"], None]


class ScheduledSource:
    """A mono buffer pinned to an absolute position on an ``AudioOutput`` clock."""

    def __init__(self, output: "AudioOutput", samples: np.ndarray, start_frame: int) -> None:
        self._output = output
        self._samples = samples
        self._start_frame = int(start_frame)
        self._stopped = False
        self._done = False
        self._callbacks: list[DoneCallback] = []

    @property
    def start_time(self) -> float:
        return float(self._start_frame) / float(self._output.sample_rate)

    @property
    def duration(self) -> float:
        return float(self._samples.size) / float(self._output.sample_rate)

    @property
    def end_time(self) -> float:
        return self.start_time + self.duration

    @property
    def stopped(self) -> bool:
        return bool(self._stopped)

    @property
    def finished(self) -> bool:
        """True once the source ended naturally or was stopped."""
        return bool(self._done)

    def add_done_callback(self, fn: DoneCallback) -> None:
        if self._done:
            self._output._dispatch(fn, self)
            return
        self._callbacks.append(fn)

    def stop(self) -> None:
        self._output._stop_source(self)


class AudioOutput:
    """Mixer with a sample-accurate clock, fed to a ``sounddevice`` output stream.

    ``current_time`` counts seconds of rendered audio, so it only moves while the
    device (or a caller of ``render``) pulls blocks.
    """

    def __init__(
        self,
        sample_rate: int = 24000,
        *,
        device: Optional[int] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        block_sec: float = 0.02,
    ) -> None:
        self._sample_rate = int(sample_rate)
        self._device = device
        self._loop = loop
        self._block_sec = float(block_sec)
        self._lock = threading.Lock()
        self._frame = 0
        self._sources: list[ScheduledSource] = []
        self._stream = None

    @property
    def sample_rate(self) -> int:
        return self._sample_rate

    @property
    def current_time(self) -> float:
        with self._lock:
            return float(self._frame) / float(self._sample_rate)

    @property
    def active_sources(self) -> list[ScheduledSource]:
        with self._lock:
            return list(self._sources)

    @property
    def running(self) -> bool:
        return self._stream is not None

    def schedule(self, samples: np.ndarray, when: float = 0.0) -> ScheduledSource:
        buf = np.ascontiguousarray(samples, dtype=np.float32).reshape(-1)
        with self._lock:
            start_frame = max(int(round(float(when) * self._sample_rate)), self._frame)
            source = ScheduledSource(self, buf, start_frame)
            self._sources.append(source)
        return source

    def render(self, frames: int) -> np.ndarray:
        out = np.zeros((int(frames),), dtype=np.float32)
        ended: list[ScheduledSource] = []
        with self._lock:
            block_start = self._frame
            block_end = block_start + int(frames)
            for source in list(self._sources):
                s0 = source._start_frame
                s1 = s0 + int(source._samples.size)
                lo = max(s0, block_start)
                hi = min(s1, block_end)
                if hi > lo:
                    out[lo - block_start : hi - block_start] += source._samples[lo - s0 : hi - s0]
                if s1 <= block_end:
                    self._sources.remove(source)
                    source._done = True
                    ended.append(source)
            self._frame = block_end

        for source in ended:
            self._notify(source)
        np.clip(out, -1.0, 1.0, out=out)
        return out

    def stop_all(self) -> int:
        with self._lock:
            stopped = list(self._sources)
            self._sources.clear()
            for source in stopped:
                source._stopped = True
                source._done = True
        for source in stopped:
            self._notify(source)
        return len(stopped)

    def start(self) -> None:
        import sounddevice as sd  # type: ignore

        if self._stream is not None:
            return

        def callback(outdata: np.ndarray, frames: int, time, status) -> None:  # noqa: ANN001
            if status:
                logger.debug("Output stream status", status=str(status))
            outdata[:, 0] = self.render(frames)

        stream = sd.OutputStream(
            samplerate=self._sample_rate,
            device=self._device,
            channels=1,
            dtype="float32",
            blocksize=max(0, int(self._sample_rate * self._block_sec)),
            callback=callback,
        )
        stream.start()
        self._stream = stream
        logger.debug("Audio output started", sample_rate=self._sample_rate, device=self._device)

    def close(self) -> None:
        stream = self._stream
        self._stream = None
        if stream is not None:
            try:
                stream.stop()
            finally:
                stream.close()
        self.stop_all()

    def _stop_source(self, source: ScheduledSource) -> None:
        with self._lock:
            if source._done:
                return
            if source in self._sources:
                self._sources.remove(source)
            source._stopped = True
            source._done = True
        self._notify(source)

    def _notify(self, source: ScheduledSource) -> None:
        callbacks = source._callbacks
        source._callbacks = []
        for fn in callbacks:
            self._dispatch(fn, source)

    def _dispatch(self, fn: DoneCallback, source: ScheduledSource) -> None:
        # The device callback runs on the PortAudio thread; hand the event back to the loop.
        loop = self._loop
        if loop is not None and not loop.is_closed():
            loop.call_soon_threadsafe(fn, source)
        else:
            fn(source)
