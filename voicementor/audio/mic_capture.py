from __future__ import annotations

import queue
from dataclasses import dataclass
from typing import Optional

import numpy as np
import structlog

logger = structlog.get_logger(__name__)


@dataclass
class MicFrame:
    samples: np.ndarray  # float32 mono
    sample_rate: int


class MicCapture:
    def __init__(self, device: Optional[int] = None) -> None:
        self._device = device
        self._stream = None
        self._queue: "queue.Queue[MicFrame]" = queue.Queue(maxsize=64)
        self._running = False
        self._dropped = 0

    @property
    def queue(self) -> "queue.Queue[MicFrame]":
        return self._queue

    @property
    def running(self) -> bool:
        return bool(self._running)

    @property
    def dropped_frames(self) -> int:
        return int(self._dropped)

    def start(self, preferred_sample_rate: int, block_samples: int = 4096) -> int:
        import sounddevice as sd  # type: ignore

        if self._running:
            return int(preferred_sample_rate)

        self.drain()
        self._running = True

        def callback(indata: np.ndarray, frames: int, time, status) -> None:  # noqa: ANN001
            if not self._running:
                return
            mono = indata[:, 0].astype(np.float32, copy=True)
            try:
                self._queue.put_nowait(MicFrame(samples=mono, sample_rate=int(stream_sr)))
            except queue.Full:
                # Backpressure: drop the frame to keep latency bounded.
                self._dropped += 1

        # Prefer the wire rate, but fall back to the device default if unsupported.
        stream_sr = int(preferred_sample_rate)
        try:
            dev_info = sd.query_devices(self._device, "input")
            default_sr = int(dev_info.get("default_samplerate", stream_sr))
        except Exception:
            default_sr = stream_sr

        for sr in (stream_sr, default_sr):
            # Keep the frame duration constant when the device forces another rate.
            blocksize = max(1, int(round(int(block_samples) * sr / float(preferred_sample_rate))))
            try:
                self._stream = sd.InputStream(
                    samplerate=sr,
                    device=self._device,
                    channels=1,
                    dtype="float32",
                    blocksize=blocksize,
                    callback=callback,
                )
                self._stream.start()
                stream_sr = int(sr)
                break
            except Exception as exc:
                logger.debug("Input stream rejected", sample_rate=sr, error=str(exc))
                self._stream = None
                continue

        if self._stream is None:  # pragma: no cover
            self._running = False
            raise RuntimeError("Failed to start microphone capture (sounddevice).")

        logger.debug("Microphone capture started", sample_rate=stream_sr, device=self._device)
        return int(stream_sr)

    def next_frame(self, timeout: float = 0.2) -> Optional[MicFrame]:
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> None:
        while True:
            try:
                self._queue.get_nowait()
            except queue.Empty:
                return

    def stop(self) -> None:
        self._running = False
        if self._stream is not None:
            try:
                self._stream.stop()
            finally:
                self._stream.close()
                self._stream = None
