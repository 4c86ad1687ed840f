from __future__ import annotations

from dataclasses import dataclass

import numpy as np


@dataclass
class AudioChunk:
    samples: np.ndarray  # int16 mono PCM
    sample_rate: int
    seq: int = 0  # arrival order within a session

    @property
    def duration(self) -> float:
        if self.sample_rate <= 0:
            return 0.0
        return float(self.samples.size) / float(self.sample_rate)

    def as_float32(self) -> np.ndarray:
        return self.samples.astype(np.float32) / 32768.0


@dataclass(frozen=True)
class PlaybackSlot:
    start_time: float  # seconds on the output clock
    duration: float

    @property
    def end_time(self) -> float:
        return float(self.start_time) + float(self.duration)
