"""PCM helpers shared by the clip player and the live session.

Wire audio is 16-bit signed little-endian mono PCM; model output is always 24 kHz
and is resampled to the device rate before scheduling. The Gemini REST API hands it
over base64-encoded, the Live API as raw bytes; both go through
``decode_audio_payload``.
"""

from __future__ import annotations

import base64
import binascii
import math
from typing import Union

import numpy as np
from scipy.signal import resample_poly

from voicementor.audio.chunk import AudioChunk
from voicementor.errors import DecodeFailed

INPUT_MIME_TYPE = "audio/pcm;rate=16000"
OUTPUT_WIRE_RATE = 24000  # model audio, both TTS and Live

_PCM16 = np.dtype("<i2")


def encode_base64(data: bytes) -> str:
    return base64.b64encode(bytes(data)).decode("ascii")


def decode_base64(payload: str) -> bytes:
    try:
        return base64.b64decode(payload.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError, ValueError) as exc:
        raise DecodeFailed(f"Invalid base64 audio payload: {exc}") from exc


def pcm16_from_bytes(data: bytes) -> np.ndarray:
    if len(data) % _PCM16.itemsize:
        raise DecodeFailed(f"PCM16 payload has odd length ({len(data)} bytes)")
    return np.frombuffer(bytes(data), dtype=_PCM16).astype(np.int16)


def pcm16_to_float32(data: bytes) -> np.ndarray:
    return pcm16_from_bytes(data).astype(np.float32) / 32768.0


def float32_to_pcm16(samples: np.ndarray) -> bytes:
    scaled = np.clip(samples.astype(np.float32, copy=False) * 32768.0, -32768.0, 32767.0)
    return scaled.astype(_PCM16).tobytes()


def decode_audio_payload(payload: Union[str, bytes], sample_rate: int, *, seq: int = 0) -> AudioChunk:
    raw = decode_base64(payload) if isinstance(payload, str) else bytes(payload)
    if not raw:
        raise DecodeFailed("Empty audio payload")
    return AudioChunk(samples=pcm16_from_bytes(raw), sample_rate=int(sample_rate), seq=int(seq))


def resample_audio(audio: np.ndarray, orig_sr: int, target_sr: int) -> np.ndarray:
    audio = audio.astype(np.float32, copy=False)
    if int(orig_sr) == int(target_sr) or audio.size == 0:
        return audio

    g = math.gcd(int(orig_sr), int(target_sr))
    return resample_poly(audio, up=int(target_sr) // g, down=int(orig_sr) // g).astype(np.float32, copy=False)


def to_output_samples(chunk: AudioChunk, target_sr: int) -> np.ndarray:
    """Float32 samples of ``chunk`` at the output device rate."""
    return resample_audio(chunk.as_float32(), orig_sr=chunk.sample_rate, target_sr=target_sr)
