from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv

ANSWER_INSTRUCTION = """
You are a world-class Angular Architect with deep architectural expertise.
Your tone is professional, technical, yet friendly, like a senior mentor helping a colleague prepare for a high-stakes interview.

When answering:
1. Start with a clear, high-level summary.
2. Deep dive into the technical details (how it works under the hood).
3. Mention architectural implications and best practices.
4. Include real-world scenarios or modern Angular updates (e.g., Signals, Standalone Components, Ivy features) where applicable.
5. Ensure the answer is structured well with clear headings and bullet points.
6. Use Google Search grounding to ensure accuracy for recent Angular versions (v14-v19).
""".strip()

LIVE_INSTRUCTION = (
    "You are a senior Angular mentor. Answer the user's interview questions with architect-level depth. "
    "Keep responses spoken, conversational, but highly technical."
)


@dataclass(frozen=True)
class AudioConfig:
    input_sample_rate: int = 16000
    output_sample_rate: int = 24000
    frame_samples: int = 4096
    input_device: Optional[int] = None
    output_device: Optional[int] = None


@dataclass(frozen=True)
class GeminiConfig:
    api_key: str = ""
    answer_model: str = "gemini-3-flash-preview"
    tts_model: str = "gemini-2.5-flash-preview-tts"
    live_model: str = "gemini-2.5-flash-native-audio-preview-12-2025"
    voice_name: str = "Kore"
    tts_char_limit: int = 1500
    answer_instruction: str = ANSWER_INSTRUCTION
    live_instruction: str = LIVE_INSTRUCTION


@dataclass(frozen=True)
class StorageConfig:
    backend: str = "memory"  # memory | firestore
    credentials_path: str = ""
    project_id: str = ""
    answers_collection: str = "ai_answers"
    questions_collection: str = "user_questions"


@dataclass(frozen=True)
class AuthConfig:
    uid: str = ""
    email: str = ""
    display_name: str = ""
    email_verified: bool = False
    id_token: str = ""  # Firebase ID token; overrides the static identity


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "info"


@dataclass(frozen=True)
class AppConfig:
    questions_path: str = ""
    audio: AudioConfig = AudioConfig()
    gemini: GeminiConfig = GeminiConfig()
    storage: StorageConfig = StorageConfig()
    auth: AuthConfig = AuthConfig()
    logging: LoggingConfig = LoggingConfig()


def _get(d: dict[str, Any], key: str, default: Any) -> Any:
    value = d.get(key, default)
    return default if value is None else value


def _optional_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    return int(value)


def _api_key(raw: dict[str, Any]) -> str:
    # Environment wins over the file so keys never have to live in config.yaml.
    for name in ("GEMINI_API_KEY", "API_KEY"):
        value = os.environ.get(name, "").strip()
        if value:
            return value
    return str(_get(raw, "api_key", ""))


def load_config(path: Path) -> AppConfig:
    load_dotenv()

    raw: dict[str, Any] = {}
    path = Path(path)
    if path.exists():
        loaded = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        if isinstance(loaded, dict):
            raw = loaded

    audio_raw = raw.get("audio", {}) or {}
    gemini_raw = raw.get("gemini", {}) or {}
    storage_raw = raw.get("storage", {}) or {}
    auth_raw = raw.get("auth", {}) or {}
    logging_raw = raw.get("logging", {}) or {}

    defaults = GeminiConfig()

    return AppConfig(
        questions_path=str(_get(raw, "questions_path", "")),
        audio=AudioConfig(
            input_sample_rate=int(_get(audio_raw, "input_sample_rate", 16000)),
            output_sample_rate=int(_get(audio_raw, "output_sample_rate", 24000)),
            frame_samples=int(_get(audio_raw, "frame_samples", 4096)),
            input_device=_optional_int(audio_raw.get("input_device")),
            output_device=_optional_int(audio_raw.get("output_device")),
        ),
        gemini=GeminiConfig(
            api_key=_api_key(gemini_raw),
            answer_model=str(_get(gemini_raw, "answer_model", defaults.answer_model)),
            tts_model=str(_get(gemini_raw, "tts_model", defaults.tts_model)),
            live_model=str(_get(gemini_raw, "live_model", defaults.live_model)),
            voice_name=str(_get(gemini_raw, "voice_name", defaults.voice_name)),
            tts_char_limit=int(_get(gemini_raw, "tts_char_limit", defaults.tts_char_limit)),
            answer_instruction=str(_get(gemini_raw, "answer_instruction", defaults.answer_instruction)),
            live_instruction=str(_get(gemini_raw, "live_instruction", defaults.live_instruction)),
        ),
        storage=StorageConfig(
            backend=str(_get(storage_raw, "backend", "memory")).lower(),
            credentials_path=str(
                os.environ.get("GOOGLE_APPLICATION_CREDENTIALS") or _get(storage_raw, "credentials_path", "")
            ),
            project_id=str(_get(storage_raw, "project_id", "")),
            answers_collection=str(_get(storage_raw, "answers_collection", "ai_answers")),
            questions_collection=str(_get(storage_raw, "questions_collection", "user_questions")),
        ),
        auth=AuthConfig(
            uid=str(_get(auth_raw, "uid", "")),
            email=str(_get(auth_raw, "email", "")),
            display_name=str(_get(auth_raw, "display_name", "")),
            email_verified=bool(_get(auth_raw, "email_verified", False)),
            id_token=str(os.environ.get("FIREBASE_ID_TOKEN") or _get(auth_raw, "id_token", "")),
        ),
        logging=LoggingConfig(
            level=str(_get(logging_raw, "level", "info")).lower(),
        ),
    )
