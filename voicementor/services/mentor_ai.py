from __future__ import annotations

import dataclasses
import re
import time
from typing import Any, Callable, Optional

import structlog
from google import genai
from google.genai import types

from voicementor.audio.codec import encode_base64
from voicementor.config import GeminiConfig
from voicementor.errors import FetchFailed
from voicementor.services.answer_cache import AnswerCache
from voicementor.types import AIResponse, CachedEntry, GroundingSource

logger = structlog.get_logger(__name__)

FALLBACK_ANSWER = "I'm sorry, I couldn't generate an answer at this moment."
PODCAST_PROMPT = "Explain this as a friendly mentor in a podcast style: {text}"


def create_genai_client(config: GeminiConfig) -> genai.Client:
    if not config.api_key:
        raise ValueError("GEMINI_API_KEY is required")
    return genai.Client(api_key=config.api_key)


def clean_for_speech(text: str, limit: int = 1500) -> str:
    cleaned = re.sub(r"[#*`]", "", text).replace("\n\n", ". ")
    return cleaned[: max(0, int(limit))]


def extract_sources(response: Any) -> list[GroundingSource]:
    candidates = getattr(response, "candidates", None) or []
    if not candidates:
        return []
    metadata = getattr(candidates[0], "grounding_metadata", None)
    chunks = getattr(metadata, "grounding_chunks", None) or []

    sources: list[GroundingSource] = []
    for chunk in chunks:
        web = getattr(chunk, "web", None)
        if web is None or not getattr(web, "uri", None):
            continue
        sources.append(GroundingSource(uri=str(web.uri), title=str(getattr(web, "title", "") or "")))
    return sources


def extract_audio(response: Any) -> Optional[bytes]:
    candidates = getattr(response, "candidates", None) or []
    if not candidates or candidates[0].content is None:
        return None
    for part in candidates[0].content.parts or []:
        inline = getattr(part, "inline_data", None)
        if inline is not None and inline.data:
            return inline.data
    return None


class MentorAI:
    """Cache-first access to the answer and text-to-speech models."""

    def __init__(
        self,
        client: genai.Client,
        cache: AnswerCache,
        config: GeminiConfig,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._client = client
        self._cache = cache
        self._config = config
        self._clock = clock

    def _answer_config(self) -> types.GenerateContentConfig:
        return types.GenerateContentConfig(
            system_instruction=self._config.answer_instruction,
            tools=[types.Tool(google_search=types.GoogleSearch())],
        )

    def _speech_config(self) -> types.GenerateContentConfig:
        return types.GenerateContentConfig(
            response_modalities=[types.Modality.AUDIO],
            speech_config=types.SpeechConfig(
                voice_config=types.VoiceConfig(
                    prebuilt_voice_config=types.PrebuiltVoiceConfig(voice_name=self._config.voice_name),
                ),
            ),
        )

    async def get_answer(self, question_id: str, question_text: str) -> AIResponse:
        cached = await self._cache.get_cached_answer(question_id)
        if cached is not None:
            logger.debug("Answer cache hit", question_id=question_id)
            return cached.response

        try:
            response = await self._client.aio.models.generate_content(
                model=self._config.answer_model,
                contents=f"Question: {question_text}",
                config=self._answer_config(),
            )
            result = AIResponse(answer=response.text or FALLBACK_ANSWER, sources=extract_sources(response))
        except Exception as exc:
            logger.error("Gemini API error", question_id=question_id, error=str(exc))
            raise FetchFailed("Failed to fetch answer from AI mentor.") from exc

        # Audio is added later, the first time the answer is played.
        await self._cache.save_answer(
            CachedEntry(
                question_id=question_id,
                answer=result.answer,
                sources=list(result.sources),
                timestamp=int(self._clock() * 1000),
            )
        )
        logger.info("Answer generated", question_id=question_id, sources=len(result.sources))
        return result

    async def get_audio(self, question_id: str, text: str) -> str:
        cached = await self._cache.get_cached_answer(question_id)
        if cached is not None and cached.audio_base64:
            logger.debug("Audio cache hit", question_id=question_id)
            return cached.audio_base64

        prompt = PODCAST_PROMPT.format(text=clean_for_speech(text, self._config.tts_char_limit))
        try:
            response = await self._client.aio.models.generate_content(
                model=self._config.tts_model,
                contents=prompt,
                config=self._speech_config(),
            )
            audio = extract_audio(response)
        except Exception as exc:
            logger.error("TTS error", question_id=question_id, error=str(exc))
            raise FetchFailed(f"Failed to synthesize audio: {exc}") from exc

        if not audio:
            logger.error("TTS error", question_id=question_id, error="no audio data")
            raise FetchFailed("No audio data received")

        audio_base64 = audio if isinstance(audio, str) else encode_base64(audio)
        if cached is not None:
            await self._cache.save_answer(dataclasses.replace(cached, audio_base64=audio_base64))
        return audio_base64
