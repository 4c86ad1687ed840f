from __future__ import annotations

from contextlib import AsyncExitStack
from typing import Any, AsyncIterator

import structlog
from google import genai
from google.genai import types

from voicementor.config import GeminiConfig
from voicementor.errors import FetchFailed
from voicementor.live.connection import LiveConnection, LiveConnector, LiveMessage

logger = structlog.get_logger(__name__)


def to_live_message(response: Any) -> LiveMessage:
    content = getattr(response, "server_content", None)
    if content is None:
        return LiveMessage()

    audio = b""
    turn = content.model_turn
    if turn is not None:
        for part in turn.parts or []:
            if part.inline_data is not None and part.inline_data.data:
                audio += part.inline_data.data

    return LiveMessage(
        audio=audio or None,
        interrupted=bool(content.interrupted),
        turn_complete=bool(content.turn_complete),
    )


class GeminiLiveConnection(LiveConnection):
    def __init__(self, session: Any, stack: AsyncExitStack) -> None:
        self._session = session
        self._stack = stack
        self._closed = False

    async def send_audio(self, pcm: bytes, mime_type: str) -> None:
        if self._closed:
            return
        await self._session.send_realtime_input(audio=types.Blob(data=pcm, mime_type=mime_type))

    async def messages(self) -> AsyncIterator[LiveMessage]:
        # receive() stops after each model turn; keep pulling until a pass yields nothing.
        while not self._closed:
            received = False
            async for response in self._session.receive():
                received = True
                yield to_live_message(response)
            if not received:
                return

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._stack.aclose()


class GeminiLiveConnector(LiveConnector):
    def __init__(self, client: genai.Client, config: GeminiConfig) -> None:
        self._client = client
        self._config = config

    def live_config(self) -> types.LiveConnectConfig:
        return types.LiveConnectConfig(
            response_modalities=[types.Modality.AUDIO],
            speech_config=types.SpeechConfig(
                voice_config=types.VoiceConfig(
                    prebuilt_voice_config=types.PrebuiltVoiceConfig(voice_name=self._config.voice_name),
                ),
            ),
            system_instruction=self._config.live_instruction,
        )

    async def connect(self) -> LiveConnection:
        stack = AsyncExitStack()
        try:
            session = await stack.enter_async_context(
                self._client.aio.live.connect(model=self._config.live_model, config=self.live_config())
            )
        except Exception as exc:
            await stack.aclose()
            raise FetchFailed(f"Could not open live session: {exc}") from exc

        logger.debug("Live connection opened", model=self._config.live_model)
        return GeminiLiveConnection(session, stack)
