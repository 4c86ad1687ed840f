from __future__ import annotations

import asyncio
import time
from typing import Callable, Optional

import structlog

from voicementor.playback.clip_player import ClipPlayer
from voicementor.questions import ALL_CATEGORY, QuestionBank, filter_by_category, merge_questions, new_custom_question
from voicementor.services.answer_cache import AnswerCache
from voicementor.services.auth import AuthProvider, verified_user
from voicementor.services.mentor_ai import MentorAI
from voicementor.types import AIResponse, Question

logger = structlog.get_logger(__name__)


class StudySession:
    """Question library flow: pick a question, read the answer, listen to it."""

    def __init__(
        self,
        bank: QuestionBank,
        cache: AnswerCache,
        mentor: MentorAI,
        player: ClipPlayer,
        auth: AuthProvider,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._bank = bank
        self._cache = cache
        self._mentor = mentor
        self._player = player
        self._auth = auth
        self._clock = clock

        self.synced_ids: set[str] = set()
        self.custom_questions: list[Question] = []
        self.selected: Optional[Question] = None
        self.response: Optional[AIResponse] = None
        self._audio_task: Optional[asyncio.Task] = None

    @property
    def player(self) -> ClipPlayer:
        return self._player

    async def refresh(self) -> None:
        self.synced_ids = set(await self._cache.all_cached_ids())
        self.custom_questions = await self._cache.get_custom_questions()
        logger.debug("Library refreshed", synced=len(self.synced_ids), custom=len(self.custom_questions))

    def all_questions(self) -> list[Question]:
        return merge_questions(self.custom_questions, self._bank.questions)

    def questions(self, category: str = ALL_CATEGORY) -> list[Question]:
        return filter_by_category(self.all_questions(), category)

    def find(self, question_id: str) -> Optional[Question]:
        for q in self.all_questions():
            if q.id == question_id:
                return q
        return None

    async def open_question(self, question: Question, *, play_audio: bool = True) -> AIResponse:
        self._player.stop()
        self.selected = question
        self.response = None

        result = await self._mentor.get_answer(question.id, question.text)
        self.response = result
        self.synced_ids.add(question.id)
        if play_audio:
            self._start_audio(question, result)
        return result

    async def ask(self, text: str, *, play_audio: bool = True) -> AIResponse:
        verified_user(self._auth)
        question = new_custom_question(text, clock=self._clock)
        self.custom_questions.insert(0, question)
        await self._cache.save_custom_question(question)
        return await self.open_question(question, play_audio=play_audio)

    def toggle_audio(self) -> bool:
        """Stop if playing, otherwise replay the current answer. Returns True when playback was requested."""
        if self._player.is_playing:
            self._player.stop()
            return False
        if self.selected is None or self.response is None:
            return False
        self._start_audio(self.selected, self.response)
        return True

    async def wait_for_audio(self) -> bool:
        task = self._audio_task
        if task is None:
            return False
        started = await task
        if started:
            await self._player.wait()
        return bool(started)

    def close(self) -> None:
        self._player.stop()
        self.selected = None
        self.response = None

    def _start_audio(self, question: Question, response: AIResponse) -> None:
        self._audio_task = asyncio.get_running_loop().create_task(self._player.play(question.id, response.answer))
