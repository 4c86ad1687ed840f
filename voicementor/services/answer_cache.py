"""Per-user cache of generated answers, their audio, and user-authored questions.

Every operation needs a signed-in user with a verified e-mail. Without one the
operation is skipped and the empty value is returned. Store failures are logged
and treated the same way; they never reach the caller.
"""

from __future__ import annotations

import time
from typing import Callable, Optional

import structlog

from voicementor.errors import AuthRequired
from voicementor.services.auth import AuthProvider, Identity, verified_user
from voicementor.services.document_store import DocumentStore
from voicementor.types import CachedEntry, Question

logger = structlog.get_logger(__name__)

ANSWERS_COLLECTION = "ai_answers"
QUESTIONS_COLLECTION = "user_questions"


class AnswerCache:
    def __init__(
        self,
        store: DocumentStore,
        auth: AuthProvider,
        *,
        answers_collection: str = ANSWERS_COLLECTION,
        questions_collection: str = QUESTIONS_COLLECTION,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._auth = auth
        self._answers = answers_collection
        self._questions = questions_collection
        self._clock = clock

    def _user(self, operation: str) -> Optional[Identity]:
        try:
            return verified_user(self._auth)
        except AuthRequired as exc:
            logger.warning("Operation skipped: no authenticated user", operation=operation, reason=str(exc))
            return None

    async def get_cached_answer(self, question_id: str) -> Optional[CachedEntry]:
        if self._user("get_cached_answer") is None:
            return None
        try:
            doc = await self._store.get(self._answers, question_id)
        except Exception as exc:
            logger.error("Store error", operation="get_cached_answer", question_id=question_id, error=str(exc))
            return None
        return CachedEntry.from_document(doc) if doc else None

    async def save_answer(self, entry: CachedEntry) -> None:
        if self._user("save_answer") is None:
            return
        try:
            await self._store.set(self._answers, entry.question_id, entry.to_document())
        except Exception as exc:
            logger.error("Store error", operation="save_answer", question_id=entry.question_id, error=str(exc))

    async def all_cached_ids(self) -> list[str]:
        if self._user("all_cached_ids") is None:
            return []
        try:
            return await self._store.list_ids(self._answers)
        except Exception as exc:
            logger.error("Store error", operation="all_cached_ids", error=str(exc))
            return []

    async def get_custom_questions(self) -> list[Question]:
        user = self._user("get_custom_questions")
        if user is None:
            return []
        try:
            rows = await self._store.where_equals(self._questions, "userId", user.uid)
        except Exception as exc:
            logger.error("Store error", operation="get_custom_questions", error=str(exc))
            return []
        return [
            Question(
                id=doc_id,
                text=str(doc.get("text", "")),
                category=str(doc.get("category", "")),
                is_custom=bool(doc.get("isCustom", True)),
            )
            for doc_id, doc in rows
        ]

    async def save_custom_question(self, question: Question) -> None:
        user = self._user("save_custom_question")
        if user is None:
            return
        doc = {
            "id": question.id,
            "text": question.text,
            "category": question.category,
            "isCustom": bool(question.is_custom),
            "userId": user.uid,
            "createdAt": int(self._clock() * 1000),
        }
        try:
            await self._store.set(self._questions, question.id, doc)
        except Exception as exc:
            logger.error("Store error", operation="save_custom_question", question_id=question.id, error=str(exc))

    async def delete_custom_question(self, question_id: str) -> None:
        if self._user("delete_custom_question") is None:
            return
        try:
            await self._store.delete(self._questions, question_id)
        except Exception as exc:
            logger.error("Store error", operation="delete_custom_question", question_id=question_id, error=str(exc))
