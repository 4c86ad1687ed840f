from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass(frozen=True)
class Question:
    id: str
    text: str
    category: str
    is_custom: bool = False


@dataclass(frozen=True)
class GroundingSource:
    uri: str
    title: str


@dataclass(frozen=True)
class AIResponse:
    answer: str
    sources: list[GroundingSource] = field(default_factory=list)


@dataclass(frozen=True)
class CachedEntry:
    question_id: str
    answer: str
    sources: list[GroundingSource]
    timestamp: int  # ms since epoch
    audio_base64: Optional[str] = None

    @property
    def response(self) -> AIResponse:
        return AIResponse(answer=self.answer, sources=list(self.sources))

    def to_document(self) -> dict[str, Any]:
        doc: dict[str, Any] = {
            "questionId": self.question_id,
            "answer": self.answer,
            "sources": [{"web": {"uri": s.uri, "title": s.title}} for s in self.sources],
            "timestamp": int(self.timestamp),
        }
        if self.audio_base64:
            doc["audioBase64"] = self.audio_base64
        return doc

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> "CachedEntry":
        sources: list[GroundingSource] = []
        for raw in doc.get("sources") or []:
            web = (raw or {}).get("web") or {}
            if web.get("uri"):
                sources.append(GroundingSource(uri=str(web["uri"]), title=str(web.get("title", ""))))
        audio = doc.get("audioBase64")
        return cls(
            question_id=str(doc.get("questionId", "")),
            answer=str(doc.get("answer", "")),
            sources=sources,
            timestamp=int(doc.get("timestamp", 0) or 0),
            audio_base64=str(audio) if audio else None,
        )
