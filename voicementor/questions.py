from __future__ import annotations

import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Optional

import yaml

from voicementor.types import Question

ALL_CATEGORY = "All"
CUSTOM_CATEGORY = "Advanced & Coding"

DEFAULT_BANK_PATH = Path(__file__).with_name("questions.yaml")


@dataclass(frozen=True)
class QuestionBank:
    categories: list[str]
    questions: list[Question]

    @property
    def all_categories(self) -> list[str]:
        return [ALL_CATEGORY] + list(self.categories)

    def find(self, question_id: str) -> Optional[Question]:
        for q in self.questions:
            if q.id == question_id:
                return q
        return None


def load_question_bank(path: Optional[Path] = None) -> QuestionBank:
    path = Path(path) if path else DEFAULT_BANK_PATH
    if not path.exists():
        raise FileNotFoundError(str(path))

    raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"Question bank must be a mapping: {path}")

    questions: list[Question] = []
    for item in raw.get("questions", []) or []:
        if not item or not item.get("id") or not item.get("text"):
            continue
        questions.append(
            Question(
                id=str(item["id"]),
                text=str(item["text"]).strip(),
                category=str(item.get("category", CUSTOM_CATEGORY)),
            )
        )

    categories = [str(c) for c in (raw.get("categories") or [])]
    for q in questions:
        if q.category not in categories:
            categories.append(q.category)
    return QuestionBank(categories=categories, questions=questions)


def filter_by_category(questions: Iterable[Question], category: str) -> list[Question]:
    return [q for q in questions if category == ALL_CATEGORY or q.category == category]


def merge_questions(custom: Iterable[Question], default: Iterable[Question]) -> list[Question]:
    return list(custom) + list(default)


def new_custom_question(text: str, *, clock: Callable[[], float] = time.time) -> Question:
    text = text.strip()
    if not text:
        raise ValueError("Question text is empty")
    return Question(
        id=f"custom-{int(clock() * 1000)}",
        text=text,
        category=CUSTOM_CATEGORY,
        is_custom=True,
    )
