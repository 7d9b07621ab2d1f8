"""Lexical lesson recommendation.

Scores each lesson by character-level similarity between the question and the
lesson's title and content. Title matches weigh more than content matches.
"""

from __future__ import annotations

from difflib import SequenceMatcher
from typing import Iterable, List, Tuple

from lessonhub.storage.models import Lesson

TITLE_WEIGHT = 0.7
CONTENT_WEIGHT = 0.3
MIN_RELEVANCE = 30.0
MAX_RECOMMENDATIONS = 5


def similarity_percent(a: str, b: str) -> float:
    """Percentage of matching characters between ``a`` and ``b`` (0-100), case-insensitive."""
    a, b = a.lower(), b.lower()
    if not a and not b:
        return 0.0
    return SequenceMatcher(None, a, b, autojunk=False).ratio() * 100


def relevance(question: str, lesson: Lesson) -> float:
    return (
        similarity_percent(question, lesson.title) * TITLE_WEIGHT
        + similarity_percent(question, lesson.content) * CONTENT_WEIGHT
    )


def score_lessons(question: str, lessons: Iterable[Lesson]) -> List[Tuple[Lesson, float]]:
    scored = [(lesson, relevance(question, lesson)) for lesson in lessons]
    return sorted(
        (pair for pair in scored if pair[1] > MIN_RELEVANCE),
        key=lambda pair: pair[1],
        reverse=True,
    )


def recommend(
    question: str, lessons: Iterable[Lesson], *, limit: int = MAX_RECOMMENDATIONS
) -> List[Lesson]:
    return [lesson for lesson, _ in score_lessons(question, lessons)[:limit]]
