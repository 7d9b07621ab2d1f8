"""Tests for lexical lesson recommendations."""

import pytest

from lessonhub.service.recommend import (
    MAX_RECOMMENDATIONS,
    recommend,
    relevance,
    score_lessons,
    similarity_percent,
)
from lessonhub.storage.models import Lesson

PLANT_TEXT = (
    "Photosynthesis lets plants turn sunlight, water and carbon dioxide into "
    "glucose and oxygen."
)
NOISE_TEXT = "1234567890" * 6


def _lesson(title, content, idx=0):
    return Lesson(id=f"lesson-{idx}", title=title, content=content)


class TestSimilarity:
    def test_identical_strings(self):
        assert similarity_percent("Photosynthesis", "photosynthesis") == pytest.approx(100.0)

    def test_disjoint_strings(self):
        assert similarity_percent("abc", "xyz") == 0.0

    def test_empty_strings(self):
        assert similarity_percent("", "") == 0.0
        assert similarity_percent("abc", "") == 0.0

    def test_title_weighs_more_than_content(self):
        title_match = _lesson("photosynthesis", NOISE_TEXT)
        content_match = _lesson(NOISE_TEXT[:14], "photosynthesis")

        assert relevance("photosynthesis", title_match) == pytest.approx(70.0)
        assert relevance("photosynthesis", content_match) == pytest.approx(30.0)


class TestRecommend:
    def test_relevant_lesson_returned(self):
        plants = _lesson("Photosynthesis", PLANT_TEXT, 1)
        noise = _lesson("9876543210", NOISE_TEXT, 2)

        assert recommend("photosynthesis", [noise, plants]) == [plants]

    def test_threshold_is_exclusive(self):
        """A lesson matching only through its content scores exactly 30 and is dropped."""
        content_only = _lesson(NOISE_TEXT[:14], "photosynthesis")
        assert score_lessons("photosynthesis", [content_only]) == []

    def test_nothing_relevant(self):
        assert recommend("photosynthesis", [_lesson("0000", NOISE_TEXT)]) == []
        assert recommend("photosynthesis", []) == []

    def test_at_most_five_best_first(self):
        lessons = [
            _lesson("Photosynthesis" + "!" * i, PLANT_TEXT, i) for i in range(7)
        ]

        picked = recommend("photosynthesis", list(reversed(lessons)))

        assert len(picked) == MAX_RECOMMENDATIONS
        assert [l.id for l in picked] == [f"lesson-{i}" for i in range(5)]
