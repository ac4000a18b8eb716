"""Tests for metrics, storyline detection and focus ranking."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from pie.aggregator import DEFAULT_FOCUS_REASON, Aggregator
from pie.models import (
    AggregateState,
    Chapter,
    DetectedEmotion,
    Emotion,
    EnrichedEntry,
    GroupingType,
    Sentiment,
)

NOW = datetime(2024, 3, 31, 12, 0, tzinfo=timezone.utc)


def _entry(
    entry_id: str,
    days_ago: float = 0,
    keywords: list[str] | None = None,
    emotion: Emotion = Emotion.CALM,
    sentiment: float = 0.0,
) -> EnrichedEntry:
    created = NOW - timedelta(days=days_ago)
    return EnrichedEntry(
        id=entry_id,
        content="",
        created_at=created,
        mood=None,
        relationship_ids=[],
        keywords=keywords or [],
        entities=[],
        primary_emotion=emotion,
        detected_emotion=DetectedEmotion(emotion, 0.0),
        sentiment=Sentiment(sentiment, "neutral"),
        processed_at=created,
    )


def _chapter(chapter_id: str, entry_ids: list[str], created_days_ago: float = 0) -> Chapter:
    return Chapter(
        id=chapter_id,
        title=chapter_id,
        type=GroupingType.THEME,
        entry_ids=entry_ids,
        created_at=NOW - timedelta(days=created_days_ago),
        last_updated=NOW,
    )


@pytest.fixture
def aggregator() -> Aggregator:
    return Aggregator()


class TestMetrics:
    def test_distribution_and_frequency(self, aggregator: Aggregator):
        entries = {
            "a": _entry("a", emotion=Emotion.HAPPY),
            "b": _entry("b", emotion=Emotion.HAPPY),
            "c": _entry("c", emotion=Emotion.SAD),
            "d": _entry("d", emotion=Emotion.TIRED),
        }
        chapter = _chapter("theme-work", ["a", "b", "c", "d"], created_days_ago=14)
        metrics = aggregator.recompute_metrics(chapter, entries, NOW).metrics

        assert metrics.total_entries == 4
        assert metrics.emotion_distribution[Emotion.HAPPY] == 2
        assert metrics.emotion_distribution[Emotion.SAD] == 1
        assert metrics.emotion_distribution[Emotion.ANGRY] == 0
        assert set(metrics.emotion_distribution) == set(Emotion)
        assert metrics.per_week == 2.0
        assert metrics.per_month == 8.66

    def test_zero_age_uses_total(self, aggregator: Aggregator):
        chapter = _chapter("theme-work", ["a", "b"], created_days_ago=0)
        metrics = aggregator.recompute_metrics(chapter, {"a": _entry("a")}, NOW).metrics
        assert metrics.per_week == 2.0
        assert metrics.per_month == 8.66

    def test_missing_entries_count_toward_total_only(self, aggregator: Aggregator):
        chapter = _chapter("theme-work", ["a", "ghost"], created_days_ago=7)
        metrics = aggregator.recompute_metrics(chapter, {"a": _entry("a")}, NOW).metrics
        assert metrics.total_entries == 2
        assert sum(metrics.emotion_distribution.values()) == 1

    def test_incremental_touches_only_listed(self, aggregator: Aggregator):
        state = AggregateState(
            chapters={
                "theme-a": _chapter("theme-a", ["a"]),
                "theme-b": _chapter("theme-b", ["a"]),
            }
        )
        updated = aggregator.update_metrics_incremental(
            state, ["theme-a", "theme-missing"], {"a": _entry("a")}, NOW
        )
        assert updated.chapters["theme-a"].metrics is not None
        assert updated.chapters["theme-b"].metrics is None
        assert state.chapters["theme-a"].metrics is None


class TestStorylines:
    def test_gap_rule(self, aggregator: Aggregator):
        entries = {
            "d1": _entry("d1", days_ago=20, keywords=["garden", "tomatoes", "rain"]),
            "d2": _entry("d2", days_ago=19, keywords=["garden", "tomatoes", "basil"]),
            "d4": _entry("d4", days_ago=17, keywords=["garden", "tomatoes", "harvest"]),
            "d14": _entry("d14", days_ago=7, keywords=["garden", "tomatoes", "harvest"]),
        }
        storylines = aggregator.detect_storylines(entries)

        assert len(storylines) == 1
        story = storylines[0]
        assert story.entry_ids == ["d1", "d2", "d4"]
        assert story.id == "story-d1"
        assert story.start_date == entries["d1"].created_at
        assert story.end_date == entries["d4"].created_at
        # Equal counts keep first-seen order
        assert story.key_keywords == ["garden", "tomatoes", "rain"]
        assert story.title == "Garden & Tomatoes & Rain"

    def test_second_run_after_gap(self, aggregator: Aggregator):
        shared = ["garden", "tomatoes"]
        entries = {
            eid: _entry(eid, days_ago=days, keywords=shared)
            for eid, days in [("a", 30), ("b", 29), ("c", 28), ("x", 10), ("y", 9), ("z", 8)]
        }
        storylines = aggregator.detect_storylines(entries)
        assert [s.entry_ids for s in storylines] == [["a", "b", "c"], ["x", "y", "z"]]

    def test_one_shared_keyword_breaks_run(self, aggregator: Aggregator):
        entries = {
            "a": _entry("a", days_ago=3, keywords=["garden", "tomatoes"]),
            "b": _entry("b", days_ago=2, keywords=["garden", "basil"]),
            "c": _entry("c", days_ago=1, keywords=["garden", "basil"]),
        }
        assert aggregator.detect_storylines(entries) == []

    def test_empty(self, aggregator: Aggregator):
        assert aggregator.detect_storylines({}) == []


class TestFocus:
    def test_bound_and_ordering(self, aggregator: Aggregator):
        entries = {f"e{i}": _entry(f"e{i}", days_ago=i) for i in range(10)}
        chapters = {
            f"theme-{n}": _chapter(f"theme-{n}", [f"e{i}" for i in range(n)])
            for n in range(1, 6)
        }
        focus = aggregator.rank_focus(AggregateState(chapters=chapters), entries, NOW)

        assert len(focus) <= 3
        scores = [f.score for f in focus]
        assert scores == sorted(scores, reverse=True)
        assert focus[0].chapter_id == "theme-5"

    def test_ties_broken_by_id(self, aggregator: Aggregator):
        entries = {"a": _entry("a", days_ago=30), "b": _entry("b", days_ago=30)}
        chapters = {
            "theme-zeta": _chapter("theme-zeta", ["a"]),
            "theme-alpha": _chapter("theme-alpha", ["b"]),
        }
        focus = aggregator.rank_focus(AggregateState(chapters=chapters), entries, NOW)
        assert [f.chapter_id for f in focus] == ["theme-alpha", "theme-zeta"]
        assert focus[0].score == 1.0
        assert focus[0].reason == DEFAULT_FOCUS_REASON

    def test_recency_score(self, aggregator: Aggregator):
        chapters = {"theme-a": _chapter("theme-a", ["a"])}
        focus = aggregator.rank_focus(AggregateState(chapters=chapters), {"a": _entry("a")}, NOW)
        assert focus[0].score == 2.5

    def test_reasons(self, aggregator: Aggregator):
        entries = {f"e{i}": _entry(f"e{i}", sentiment=0.8) for i in range(10)}
        chapters = {"theme-a": _chapter("theme-a", list(entries))}
        focus = aggregator.rank_focus(AggregateState(chapters=chapters), entries, NOW)
        assert focus[0].reason == (
            "High activity, Recent entries, Strong emotional engagement"
        )

    def test_empty_chapters_skipped(self, aggregator: Aggregator):
        chapters = {"theme-a": _chapter("theme-a", [])}
        assert aggregator.rank_focus(AggregateState(chapters=chapters), {}, NOW) == []


class TestFullAggregation:
    def test_stamps_and_fills_everything(self, aggregator: Aggregator):
        entries = {"a": _entry("a", days_ago=1)}
        state = AggregateState(chapters={"theme-a": _chapter("theme-a", ["a"], 1)})
        result = aggregator.run_full_aggregation(state, entries, NOW)

        assert result.last_updated_at == NOW
        assert result.chapters["theme-a"].metrics.total_entries == 1
        assert [f.chapter_id for f in result.focus] == ["theme-a"]
        assert result.storylines == []
        assert state.last_updated_at is None
