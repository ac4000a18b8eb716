"""Aggregator — per-chapter metrics, storyline detection, focus ranking.

Every method is a pure function of its arguments. "Now" is always passed in
so that callers (and tests) control the clock.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, replace
from datetime import datetime

from pie.config import FocusConfig, StorylineConfig
from pie.models import (
    AggregateState,
    Chapter,
    ChapterMetrics,
    EnrichedEntry,
    FocusChapter,
    Storyline,
    empty_distribution,
)

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400.0
WEEKS_PER_MONTH = 4.33

HIGH_ACTIVITY_ENTRIES = 10
MODERATE_ACTIVITY_ENTRIES = 5
RECENT_BONUS_THRESHOLD = 3
EMOTIONAL_BONUS_THRESHOLD = 2
DEFAULT_FOCUS_REASON = "High recent activity and engagement"
DEFAULT_STORY_TITLE = "A New Story"
STORY_KEYWORD_COUNT = 3


def _days_between(earlier: datetime, later: datetime) -> float:
    return (later - earlier).total_seconds() / SECONDS_PER_DAY


def _chronological(entries: Iterable[EnrichedEntry]) -> list[EnrichedEntry]:
    return sorted(entries, key=lambda e: (e.created_at, e.id))


@dataclass
class _ChapterScore:
    chapter_id: str
    score: float
    recency_bonus: float
    emotional_bonus: float
    entry_count: int


class Aggregator:
    """Derives metrics, storylines and focus from chapters + enriched entries."""

    def __init__(
        self,
        storylines: StorylineConfig | None = None,
        focus: FocusConfig | None = None,
    ) -> None:
        self.storylines = storylines or StorylineConfig()
        self.focus = focus or FocusConfig()

    # ── Metrics ───────────────────────────────────────────────

    def recompute_metrics(
        self, chapter: Chapter, all_enriched: Mapping[str, EnrichedEntry], now: datetime
    ) -> Chapter:
        """Return a copy of ``chapter`` with fresh metrics."""
        total = len(chapter.entry_ids)
        if total == 0:
            return replace(chapter, metrics=None)

        distribution = empty_distribution()
        for entry_id in chapter.entry_ids:
            entry = all_enriched.get(entry_id)
            if entry is not None:
                distribution[entry.primary_emotion] += 1

        age_days = _days_between(chapter.created_at, now)
        per_week = total / age_days * 7 if age_days > 0 else float(total)

        metrics = ChapterMetrics(
            total_entries=total,
            emotion_distribution=distribution,
            per_week=round(per_week, 2),
            per_month=round(per_week * WEEKS_PER_MONTH, 2),
        )
        return replace(chapter, metrics=metrics)

    def update_metrics_incremental(
        self,
        state: AggregateState,
        chapter_ids: Iterable[str],
        all_enriched: Mapping[str, EnrichedEntry],
        now: datetime,
    ) -> AggregateState:
        """Recompute metrics for the listed chapters only."""
        chapters = dict(state.chapters)
        touched = [cid for cid in dict.fromkeys(chapter_ids) if cid in chapters]
        logger.debug("Incrementally updating metrics for chapters: %s", touched)
        for cid in touched:
            chapters[cid] = self.recompute_metrics(chapters[cid], all_enriched, now)
        return replace(state, chapters=chapters)

    # ── Storylines ────────────────────────────────────────────

    def _continues(self, previous: EnrichedEntry, current: EnrichedEntry) -> bool:
        gap = _days_between(previous.created_at, current.created_at)
        shared = len(set(previous.keywords) & set(current.keywords))
        return (
            gap <= self.storylines.max_gap_days
            and shared >= self.storylines.min_keyword_overlap
        )

    def detect_storylines(self, all_enriched: Mapping[str, EnrichedEntry]) -> list[Storyline]:
        """Group runs of close, keyword-linked entries into storylines.

        A run grows while each next entry is within the gap window of the
        run's last member and shares enough keywords with it. Closed runs
        shorter than ``min_entries`` are dropped.
        """
        storylines: list[Storyline] = []
        run: list[EnrichedEntry] = []

        for entry in _chronological(all_enriched.values()):
            if run and self._continues(run[-1], entry):
                run.append(entry)
                continue
            if len(run) >= self.storylines.min_entries:
                storylines.append(self._storyline_from(run))
            run = [entry]

        if len(run) >= self.storylines.min_entries:
            storylines.append(self._storyline_from(run))
        return storylines

    def _storyline_from(self, run: list[EnrichedEntry]) -> Storyline:
        counts = Counter(keyword for entry in run for keyword in entry.keywords)
        top = [keyword for keyword, _ in counts.most_common(STORY_KEYWORD_COUNT)]
        title = " & ".join(k[:1].upper() + k[1:] for k in top)
        return Storyline(
            id=f"story-{run[0].id}",
            title=title or DEFAULT_STORY_TITLE,
            entry_ids=[e.id for e in run],
            start_date=run[0].created_at,
            end_date=run[-1].created_at,
            key_keywords=top,
        )

    # ── Focus ─────────────────────────────────────────────────

    def _score_chapter(
        self, chapter: Chapter, all_enriched: Mapping[str, EnrichedEntry], now: datetime
    ) -> _ChapterScore:
        cfg = self.focus
        recency_bonus = 0.0
        emotional_bonus = 0.0
        for entry_id in chapter.entry_ids:
            entry = all_enriched.get(entry_id)
            if entry is None:
                continue
            days_ago = max(0.0, _days_between(entry.created_at, now))
            if days_ago <= cfg.recency_days:
                recency_bonus += (cfg.recency_days - days_ago) / cfg.recency_days
            intensity = abs(entry.sentiment.score)
            if intensity > cfg.strong_sentiment:
                emotional_bonus += intensity

        count = len(chapter.entry_ids)
        score = count + recency_bonus * cfg.recency_weight + emotional_bonus * cfg.emotional_weight
        return _ChapterScore(chapter.id, score, recency_bonus, emotional_bonus, count)

    @staticmethod
    def _reason(scored: _ChapterScore) -> str:
        reasons: list[str] = []
        if scored.entry_count >= HIGH_ACTIVITY_ENTRIES:
            reasons.append("High activity")
        elif scored.entry_count >= MODERATE_ACTIVITY_ENTRIES:
            reasons.append("Moderate activity")
        if scored.recency_bonus > RECENT_BONUS_THRESHOLD:
            reasons.append("Recent entries")
        if scored.emotional_bonus > EMOTIONAL_BONUS_THRESHOLD:
            reasons.append("Strong emotional engagement")
        return ", ".join(reasons) if reasons else DEFAULT_FOCUS_REASON

    def rank_focus(
        self, state: AggregateState, all_enriched: Mapping[str, EnrichedEntry], now: datetime
    ) -> list[FocusChapter]:
        """Top chapters by volume + recency + emotional intensity, best first."""
        scored = [
            self._score_chapter(chapter, all_enriched, now)
            for chapter in state.chapters.values()
            if chapter.entry_ids
        ]
        # Score descending, chapter id ascending on ties
        scored.sort(key=lambda s: (-s.score, s.chapter_id))
        return [
            FocusChapter(chapter_id=s.chapter_id, score=round(s.score, 2), reason=self._reason(s))
            for s in scored[: self.focus.count]
        ]

    # ── Full pass ─────────────────────────────────────────────

    def run_full_aggregation(
        self, state: AggregateState, all_enriched: Mapping[str, EnrichedEntry], now: datetime
    ) -> AggregateState:
        logger.info("Running full aggregation over %d chapters", len(state.chapters))
        chapters = {
            cid: self.recompute_metrics(chapter, all_enriched, now)
            for cid, chapter in state.chapters.items()
        }
        updated = replace(state, chapters=chapters)
        return replace(
            updated,
            storylines=self.detect_storylines(all_enriched),
            focus=self.rank_focus(updated, all_enriched, now),
            last_updated_at=now,
        )
