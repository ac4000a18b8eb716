"""Orchestrator — the PIE coordinator.

Two entry points over AggregateState:
1. process_new_entry — fold one entry into the state, refresh metrics of the
   chapters it touched
2. rebuild_all — discard everything, replay every entry chronologically
   from empty, then run one full aggregation

Both paths share the same fold, so replaying entries one by one through
process_new_entry in chronological order yields the same chapter
membership as rebuild_all. The state is a value: every call returns a new
AggregateState and leaves its inputs untouched.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any

from pie.aggregator import Aggregator
from pie.associator import Associator
from pie.atomizer import Atomizer, with_groupings
from pie.config import PIEConfig
from pie.errors import MalformedEntryError
from pie.models import (
    AggregateState,
    Chapter,
    EnrichedEntry,
    GroupingType,
    RawEntry,
    Relationship,
    parse_timestamp,
    utcnow,
)
from pie.themes import find_theme

logger = logging.getLogger(__name__)


@dataclass
class ProcessResult:
    state: AggregateState
    enriched: EnrichedEntry


@dataclass
class RebuildResult:
    state: AggregateState
    enriched: dict[str, EnrichedEntry] = field(default_factory=dict)
    # Ids (or positions, when no id was readable) of entries left out
    skipped: list[str] = field(default_factory=list)


def coerce_relationships(relationships: Iterable[Relationship | dict]) -> list[Relationship]:
    return [r if isinstance(r, Relationship) else Relationship.from_dict(r) for r in relationships]


def coerce_raw_entry(
    item: RawEntry | dict[str, Any], fallback_created_at: datetime | None = None
) -> RawEntry:
    """Accept a RawEntry or its dict form; raise MalformedEntryError otherwise.

    Timestamps may be datetimes or ISO strings and come back aware UTC. When
    ``fallback_created_at`` is given, an unparsable timestamp is replaced by
    it instead of rejecting the entry.
    """
    if not isinstance(item, RawEntry):
        item = _raw_from_dict(item, fallback_created_at)
    if not item.id:
        raise MalformedEntryError("entry has no id")
    created_at = parse_timestamp(item.created_at)
    if created_at is None:
        if fallback_created_at is None:
            raise MalformedEntryError(f"entry {item.id!r} has no valid createdAt")
        logger.warning("Entry %s has no valid createdAt, using %s", item.id, fallback_created_at)
        created_at = fallback_created_at
    return replace(item, created_at=created_at)


def _raw_from_dict(item: Any, fallback_created_at: datetime | None) -> RawEntry:
    if fallback_created_at is not None and isinstance(item, dict):
        if parse_timestamp(item.get("createdAt", item.get("created_at"))) is None:
            item = {**item, "createdAt": fallback_created_at}
    return RawEntry.from_dict(item)


class Orchestrator:
    """Drives Atomizer -> Associator -> Aggregator over an AggregateState."""

    def __init__(
        self,
        config: PIEConfig | None = None,
        *,
        atomizer: Atomizer | None = None,
        associator: Associator | None = None,
        aggregator: Aggregator | None = None,
    ) -> None:
        self.config = config or PIEConfig()
        self.atomizer = atomizer or Atomizer(keyword_limit=self.config.atomizer.keyword_limit)
        self.associator = associator or Associator(themes=self.config.themes)
        self.aggregator = aggregator or Aggregator(
            storylines=self.config.storylines, focus=self.config.focus
        )

    # ── Chapter materialization ──────────────────────────────

    def _create_chapter(
        self,
        chapter_id: str,
        entry: EnrichedEntry,
        directory: Mapping[str, Relationship],
        now: datetime,
    ) -> Chapter:
        type_name, _, source_id = chapter_id.partition("-")
        if type_name == GroupingType.RELATIONSHIP.value:
            rel = directory.get(source_id)
            return Chapter(
                id=chapter_id,
                title=rel.name if rel and rel.name else f"Relationship {source_id}",
                type=GroupingType.RELATIONSHIP,
                entry_ids=[entry.id],
                created_at=entry.created_at,
                last_updated=now,
                source_id=source_id,
            )

        theme = find_theme(self.associator.themes, chapter_id)
        return Chapter(
            id=chapter_id,
            title=theme.title if theme else source_id.capitalize(),
            type=GroupingType.THEME,
            entry_ids=[entry.id],
            created_at=entry.created_at,
            last_updated=now,
            source_id=theme.id if theme else source_id,
            keywords=list(theme.keywords) if theme else [],
        )

    # ── The fold shared by both paths ─────────────────────────

    def _fold(
        self,
        raw: RawEntry,
        chapters: Mapping[str, Chapter],
        mood: object,
        relationships: list[Relationship],
        now: datetime,
    ) -> tuple[EnrichedEntry, dict[str, Chapter], list[str]]:
        """Enrich + associate one entry and fold it into a copy of ``chapters``.

        Re-folding an id that is already a member replaces it: chapters that
        still match keep it where it is, chapters that stopped matching
        drop it (and vanish when emptied), new matches get it prepended.
        Returns the enriched entry, the new chapter map and the ids of the
        chapters that changed.
        """
        enriched = self.atomizer.enrich(raw, mood, now=now)
        target_ids = self.associator.associate(enriched, relationships).all_ids
        directory = {r.id: r for r in relationships}

        updated = dict(chapters)
        touched: list[str] = []

        for cid, chapter in chapters.items():
            if cid in target_ids or raw.id not in chapter.entry_ids:
                continue
            remaining = [eid for eid in chapter.entry_ids if eid != raw.id]
            if remaining:
                updated[cid] = replace(chapter, entry_ids=remaining, last_updated=now)
                touched.append(cid)
            else:
                del updated[cid]
            logger.debug("Entry %s no longer belongs to %s", raw.id, cid)

        for cid in target_ids:
            chapter = updated.get(cid)
            if chapter is None:
                updated[cid] = self._create_chapter(cid, enriched, directory, now)
                logger.debug("Created chapter %s for entry %s", cid, raw.id)
            elif raw.id not in chapter.entry_ids:
                updated[cid] = replace(
                    chapter, entry_ids=[raw.id, *chapter.entry_ids], last_updated=now
                )
            touched.append(cid)

        return with_groupings(enriched, target_ids), updated, touched

    # ── Incremental path ──────────────────────────────────────

    def process_new_entry(
        self,
        raw: RawEntry | dict[str, Any],
        state: AggregateState,
        all_enriched: Mapping[str, EnrichedEntry],
        user_mood: object = None,
        *,
        relationships: Iterable[Relationship | dict] = (),
        now: datetime | None = None,
    ) -> ProcessResult:
        """Fold one new (or edited) entry into ``state``.

        ``user_mood`` overrides the entry's own mood label; either one, when
        it names a known emotion, beats the lexicon heuristic. An entry whose
        timestamp cannot be read is stamped with ``now``.
        """
        now = now or utcnow()
        raw = coerce_raw_entry(raw, fallback_created_at=now)
        mood = user_mood if user_mood is not None else raw.mood
        enriched, chapters, touched = self._fold(
            raw, state.chapters, mood, coerce_relationships(relationships), now
        )

        entries = {**all_enriched, enriched.id: enriched}
        updated = replace(state, chapters=chapters, last_updated_at=now)
        updated = self.aggregator.update_metrics_incremental(updated, touched, entries, now)
        logger.info("Processed entry %s into %d chapters", raw.id, len(enriched.grouping_ids))
        return ProcessResult(state=updated, enriched=enriched)

    # ── Rebuild path ──────────────────────────────────────────

    def rebuild_all(
        self,
        all_raw: Iterable[RawEntry | dict[str, Any]],
        *,
        relationships: Iterable[Relationship | dict] = (),
        now: datetime | None = None,
    ) -> RebuildResult:
        """Recompute the whole state from the entry corpus.

        Malformed entries are skipped with a warning. When an id appears more
        than once, the last occurrence wins.
        """
        now = now or utcnow()
        directory = coerce_relationships(relationships)

        raws: dict[str, RawEntry] = {}
        skipped: list[str] = []
        for position, item in enumerate(all_raw):
            try:
                raw = coerce_raw_entry(item)
            except MalformedEntryError as e:
                label = item.get("id") if isinstance(item, dict) else None
                skipped.append(str(label or f"#{position}"))
                logger.warning("Skipping malformed entry at position %d: %s", position, e)
                continue
            raws.pop(raw.id, None)
            raws[raw.id] = raw

        logger.info("Rebuilding all chapters from %d entries", len(raws))

        chapters: dict[str, Chapter] = {}
        enriched: dict[str, EnrichedEntry] = {}
        for raw in sorted(raws.values(), key=lambda r: (r.created_at, r.id)):
            entry, chapters, _ = self._fold(raw, chapters, raw.mood, directory, now)
            enriched[entry.id] = entry

        state = AggregateState(
            chapters={cid: c for cid, c in chapters.items() if c.entry_ids},
        )
        state = self.aggregator.run_full_aggregation(state, enriched, now)
        logger.info(
            "Rebuild complete: %d chapters, %d storylines, %d skipped",
            len(state.chapters),
            len(state.storylines),
            len(skipped),
        )
        return RebuildResult(state=state, enriched=enriched, skipped=skipped)
