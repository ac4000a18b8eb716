"""Chapter service — keyword-bank themes + explicit relationship linking.

An entry that references relationships explicitly is filed under those
relationships' chapters; any other entry is classified against the theme
bank, with "Reflections" as the guaranteed fallback. Chapters load lazily
from the ChapterStore and are written back after every change.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Iterable, Sequence
from typing import Any

from pie.chapters.record import ChapterRecord
from pie.chapters.store import ChapterStore
from pie.models import GroupingType, RawEntry, Relationship, parse_timestamp
from pie.text import strip_html
from pie.themes import (
    CHAPTER_THEMES,
    FALLBACK_THEME,
    ThemeDefinition,
    relationship_grouping_id,
    theme_grouping_id,
)

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 60
FALLBACK_KEYWORD_COUNT = 5

STOP_WORDS = frozenset(
    """
    a an the and or but if then with for from into on in out of to at by is are
    was were be been has have had do does did this that these those it its as
    about so very can could should would just up down my i me we our you your
    """.split()
)

_NON_ALNUM_RE = re.compile(r"[^a-z0-9\s]")


def tokenize(text: str | None) -> list[str]:
    if not text:
        return []
    cleaned = _NON_ALNUM_RE.sub(" ", strip_html(text).lower())
    return [t for t in cleaned.split() if t not in STOP_WORDS]


def clamp_title(value: str, max_length: int = MAX_TITLE_LENGTH) -> str:
    if len(value) <= max_length:
        return value
    return f"{value[: max_length - 1]}…"


def _entry_fields(entry: RawEntry | dict[str, Any]) -> tuple[str, str, list[str]]:
    """(id, body, explicit relationship ids) from a RawEntry or a diary dict."""
    if isinstance(entry, RawEntry):
        body = entry.content_html or entry.content or entry.title
        return entry.id, body or "", list(entry.relationship_ids)
    entry_id = entry.get("id")
    body = entry.get("contentHTML") or entry.get("content") or entry.get("title") or ""
    refs = entry.get("relationshipIds", entry.get("companionIDs"))
    return (
        str(entry_id) if entry_id else "",
        body if isinstance(body, str) else "",
        [str(r) for r in refs if r] if isinstance(refs, list) else [],
    )


class ChapterService:
    """Maintains chapter records keyed by id, persisted through a ChapterStore."""

    def __init__(
        self,
        store: ChapterStore,
        relationships: Iterable[Relationship | dict] | None = None,
        themes: Sequence[ThemeDefinition] | None = None,
    ) -> None:
        self.store = store
        self.themes = list(themes) if themes is not None else list(CHAPTER_THEMES)
        self._chapters: list[ChapterRecord] = []
        self._loaded = False
        self._relationships: dict[str, Relationship] = {}
        self.set_relationships(relationships)

    def set_relationships(self, relationships: Iterable[Relationship | dict] | None) -> None:
        self._relationships = {}
        for item in relationships or ():
            rel = item if isinstance(item, Relationship) else Relationship.from_dict(item)
            if rel.id:
                self._relationships[rel.id] = rel

    # ── Loading & persistence ─────────────────────────────────

    async def _ensure_loaded(self) -> list[ChapterRecord]:
        if not self._loaded:
            self._chapters = await asyncio.to_thread(self.store.load_all)
            self._loaded = True
        return self._chapters

    async def _persist(self) -> None:
        await asyncio.to_thread(self.store.save_all, list(self._chapters))

    # ── Chapter upsert ────────────────────────────────────────

    def _upsert_chapter(
        self,
        id: str,
        title: str,
        type: GroupingType,
        source_id: str | None = None,
        keywords: Sequence[str] = (),
    ) -> ChapterRecord:
        existing = next((c for c in self._chapters if c.id == id), None)
        if existing is None:
            record = ChapterRecord(
                id=id,
                title=title,
                type=type,
                source_id=source_id,
                keywords=list(dict.fromkeys(k.lower() for k in keywords)),
            )
            self._chapters.append(record)
            return record

        changed = False
        if title and existing.title != title:
            existing.title = title
            changed = True
        if source_id and existing.source_id != source_id:
            existing.source_id = source_id
            changed = True
        if keywords:
            merged = list(dict.fromkeys([*existing.keywords, *(k.lower() for k in keywords)]))
            if merged != existing.keywords:
                existing.keywords = merged
                changed = True
        if changed:
            existing.touch()
        return existing

    # ── Classification ────────────────────────────────────────

    def detect_theme_chapters(self, body: str) -> list[tuple[str, str, list[str]]]:
        """(chapter id, title, keywords) for every matching theme, or the fallback."""
        tokens = tokenize(body)
        matched = [
            (theme_grouping_id(theme.id), theme.title, list(theme.keywords))
            for theme in self.themes
            if theme.matches(tokens)
        ]
        if matched:
            return matched
        return [
            (
                theme_grouping_id(FALLBACK_THEME.id),
                FALLBACK_THEME.title,
                tokens[:FALLBACK_KEYWORD_COUNT],
            )
        ]

    def _relationship_title(self, relationship_id: str) -> str:
        rel = self._relationships.get(relationship_id)
        if rel and rel.name:
            return clamp_title(rel.name)
        return f"With Companion {relationship_id[-4:]}"

    # ── Public API ────────────────────────────────────────────

    async def process_entry(
        self, entry: RawEntry | dict[str, Any], persist: bool = True
    ) -> list[dict[str, Any]]:
        """File one entry into its chapters. Returns the touched chapters as dicts."""
        if not entry:
            return []
        entry_id, body, relationship_ids = _entry_fields(entry)
        if not entry_id:
            return []

        await self._ensure_loaded()
        touched: list[ChapterRecord] = []
        linked = False

        if relationship_ids:
            for rid in dict.fromkeys(relationship_ids):
                chapter = self._upsert_chapter(
                    id=relationship_grouping_id(rid),
                    title=self._relationship_title(rid),
                    type=GroupingType.RELATIONSHIP,
                    source_id=rid,
                )
                linked = chapter.add_entry(entry_id) or linked
                touched.append(chapter)
        else:
            for chapter_id, title, keywords in self.detect_theme_chapters(body):
                chapter = self._upsert_chapter(
                    id=chapter_id,
                    title=title,
                    type=GroupingType.THEME,
                    source_id=chapter_id,
                    keywords=keywords,
                )
                linked = chapter.add_entry(entry_id) or linked
                touched.append(chapter)

        if linked and persist:
            await self._persist()
        logger.debug("Entry %s filed under %s", entry_id, [c.id for c in touched])
        return [chapter.to_dict() for chapter in touched]

    async def get_chapter_by_id(self, chapter_id: str) -> dict[str, Any] | None:
        if not chapter_id:
            return None
        await self._ensure_loaded()
        found = next((c for c in self._chapters if c.id == chapter_id), None)
        return found.to_dict() if found else None

    async def get_chapters(self) -> list[dict[str, Any]]:
        await self._ensure_loaded()
        return [chapter.to_dict() for chapter in self._chapters]

    async def rebuild_chapters(self, entries: Iterable[RawEntry | dict[str, Any]] = ()) -> None:
        """Drop every chapter and refile ``entries`` oldest first."""
        await self._ensure_loaded()
        self._chapters = []

        def created(entry: RawEntry | dict[str, Any]) -> float:
            value = entry.created_at if isinstance(entry, RawEntry) else entry.get("createdAt")
            ts = parse_timestamp(value)
            return ts.timestamp() if ts else float("-inf")

        ordered = sorted((e for e in entries if e), key=created)
        for entry in ordered:
            await self.process_entry(entry, persist=False)

        # Empty chapters are never persisted
        self._chapters = [c for c in self._chapters if c.entry_ids]
        await self._persist()
        logger.info("Rebuilt %d chapters from %d entries", len(self._chapters), len(ordered))

    async def reset_cache(self) -> None:
        self._loaded = False
        self._chapters = []
