"""Data model for the Personal Intelligence Engine.

Every type serializes to the JSON shape the surrounding app persists
(camelCase keys, ISO-8601 timestamps) via ``to_dict`` and reads it back via
``from_dict``. ``from_dict`` is lenient about optional fields; only
``RawEntry.from_dict`` refuses input it cannot make sense of.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pie.errors import MalformedEntryError

logger = logging.getLogger(__name__)


class Emotion(str, Enum):
    HAPPY = "happy"
    EXCITED = "excited"
    CALM = "calm"
    TIRED = "tired"
    SAD = "sad"
    ANGRY = "angry"


class EntityKind(str, Enum):
    PERSON = "PERSON"
    LOCATION = "LOCATION"
    ORGANIZATION = "ORGANIZATION"
    UNKNOWN = "UNKNOWN"


class GroupingType(str, Enum):
    RELATIONSHIP = "relationship"
    THEME = "theme"


# ── Timestamps ────────────────────────────────────────────────


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 string (or datetime) into an aware UTC datetime.

    Naive values are taken as UTC. Returns None for anything unparsable.
    """
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _timestamp_or_now(value: Any) -> datetime:
    return parse_timestamp(value) or utcnow()


def _number(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


# ── Entries ───────────────────────────────────────────────────


@dataclass
class RawEntry:
    """A journal entry as the author saved it."""

    id: str
    content: str
    created_at: datetime
    mood: str | None = None
    relationship_ids: list[str] = field(default_factory=list)
    title: str = ""
    content_html: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "content": self.content,
            "createdAt": to_iso(self.created_at),
            "mood": self.mood,
            "relationshipIds": list(self.relationship_ids),
        }
        if self.title:
            data["title"] = self.title
        if self.content_html is not None:
            data["contentHTML"] = self.content_html
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RawEntry:
        if not isinstance(data, dict):
            raise MalformedEntryError(f"entry must be a mapping, got {type(data).__name__}")
        entry_id = data.get("id")
        if entry_id is None or str(entry_id).strip() == "":
            raise MalformedEntryError("entry has no id")
        created_at = parse_timestamp(data.get("createdAt", data.get("created_at")))
        if created_at is None:
            raise MalformedEntryError(f"entry {entry_id} has no valid createdAt")

        content = data.get("content")
        html = data.get("contentHTML")
        refs = data.get("relationshipIds", data.get("companionIDs")) or []
        return cls(
            id=str(entry_id),
            content=content if isinstance(content, str) else "",
            created_at=created_at,
            mood=mood_label(data.get("mood")),
            relationship_ids=[str(r) for r in refs if r] if isinstance(refs, list) else [],
            title=data.get("title") if isinstance(data.get("title"), str) else "",
            content_html=html if isinstance(html, str) else None,
        )


def mood_label(value: Any) -> str | None:
    """Normalize a mood given as a plain name or a ``{name|label: ...}`` mapping."""
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, dict):
        for key in ("name", "label"):
            candidate = value.get(key)
            if isinstance(candidate, str) and candidate.strip():
                return candidate.strip()
    return None


@dataclass(frozen=True)
class NamedEntity:
    text: str
    kind: EntityKind = EntityKind.UNKNOWN

    def to_dict(self) -> dict[str, str]:
        return {"text": self.text, "type": self.kind.value}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> NamedEntity:
        try:
            kind = EntityKind(data.get("type", "UNKNOWN"))
        except ValueError:
            kind = EntityKind.UNKNOWN
        return cls(text=str(data.get("text", "")), kind=kind)


@dataclass(frozen=True)
class Sentiment:
    score: float = 0.0
    label: str = "neutral"  # positive | negative | neutral

    def to_dict(self) -> dict[str, Any]:
        return {"score": self.score, "label": self.label}


@dataclass(frozen=True)
class DetectedEmotion:
    """Heuristic emotion, kept even when a user mood overrides it."""

    primary: Emotion = Emotion.CALM
    raw_score: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {"primary": self.primary.value, "score": self.raw_score}


def _emotion(value: Any, default: Emotion = Emotion.CALM) -> Emotion:
    try:
        return Emotion(value)
    except ValueError:
        return default


@dataclass
class EnrichedEntry:
    """A RawEntry plus everything the Atomizer and Associator derived from it."""

    id: str
    content: str
    created_at: datetime
    mood: str | None
    relationship_ids: list[str]
    keywords: list[str]
    entities: list[NamedEntity]
    primary_emotion: Emotion
    detected_emotion: DetectedEmotion
    sentiment: Sentiment
    processed_at: datetime
    grouping_ids: list[str] = field(default_factory=list)
    title: str = ""
    content_html: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "content": self.content,
            "createdAt": to_iso(self.created_at),
            "mood": self.mood,
            "relationshipIds": list(self.relationship_ids),
            "metadata": {
                "processedAt": to_iso(self.processed_at),
                "keywords": list(self.keywords),
                "entities": [e.to_dict() for e in self.entities],
                "primaryEmotion": self.primary_emotion.value,
                "detectedEmotion": self.detected_emotion.to_dict(),
                "sentiment": self.sentiment.to_dict(),
            },
            "chapterIds": list(self.grouping_ids),
        }
        if self.content_html is not None:
            data["contentHTML"] = self.content_html
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EnrichedEntry:
        meta = data.get("metadata") or {}
        detected = meta.get("detectedEmotion") or {}
        sentiment = meta.get("sentiment") or {}
        heuristic = _emotion(detected.get("primary"))
        html = data.get("contentHTML")
        return cls(
            id=str(data.get("id", "")),
            title=data.get("title") or "",
            content=data.get("content") or "",
            content_html=html if isinstance(html, str) else None,
            created_at=_timestamp_or_now(data.get("createdAt")),
            mood=mood_label(data.get("mood")),
            relationship_ids=[str(r) for r in data.get("relationshipIds") or []],
            keywords=[str(k) for k in meta.get("keywords") or []],
            entities=[NamedEntity.from_dict(e) for e in meta.get("entities") or []],
            primary_emotion=_emotion(meta.get("primaryEmotion"), heuristic),
            detected_emotion=DetectedEmotion(heuristic, _number(detected.get("score"))),
            sentiment=Sentiment(
                _number(sentiment.get("score")), sentiment.get("label", "neutral")
            ),
            processed_at=_timestamp_or_now(meta.get("processedAt")),
            grouping_ids=[str(c) for c in data.get("chapterIds") or []],
        )


@dataclass(frozen=True)
class Relationship:
    """A known person from the caller's relationship directory."""

    id: str
    name: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Relationship:
        return cls(id=str(data.get("id", "")), name=str(data.get("name") or ""))


# ── Aggregates ────────────────────────────────────────────────


def empty_distribution() -> dict[Emotion, int]:
    return {emotion: 0 for emotion in Emotion}


@dataclass
class ChapterMetrics:
    total_entries: int
    emotion_distribution: dict[Emotion, int] = field(default_factory=empty_distribution)
    per_week: float = 0.0
    per_month: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalEntries": self.total_entries,
            "emotionDistribution": {e.value: n for e, n in self.emotion_distribution.items()},
            "frequency": {"perWeek": self.per_week, "perMonth": self.per_month},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChapterMetrics:
        distribution = empty_distribution()
        for key, count in (data.get("emotionDistribution") or {}).items():
            try:
                distribution[Emotion(key)] = int(count)
            except (TypeError, ValueError):
                continue
        frequency = data.get("frequency") or {}
        return cls(
            total_entries=int(_number(data.get("totalEntries"))),
            emotion_distribution=distribution,
            per_week=_number(frequency.get("perWeek")),
            per_month=_number(frequency.get("perMonth")),
        )


@dataclass
class Chapter:
    """A grouping of entries keyed by relationship or theme."""

    id: str
    title: str
    type: GroupingType
    entry_ids: list[str]
    created_at: datetime
    last_updated: datetime
    source_id: str = ""
    keywords: list[str] = field(default_factory=list)
    metrics: ChapterMetrics | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "type": self.type.value,
            "entryIds": list(self.entry_ids),
            "createdAt": to_iso(self.created_at),
            "lastUpdated": to_iso(self.last_updated),
            "sourceId": self.source_id,
            "keywords": list(self.keywords),
        }
        if self.metrics is not None:
            data["metrics"] = self.metrics.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Chapter:
        raw_type = data.get("type", "theme")
        # "companion" is how older state files spelled relationship chapters
        if raw_type == "companion":
            raw_type = GroupingType.RELATIONSHIP.value
        metrics = data.get("metrics")
        return cls(
            id=str(data.get("id", "")),
            title=str(data.get("title") or ""),
            type=GroupingType(raw_type),
            entry_ids=list(dict.fromkeys(str(i) for i in data.get("entryIds") or [])),
            created_at=_timestamp_or_now(data.get("createdAt")),
            last_updated=_timestamp_or_now(data.get("lastUpdated")),
            source_id=str(data.get("sourceId") or ""),
            keywords=[str(k) for k in data.get("keywords") or []],
            metrics=ChapterMetrics.from_dict(metrics) if metrics else None,
        )


@dataclass
class Storyline:
    """A run of chronologically close, topically linked entries."""

    id: str
    title: str
    entry_ids: list[str]
    start_date: datetime
    end_date: datetime
    key_keywords: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "entryIds": list(self.entry_ids),
            "startDate": to_iso(self.start_date),
            "endDate": to_iso(self.end_date),
            "keyKeywords": list(self.key_keywords),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Storyline:
        return cls(
            id=str(data.get("id", "")),
            title=str(data.get("title") or ""),
            entry_ids=[str(i) for i in data.get("entryIds") or []],
            start_date=_timestamp_or_now(data.get("startDate")),
            end_date=_timestamp_or_now(data.get("endDate")),
            key_keywords=[str(k) for k in data.get("keyKeywords") or []],
        )


@dataclass(frozen=True)
class FocusChapter:
    chapter_id: str
    score: float
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return {"chapterId": self.chapter_id, "score": self.score, "reason": self.reason}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FocusChapter:
        return cls(
            chapter_id=str(data.get("chapterId", "")),
            score=_number(data.get("score")),
            reason=str(data.get("reason") or ""),
        )


@dataclass
class AggregateState:
    """Root of everything the Orchestrator derives. Passed in and returned, never global."""

    last_updated_at: datetime | None = None
    chapters: dict[str, Chapter] = field(default_factory=dict)
    storylines: list[Storyline] = field(default_factory=list)
    focus: list[FocusChapter] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "lastUpdatedAt": to_iso(self.last_updated_at) if self.last_updated_at else "",
            # Empty chapters are never persisted
            "chapters": {cid: c.to_dict() for cid, c in self.chapters.items() if c.entry_ids},
            "storylines": [s.to_dict() for s in self.storylines],
            "focus": {"currentFocusChapters": [f.to_dict() for f in self.focus]},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AggregateState:
        chapters: dict[str, Chapter] = {}
        for cid, payload in (data.get("chapters") or {}).items():
            try:
                chapter = Chapter.from_dict(payload)
            except (AttributeError, TypeError, ValueError) as e:
                logger.warning("Skipping unreadable chapter %s: %s", cid, e)
                continue
            if chapter.entry_ids:
                chapters[str(cid)] = chapter
        focus = (data.get("focus") or {}).get("currentFocusChapters") or []
        return cls(
            last_updated_at=parse_timestamp(data.get("lastUpdatedAt")),
            chapters=chapters,
            storylines=[
                Storyline.from_dict(s)
                for s in data.get("storylines") or []
                if isinstance(s, dict)
            ],
            focus=[FocusChapter.from_dict(f) for f in focus if isinstance(f, dict)],
        )

    def membership(self) -> dict[str, list[str]]:
        """Chapter id -> member ids, the part of the state two runs must agree on."""
        return {cid: list(c.entry_ids) for cid, c in sorted(self.chapters.items())}
