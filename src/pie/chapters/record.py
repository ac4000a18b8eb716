"""Mutable chapter record used by the Grouping Service."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pie.models import GroupingType, parse_timestamp, to_iso, utcnow
from pie.themes import slugify

UNTITLED = "Untitled Chapter"


def normalize_ids(value: Any) -> list[str]:
    """Coerce ids given as strings or ``{"id": ...}`` items into unique strings, order kept."""
    if not value:
        return []
    if isinstance(value, str):
        return [value]
    if not isinstance(value, (list, tuple)):
        return []
    ids: list[str] = []
    for item in value:
        if isinstance(item, dict):
            item = item.get("id")
        if item is None or item == "":
            continue
        if str(item) not in ids:
            ids.append(str(item))
    return ids


@dataclass
class ChapterRecord:
    id: str
    title: str
    type: GroupingType
    entry_ids: list[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
    last_updated: datetime = field(default_factory=utcnow)
    source_id: str | None = None
    keywords: list[str] = field(default_factory=list)

    @staticmethod
    def generate_id(type: GroupingType, candidate: str | None = None) -> str:
        return f"{type.value}-{slugify(candidate or '')}"

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> ChapterRecord:
        raw_type = payload.get("type", GroupingType.THEME.value)
        if raw_type == "companion":
            raw_type = GroupingType.RELATIONSHIP.value
        type = GroupingType(raw_type)
        title = str(payload.get("title") or "").strip() or UNTITLED
        keywords = payload.get("keywords") or []
        source_id = payload.get("sourceId")
        return cls(
            id=str(payload.get("id") or cls.generate_id(type, title)),
            title=title,
            type=type,
            entry_ids=normalize_ids(payload.get("entryIds")),
            created_at=parse_timestamp(payload.get("createdAt")) or utcnow(),
            last_updated=parse_timestamp(payload.get("lastUpdated")) or utcnow(),
            source_id=str(source_id) if source_id else None,
            keywords=list(dict.fromkeys(str(k).lower() for k in keywords))
            if isinstance(keywords, list)
            else [],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "entryIds": list(self.entry_ids),
            "type": self.type.value,
            "lastUpdated": to_iso(self.last_updated),
            "createdAt": to_iso(self.created_at),
            "sourceId": self.source_id,
            "keywords": list(self.keywords),
        }

    def touch(self) -> None:
        self.last_updated = utcnow()

    def add_entry(self, entry_id: str) -> bool:
        """Prepend ``entry_id`` unless already present. Returns True when linked."""
        if not entry_id or entry_id in self.entry_ids:
            return False
        self.entry_ids.insert(0, entry_id)
        self.touch()
        return True
