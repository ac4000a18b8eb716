"""Associator — map an enriched entry to grouping ids.

Only ids are produced here; turning them into Chapter objects is the
Orchestrator's job.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from pie.models import EnrichedEntry, EntityKind, Relationship
from pie.text import strip_html
from pie.themes import (
    DEFAULT_THEMES,
    FALLBACK_THEME,
    ThemeDefinition,
    relationship_grouping_id,
    theme_grouping_id,
)

logger = logging.getLogger(__name__)


@dataclass
class Association:
    relationship_grouping_ids: list[str] = field(default_factory=list)
    theme_grouping_ids: list[str] = field(default_factory=list)

    @property
    def all_ids(self) -> list[str]:
        return [*self.relationship_grouping_ids, *self.theme_grouping_ids]


class Associator:
    """Relationship linking + theme classification against an ordered bank."""

    def __init__(self, themes: Sequence[ThemeDefinition] | None = None) -> None:
        self.themes = list(themes) if themes is not None else list(DEFAULT_THEMES)

    def associate_relationships(
        self, entry: EnrichedEntry, relationships: Iterable[Relationship]
    ) -> list[str]:
        """Relationship ids mentioned by name, as a PERSON entity, or referenced explicitly."""
        content = strip_html(entry.content or entry.content_html or "").lower()
        persons = {e.text.lower() for e in entry.entities if e.kind == EntityKind.PERSON}
        explicit = set(entry.relationship_ids)

        matched: list[str] = []
        for rel in relationships:
            if not rel.id:
                continue
            name = rel.name.strip().lower()
            hit = rel.id in explicit or (bool(name) and (name in content or name in persons))
            if hit and rel.id not in matched:
                matched.append(rel.id)
        return matched

    def classify_themes(self, entry: EnrichedEntry) -> list[ThemeDefinition]:
        """Themes whose keyword list intersects the entry's keywords, else the fallback."""
        keywords = set(entry.keywords)
        detected = [theme for theme in self.themes if theme.matches(keywords)]
        return detected or [FALLBACK_THEME]

    def associate(
        self, entry: EnrichedEntry, relationships: Iterable[Relationship] = ()
    ) -> Association:
        association = Association(
            relationship_grouping_ids=[
                relationship_grouping_id(rid)
                for rid in self.associate_relationships(entry, relationships)
            ],
            theme_grouping_ids=list(
                dict.fromkeys(theme_grouping_id(t.id) for t in self.classify_themes(entry))
            ),
        )
        logger.debug("Associated %s -> %s", entry.id, association.all_ids)
        return association
