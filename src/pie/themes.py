"""Theme keyword banks.

A bank is an ordered list of ThemeDefinition records. Classification is a
set intersection against each record in order, so banks can be swapped
(caller-supplied or loaded from pie.toml) without touching the classifiers.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass


@dataclass(frozen=True)
class ThemeDefinition:
    id: str
    title: str
    keywords: tuple[str, ...] = ()

    def matches(self, tokens: Iterable[str]) -> bool:
        return not set(self.keywords).isdisjoint(tokens)


FALLBACK_THEME = ThemeDefinition("reflections", "Reflections")

# Bank used by the Associator
DEFAULT_THEMES: list[ThemeDefinition] = [
    ThemeDefinition(
        "work", "Work", ("work", "project", "clients", "deadline", "meeting", "office", "google")
    ),
    ThemeDefinition(
        "wellness",
        "Wellness",
        ("health", "exercise", "fitness", "gym", "run", "meditation", "yoga", "running"),
    ),
    ThemeDefinition(
        "relationships",
        "Relationships",
        ("family", "friend", "partner", "love", "date", "mom", "dad"),
    ),
    ThemeDefinition(
        "learning", "Learning", ("study", "learn", "book", "read", "course", "class", "school")
    ),
    ThemeDefinition(
        "travel", "Travel", ("trip", "travel", "flight", "hotel", "vacation", "journey", "train")
    ),
]

# Bank used by the Grouping Service (pie.chapters)
CHAPTER_THEMES: list[ThemeDefinition] = [
    ThemeDefinition("work", "Work", ("work", "project", "clients", "deadline", "meeting", "office")),
    ThemeDefinition(
        "wellness", "Wellness", ("health", "exercise", "fitness", "gym", "run", "meditation", "yoga")
    ),
    ThemeDefinition(
        "relationships",
        "Relationships",
        ("family", "friend", "partner", "love", "date", "mom", "dad"),
    ),
    ThemeDefinition(
        "learning", "Learning", ("study", "learn", "book", "read", "course", "class", "school")
    ),
    ThemeDefinition(
        "travel", "Travel", ("trip", "travel", "flight", "hotel", "vacation", "journey", "train")
    ),
]


def slugify(value: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")
    return slug or "chapter"


def theme_grouping_id(theme_id: str) -> str:
    return f"theme-{slugify(theme_id)}"


def relationship_grouping_id(relationship_id: str) -> str:
    return f"relationship-{relationship_id}"


def find_theme(bank: Iterable[ThemeDefinition], grouping_id: str) -> ThemeDefinition | None:
    """Look up the theme behind a ``theme-<slug>`` grouping id, fallback included."""
    for theme in [*bank, FALLBACK_THEME]:
        if theme_grouping_id(theme.id) == grouping_id:
            return theme
    return None
