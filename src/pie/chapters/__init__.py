"""Grouping Service — the secondary, independently persisted chapter view.

Layout:
    <root>/
    ├── theme-work.md                  # One file per chapter, YAML frontmatter
    ├── relationship-r1.md             #   holds id/title/type/entryIds/...
    └── ...

Independent of the Orchestrator's AggregateState: it has its own theme bank,
its own tokenizer, and attributes an entry either to the relationships it
explicitly references or to themes, never both. Exposing this view and the
Orchestrator's chapters to the same caller can therefore show different
groupings for the same entry.
"""

from pie.chapters.record import ChapterRecord
from pie.chapters.service import ChapterService
from pie.chapters.store import ChapterStore

__all__ = ["ChapterRecord", "ChapterService", "ChapterStore"]
