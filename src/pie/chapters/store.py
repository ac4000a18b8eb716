"""Markdown + YAML frontmatter persistence for Grouping Service chapters."""

from __future__ import annotations

import logging
import re
from pathlib import Path

import frontmatter

from pie.chapters.record import ChapterRecord

logger = logging.getLogger(__name__)


class ChapterStore:
    """One ``<id>.md`` per chapter. Frontmatter is the source of truth."""

    def __init__(self, root: Path) -> None:
        self.root = root

    def _filename(self, chapter_id: str) -> str:
        """Strip characters illegal in file names."""
        slug = re.sub(r'[<>:"/\\|?*\n\r\t ]', "", chapter_id)
        return f"{slug or 'unnamed'}.md"

    def _render(self, record: ChapterRecord) -> str:
        post = frontmatter.Post(f"# {record.title}\n", **record.to_dict())
        return frontmatter.dumps(post) + "\n"

    def load_all(self) -> list[ChapterRecord]:
        """Read every chapter file. Unreadable files are skipped with a warning."""
        if not self.root.is_dir():
            return []
        records: list[ChapterRecord] = []
        for md_file in sorted(self.root.glob("*.md")):
            try:
                post = frontmatter.load(str(md_file))
                meta = dict(post.metadata)
                if not meta.get("id"):
                    logger.warning("Chapter file %s has no id, skipping", md_file)
                    continue
                records.append(ChapterRecord.from_dict(meta))
            except Exception as e:
                logger.warning("Failed to load chapter %s: %s", md_file, e)
        return records

    def save_all(self, records: list[ChapterRecord]) -> None:
        """Rewrite the directory so it holds exactly ``records``."""
        self.root.mkdir(parents=True, exist_ok=True)
        wanted: set[str] = set()
        for record in records:
            name = self._filename(record.id)
            wanted.add(name)
            (self.root / name).write_text(self._render(record), encoding="utf-8")
        for stale in self.root.glob("*.md"):
            if stale.name not in wanted:
                stale.unlink()
        logger.info("Persisted %d chapters to %s", len(records), self.root)
