"""Persistence boundary for AggregateState and the enriched-entry map.

The engine itself never does I/O; callers wire a StateStore in. Layout of
the bundled JSON implementation:

    <root>/
    ├── state.json      # {lastUpdatedAt, chapters, storylines, focus}
    ├── entries.json    # entryId -> EnrichedEntry
    └── .versions/      # timestamped backups (10 per file)

Loads are forgiving (missing or unreadable files give an empty state);
save errors propagate and are never retried here.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Protocol, runtime_checkable

from pie.config import PIEConfig
from pie.models import AggregateState, EnrichedEntry

logger = logging.getLogger(__name__)

STATE_FILE = "state.json"
ENTRIES_FILE = "entries.json"
VERSIONS_KEPT = 10


@dataclass
class StoredState:
    state: AggregateState = field(default_factory=AggregateState)
    enriched: dict[str, EnrichedEntry] = field(default_factory=dict)


@runtime_checkable
class StateStore(Protocol):
    """Protocol for anything that can load and save engine state."""

    async def load(self) -> StoredState:
        """Load the last saved state (empty when nothing was saved)."""
        ...

    async def save(self, state: AggregateState, enriched: dict[str, EnrichedEntry]) -> None:
        """Persist state and enriched entries."""
        ...


class JsonStateStore:
    """StateStore backed by two JSON files in a directory."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self.state_path = root / STATE_FILE
        self.entries_path = root / ENTRIES_FILE

    @classmethod
    def from_config(cls, config: PIEConfig) -> JsonStateStore:
        return cls(config.state_dir)

    # ── Load ──────────────────────────────────────────────────

    def _read_json(self, path: Path) -> dict:
        if not path.exists():
            return {}
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Unreadable %s, starting empty: %s", path, e)
            return {}
        if not isinstance(data, dict):
            logger.warning("Unexpected content in %s, starting empty", path)
            return {}
        return data

    def load_sync(self) -> StoredState:
        state = AggregateState.from_dict(self._read_json(self.state_path))
        enriched: dict[str, EnrichedEntry] = {}
        for eid, payload in self._read_json(self.entries_path).items():
            try:
                enriched[str(eid)] = EnrichedEntry.from_dict(payload)
            except (AttributeError, TypeError, ValueError) as e:
                logger.warning("Skipping unreadable entry %s: %s", eid, e)
        return StoredState(state=state, enriched=enriched)

    async def load(self) -> StoredState:
        return await asyncio.to_thread(self.load_sync)

    # ── Save ──────────────────────────────────────────────────

    def _backup(self, path: Path) -> None:
        """Backup to .versions/, keep at most VERSIONS_KEPT per file."""
        if not path.exists():
            return
        versions_dir = self.root / ".versions"
        versions_dir.mkdir(exist_ok=True)
        ts = datetime.now().strftime("%Y%m%dT%H%M%S%f")
        (versions_dir / f"{path.stem}-{ts}.json").write_text(
            path.read_text(encoding="utf-8"), encoding="utf-8"
        )
        old = sorted(versions_dir.glob(f"{path.stem}-*.json"))
        for f in old[:-VERSIONS_KEPT]:
            f.unlink()

    def _write(self, path: Path, payload: dict) -> None:
        self._backup(path)
        tmp = path.with_suffix(".tmp")
        tmp.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
        tmp.replace(path)

    def save_sync(self, state: AggregateState, enriched: dict[str, EnrichedEntry]) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        self._write(self.state_path, state.to_dict())
        self._write(self.entries_path, {eid: e.to_dict() for eid, e in enriched.items()})
        logger.info("Saved state: %d chapters, %d entries", len(state.chapters), len(enriched))

    async def save(self, state: AggregateState, enriched: dict[str, EnrichedEntry]) -> None:
        await asyncio.to_thread(self.save_sync, state, enriched)
