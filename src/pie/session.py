"""Journal session — single-writer wiring of Orchestrator + StateStore.

Responsibilities:
1. Serialize every state mutation behind one lock (the engine itself
   assumes no concurrent calls on the same AggregateState)
2. Load state before, persist state after each operation
3. Carry the caller's relationship directory into the engine
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from typing import Any

from pie.config import PIEConfig
from pie.models import EnrichedEntry, RawEntry, Relationship
from pie.orchestrator import Orchestrator, RebuildResult, coerce_relationships
from pie.storage import JsonStateStore, StateStore, StoredState

logger = logging.getLogger(__name__)


class JournalSession:
    """One user's journal: every save or rebuild runs to completion before the next."""

    def __init__(
        self,
        store: StateStore,
        orchestrator: Orchestrator | None = None,
        relationships: Iterable[Relationship | dict] = (),
    ) -> None:
        self.store = store
        self.orchestrator = orchestrator or Orchestrator()
        self.relationships = coerce_relationships(relationships)
        self._lock = asyncio.Lock()

    @classmethod
    def from_config(
        cls, config: PIEConfig, relationships: Iterable[Relationship | dict] = ()
    ) -> JournalSession:
        """Session over a JsonStateStore rooted at ``config.state_dir``."""
        return cls(JsonStateStore.from_config(config), Orchestrator(config), relationships)

    def set_relationships(self, relationships: Iterable[Relationship | dict]) -> None:
        self.relationships = coerce_relationships(relationships)

    async def snapshot(self) -> StoredState:
        async with self._lock:
            return await self.store.load()

    async def save_entry(
        self, raw: RawEntry | dict[str, Any], user_mood: object = None
    ) -> EnrichedEntry:
        """Process a new or edited entry and persist the result."""
        async with self._lock:
            stored = await self.store.load()
            result = self.orchestrator.process_new_entry(
                raw,
                stored.state,
                stored.enriched,
                user_mood,
                relationships=self.relationships,
            )
            enriched = {**stored.enriched, result.enriched.id: result.enriched}
            await self.store.save(result.state, enriched)
            return result.enriched

    async def rebuild(self, all_raw: Iterable[RawEntry | dict[str, Any]]) -> RebuildResult:
        """Replace the stored state with a full rebuild from ``all_raw``."""
        async with self._lock:
            result = self.orchestrator.rebuild_all(all_raw, relationships=self.relationships)
            await self.store.save(result.state, result.enriched)
            if result.skipped:
                logger.warning("Rebuild skipped %d malformed entries", len(result.skipped))
            return result
