"""Tests for JournalSession wiring."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from pathlib import Path

import pytest

from pie.config import AtomizerConfig, PIEConfig
from pie.models import Emotion, RawEntry
from pie.session import JournalSession
from pie.storage import JsonStateStore


def _raw(entry_id: str, content: str, day: int, mood: str | None = None) -> RawEntry:
    return RawEntry(
        id=entry_id,
        content=content,
        created_at=datetime(2024, 3, day, 9, 0, tzinfo=timezone.utc),
        mood=mood,
    )


@pytest.fixture
def session(tmp_path: Path) -> JournalSession:
    return JournalSession(
        JsonStateStore(tmp_path / "state"), relationships=[{"id": "r1", "name": "Mike"}]
    )


class TestJournalSession:
    @pytest.mark.asyncio
    async def test_save_entry_persists(self, session: JournalSession):
        enriched = await session.save_entry(_raw("e1", "Coffee with Mike at the office", 1))
        assert enriched.grouping_ids == ["relationship-r1", "theme-work"]

        stored = await session.snapshot()
        assert stored.state.membership() == {
            "relationship-r1": ["e1"],
            "theme-work": ["e1"],
        }
        assert set(stored.enriched) == {"e1"}

    @pytest.mark.asyncio
    async def test_user_mood(self, session: JournalSession):
        enriched = await session.save_entry(_raw("e1", "Great day", 1), user_mood="sad")
        assert enriched.primary_emotion == Emotion.SAD

    @pytest.mark.asyncio
    async def test_sequential_saves_accumulate(self, session: JournalSession):
        await session.save_entry(_raw("e1", "office meeting", 1))
        await session.save_entry(_raw("e2", "office deadline", 2))
        stored = await session.snapshot()
        assert stored.state.chapters["theme-work"].entry_ids == ["e2", "e1"]
        assert stored.state.chapters["theme-work"].metrics.total_entries == 2

    @pytest.mark.asyncio
    async def test_concurrent_saves_are_serialized(self, session: JournalSession):
        await asyncio.gather(
            *(session.save_entry(_raw(f"e{i}", "office meeting", i + 1)) for i in range(5))
        )
        stored = await session.snapshot()
        assert sorted(stored.state.chapters["theme-work"].entry_ids) == [
            f"e{i}" for i in range(5)
        ]
        assert len(stored.enriched) == 5

    @pytest.mark.asyncio
    async def test_rebuild_replaces_state(self, session: JournalSession):
        await session.save_entry(_raw("old", "gym session", 1))
        result = await session.rebuild(
            [
                _raw("e1", "office meeting", 2),
                {"id": "e2", "content": "office deadline", "createdAt": "2024-03-03T09:00:00Z"},
                {"content": "missing id", "createdAt": "2024-03-04T09:00:00Z"},
            ]
        )
        assert result.skipped == ["#2"]

        stored = await session.snapshot()
        assert stored.state.membership() == {"theme-work": ["e2", "e1"]}
        assert set(stored.enriched) == {"e1", "e2"}

    @pytest.mark.asyncio
    async def test_set_relationships(self, session: JournalSession):
        session.set_relationships([{"id": "r2", "name": "Anna"}])
        enriched = await session.save_entry(_raw("e1", "Walked with Anna and Mike", 1))
        assert "relationship-r2" in enriched.grouping_ids
        assert "relationship-r1" not in enriched.grouping_ids

    @pytest.mark.asyncio
    async def test_from_config(self, tmp_path: Path):
        config = PIEConfig(state_dir=tmp_path / "journal", atomizer=AtomizerConfig(keyword_limit=2))
        session = JournalSession.from_config(config, relationships=[{"id": "r1", "name": "Mike"}])
        enriched = await session.save_entry(_raw("e1", "Coffee with Mike at the office", 1))

        assert len(enriched.keywords) == 2
        assert "relationship-r1" in enriched.grouping_ids
        assert (tmp_path / "journal").is_dir()
        stored = await JsonStateStore(tmp_path / "journal").load()
        assert set(stored.enriched) == {"e1"}
