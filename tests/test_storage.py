"""Tests for the JSON state store."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path

import pytest

from pie.config import PIEConfig
from pie.models import Emotion, RawEntry, Relationship
from pie.orchestrator import Orchestrator
from pie.storage import VERSIONS_KEPT, JsonStateStore, StateStore

NOW = datetime(2024, 3, 31, 12, 0, tzinfo=timezone.utc)


def _rebuilt():
    entries = [
        RawEntry(
            id="e1",
            content="Had coffee with Mike, felt happy and excited",
            created_at=datetime(2024, 3, 29, 9, 0, tzinfo=timezone.utc),
        ),
        RawEntry(
            id="e2",
            content="Office meeting ran late, exhausted",
            created_at=datetime(2024, 3, 30, 18, 0, tzinfo=timezone.utc),
            mood="tired",
        ),
    ]
    return Orchestrator().rebuild_all(entries, relationships=[Relationship("r1", "Mike")], now=NOW)


@pytest.fixture
def store(tmp_path: Path) -> JsonStateStore:
    return JsonStateStore(tmp_path / "state")


class TestJsonStateStore:
    def test_is_a_state_store(self, store: JsonStateStore):
        assert isinstance(store, StateStore)

    def test_from_config_uses_state_dir(self, tmp_path: Path):
        store = JsonStateStore.from_config(PIEConfig(state_dir=tmp_path / "journal"))
        result = _rebuilt()
        store.save_sync(result.state, result.enriched)
        assert store.root == tmp_path / "journal"
        assert store.state_path.exists()

    @pytest.mark.asyncio
    async def test_load_empty(self, store: JsonStateStore):
        stored = await store.load()
        assert stored.state.chapters == {}
        assert stored.state.last_updated_at is None
        assert stored.enriched == {}

    @pytest.mark.asyncio
    async def test_roundtrip(self, store: JsonStateStore):
        result = _rebuilt()
        await store.save(result.state, result.enriched)

        stored = await store.load()
        assert stored.state.membership() == result.state.membership()
        assert stored.state.last_updated_at == NOW
        assert [f.chapter_id for f in stored.state.focus] == [
            f.chapter_id for f in result.state.focus
        ]
        metrics = stored.state.chapters["relationship-r1"].metrics
        assert metrics.total_entries == 1
        assert metrics.emotion_distribution[Emotion.EXCITED] == 1

        entry = stored.enriched["e2"]
        assert entry.primary_emotion == Emotion.TIRED
        assert entry.keywords == result.enriched["e2"].keywords
        assert entry.grouping_ids == result.enriched["e2"].grouping_ids
        assert entry.sentiment == result.enriched["e2"].sentiment

    @pytest.mark.asyncio
    async def test_persisted_shape(self, store: JsonStateStore):
        result = _rebuilt()
        await store.save(result.state, result.enriched)

        data = json.loads(store.state_path.read_text(encoding="utf-8"))
        assert set(data) == {"lastUpdatedAt", "chapters", "storylines", "focus"}
        assert "currentFocusChapters" in data["focus"]
        assert data["lastUpdatedAt"] == "2024-03-31T12:00:00.000Z"
        entries = json.loads(store.entries_path.read_text(encoding="utf-8"))
        assert set(entries) == {"e1", "e2"}

    @pytest.mark.asyncio
    async def test_unreadable_json_loads_empty(self, store: JsonStateStore, caplog):
        store.root.mkdir(parents=True)
        store.state_path.write_text("{not json", encoding="utf-8")
        with caplog.at_level(logging.WARNING, logger="pie.storage"):
            stored = await store.load()
        assert stored.state.chapters == {}
        assert "Unreadable" in caplog.text

    @pytest.mark.asyncio
    async def test_unreadable_items_skipped(self, store: JsonStateStore, caplog):
        result = _rebuilt()
        await store.save(result.state, result.enriched)

        state = json.loads(store.state_path.read_text(encoding="utf-8"))
        state["chapters"]["person-x"] = {"id": "person-x", "type": "person", "entryIds": ["a"]}
        store.state_path.write_text(json.dumps(state), encoding="utf-8")
        entries = json.loads(store.entries_path.read_text(encoding="utf-8"))
        entries["e1"]["metadata"]["sentiment"]["score"] = "very"
        entries["e2"]["metadata"] = ["not", "a", "mapping"]
        store.entries_path.write_text(json.dumps(entries), encoding="utf-8")

        with caplog.at_level(logging.WARNING):
            stored = await store.load()

        assert stored.state.membership() == result.state.membership()
        assert "person-x" not in stored.state.chapters
        assert stored.enriched["e1"].sentiment.score == 0.0
        assert "e2" not in stored.enriched
        assert "Skipping unreadable chapter person-x" in caplog.text
        assert "Skipping unreadable entry e2" in caplog.text

    def test_backups_are_capped(self, store: JsonStateStore):
        result = _rebuilt()
        for _ in range(VERSIONS_KEPT + 3):
            store.save_sync(result.state, result.enriched)

        versions = list((store.root / ".versions").glob("state-*.json"))
        assert 0 < len(versions) <= VERSIONS_KEPT
