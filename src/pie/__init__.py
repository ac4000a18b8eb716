"""Personal Intelligence Engine — journal entries in, chapters and insights out."""

from pie.aggregator import Aggregator
from pie.associator import Association, Associator
from pie.atomizer import Atomizer
from pie.config import PIEConfig, load_config, setup_logging
from pie.errors import ConfigError, MalformedEntryError, PIEError
from pie.models import (
    AggregateState,
    Chapter,
    ChapterMetrics,
    Emotion,
    EnrichedEntry,
    FocusChapter,
    GroupingType,
    RawEntry,
    Relationship,
    Storyline,
)
from pie.orchestrator import Orchestrator, ProcessResult, RebuildResult
from pie.prompts import generate_prompts
from pie.session import JournalSession
from pie.storage import JsonStateStore, StateStore, StoredState

__all__ = [
    "AggregateState",
    "Aggregator",
    "Association",
    "Associator",
    "Atomizer",
    "Chapter",
    "ChapterMetrics",
    "ConfigError",
    "Emotion",
    "EnrichedEntry",
    "FocusChapter",
    "GroupingType",
    "JournalSession",
    "JsonStateStore",
    "MalformedEntryError",
    "Orchestrator",
    "PIEConfig",
    "PIEError",
    "ProcessResult",
    "RawEntry",
    "RebuildResult",
    "Relationship",
    "StateStore",
    "StoredState",
    "Storyline",
    "generate_prompts",
    "load_config",
    "setup_logging",
]
