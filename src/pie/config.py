"""Configuration loading from environment variables and pie.toml."""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass, field

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib
from pathlib import Path

from pie.errors import ConfigError
from pie.themes import ThemeDefinition

_DEFAULT_STATE_DIR = Path.home() / ".pie" / "state"
_CONFIG_FILENAME = "pie.toml"


@dataclass
class AtomizerConfig:
    """Enrichment settings."""

    keyword_limit: int = 10


@dataclass
class StorylineConfig:
    """Storyline detection thresholds."""

    max_gap_days: float = 3
    min_entries: int = 3
    min_keyword_overlap: int = 2


@dataclass
class FocusConfig:
    """Focus ranking weights and thresholds."""

    count: int = 3
    recency_days: float = 7
    recency_weight: float = 1.5
    emotional_weight: float = 1.2
    strong_sentiment: float = 0.5


@dataclass
class PIEConfig:
    """Top-level engine configuration."""

    atomizer: AtomizerConfig = field(default_factory=AtomizerConfig)
    storylines: StorylineConfig = field(default_factory=StorylineConfig)
    focus: FocusConfig = field(default_factory=FocusConfig)
    # None means the built-in theme bank
    themes: list[ThemeDefinition] | None = None
    state_dir: Path = _DEFAULT_STATE_DIR
    log_level: str = "INFO"


def _read_toml(path: Path) -> dict:
    try:
        return tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid {path}: {e}") from e


def _parse_themes(raw: list) -> list[ThemeDefinition]:
    themes: list[ThemeDefinition] = []
    for item in raw:
        if not isinstance(item, dict) or not item.get("id"):
            raise ConfigError(f"Theme entries need an id, got {item!r}")
        themes.append(
            ThemeDefinition(
                id=str(item["id"]),
                title=str(item.get("title") or str(item["id"]).capitalize()),
                keywords=tuple(str(k).lower() for k in item.get("keywords", [])),
            )
        )
    return themes


def load_config(config_path: Path | None = None) -> PIEConfig:
    """Load configuration from environment variables and optional pie.toml.

    Priority: environment variables > pie.toml > defaults.
    """
    file_data: dict = {}
    if config_path and config_path.exists():
        file_data = _read_toml(config_path)
    else:
        # Search current dir and ~/.pie/
        for candidate in [Path.cwd() / _CONFIG_FILENAME, Path.home() / ".pie" / _CONFIG_FILENAME]:
            if candidate.exists():
                file_data = _read_toml(candidate)
                break

    atomizer_data = file_data.get("atomizer", {})
    storyline_data = file_data.get("storylines", {})
    focus_data = file_data.get("focus", {})
    themes_data = file_data.get("themes")

    config = PIEConfig(
        atomizer=AtomizerConfig(
            keyword_limit=int(
                os.getenv("PIE_KEYWORD_LIMIT", atomizer_data.get("keyword_limit", 10))
            ),
        ),
        storylines=StorylineConfig(
            max_gap_days=float(storyline_data.get("max_gap_days", 3)),
            min_entries=int(storyline_data.get("min_entries", 3)),
            min_keyword_overlap=int(storyline_data.get("min_keyword_overlap", 2)),
        ),
        focus=FocusConfig(
            count=int(os.getenv("PIE_FOCUS_COUNT", focus_data.get("count", 3))),
            recency_days=float(focus_data.get("recency_days", 7)),
            recency_weight=float(focus_data.get("recency_weight", 1.5)),
            emotional_weight=float(focus_data.get("emotional_weight", 1.2)),
            strong_sentiment=float(focus_data.get("strong_sentiment", 0.5)),
        ),
        themes=_parse_themes(themes_data) if themes_data is not None else None,
        state_dir=Path(
            os.getenv("PIE_STATE_DIR", file_data.get("state_dir", str(_DEFAULT_STATE_DIR)))
        ),
        log_level=os.getenv("PIE_LOG_LEVEL", file_data.get("log_level", "INFO")),
    )
    return config


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
