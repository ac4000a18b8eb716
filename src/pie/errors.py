"""Exceptions raised inside the engine.

None of these escape the public Orchestrator operations: malformed entries
are skipped during rebuild, and the Atomizer recovers locally. They surface
only from the stricter helpers (``RawEntry.from_dict``, ``load_config``).
"""


class PIEError(Exception):
    """Base class for engine errors."""


class MalformedEntryError(PIEError):
    """An entry could not be coerced into a RawEntry (missing id, bad timestamp)."""


class ConfigError(PIEError):
    """A configuration file exists but cannot be parsed."""
