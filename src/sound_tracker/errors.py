"""Exceptions raised by the collection and enrichment pipeline."""

from typing import Dict, Optional


class SourceError(Exception):
    """A source adapter could not produce a usable top list."""


class AllSourcesFailed(SourceError):
    """Every source in the cascade failed."""

    def __init__(self, errors: Dict[str, str]):
        self.errors = errors
        detail = "; ".join(f"{name}: {msg}" for name, msg in errors.items())
        super().__init__(f"All sources failed ({detail})" if detail else "All sources failed")


class EnrichmentError(Exception):
    """The metadata pass failed, so no enrichment data is available."""


class SoundNotFound(Exception):
    """No sound is stored under the requested id."""

    def __init__(self, sound_id: str):
        self.sound_id = sound_id
        super().__init__(f"Sound not found: {sound_id}")


class RunInProgress(Exception):
    """Another collection or enrichment run holds the coordinator lock."""

    def __init__(self, active: Optional[str] = None):
        self.active = active
        super().__init__(f"A {active or 'run'} is already in progress")
