"""Ordered fallback across sound sources: the first non-empty result wins."""

import logging
from typing import Dict, List, Sequence, Tuple

from .errors import AllSourcesFailed
from .models import CollectedSound
from .sources import SoundSource

logger = logging.getLogger(__name__)


class SourceCascade:
    """Tries each source in priority order and never merges results."""

    def __init__(self, sources: Sequence[SoundSource]):
        self.sources = list(sources)

    @property
    def names(self) -> List[str]:
        return [source.name for source in self.sources]

    async def fetch(self) -> Tuple[str, List[CollectedSound]]:
        """
        Return (source_name, sounds) from the first source that succeeds.

        Raises AllSourcesFailed with each source's error when none does.
        """
        errors: Dict[str, str] = {}

        for source in self.sources:
            logger.info(f"Trying source {source.name}...")
            try:
                sounds = await source.fetch_top()
            except Exception as e:
                errors[source.name] = str(e) or e.__class__.__name__
                logger.warning(f"Source {source.name} failed: {errors[source.name]}")
                continue

            if not sounds:
                errors[source.name] = "returned no sounds"
                logger.warning(f"Source {source.name} returned no sounds")
                continue

            logger.info(f"Source {source.name} returned {len(sounds)} sounds")
            return source.name, sounds

        logger.error(f"All sources failed: {errors}")
        raise AllSourcesFailed(errors)
