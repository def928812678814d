#!/usr/bin/env python3

import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from ..cache.digest_cache import DigestCache
from ..config.repos import RepositoryEntry
from ..errors import RateLimitedError
from .planner import RepositoryResult, SyncPlanner

logger = logging.getLogger(__name__)

@dataclass
class BatchResult:
    results: List[RepositoryResult] = field(default_factory=list)
    cache_changed: bool = False
    rate_limited: bool = False

    @property
    def failed_repositories(self) -> List[RepositoryResult]:
        return [r for r in self.results if r.error]

class BatchDriver:
    """Runs the planner over every repository entry in list order."""

    def __init__(self, planner: SyncPlanner, cache: DigestCache,
                 flag_file: Optional[str] = None, repository_delay: float = 1.0):
        self.planner = planner
        self.cache = cache
        self.flag_file = flag_file
        self.repository_delay = repository_delay

    async def run(self, entries: List[RepositoryEntry]) -> BatchResult:
        batch = BatchResult()
        self.cache.ensure_exists()
        self.cache.load()

        try:
            for index, entry in enumerate(entries):
                if index > 0 and self.repository_delay > 0:
                    await asyncio.sleep(self.repository_delay)

                try:
                    result = await self.planner.sync_repository(entry)
                except RateLimitedError:
                    batch.rate_limited = True
                    logger.error("Registry rate limit reached, stopping the batch")
                    raise
                except Exception as e:
                    logger.error(f"Unexpected error while mirroring {entry.repository}: {e}")
                    result = RepositoryResult(
                        repository=entry.repository,
                        target=entry.repository.target(self.planner.owner),
                        error=str(e)
                    )

                batch.results.append(result)
        finally:
            batch.cache_changed = self._persist()

        return batch

    def _persist(self) -> bool:
        if not self.cache.dirty:
            logger.info("Digest cache unchanged")
            return False

        self.cache.save()
        if self.flag_file:
            self.cache.mark_changed(self.flag_file)
        return True
