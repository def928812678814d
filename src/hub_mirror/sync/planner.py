#!/usr/bin/env python3

import logging
from enum import Enum
from dataclasses import dataclass, field
from typing import FrozenSet, Iterable, List, Optional, Set

from ..cache.digest_cache import DigestCache, cache_key
from ..config.repos import RepositoryEntry, RepositoryRef, TargetRepositoryRef
from ..errors import MetadataUnavailable, RateLimitedError
from ..registry.client import Description, RegistryClient
from ..transfer.operation import ImageTransfer, TransferResult, TransferStatus

logger = logging.getLogger(__name__)

class OutcomeStatus(Enum):
    SKIPPED = "skipped"
    COPIED = "copied"
    COPIED_DIGEST_CHANGED = "copied_digest_changed"
    UNCHANGED = "unchanged"
    FAILED = "failed"

@dataclass
class TagOutcome:
    tag: str
    status: OutcomeStatus
    old_digest: Optional[str] = None
    new_digest: Optional[str] = None
    reason: str = ""

@dataclass
class RepositoryResult:
    repository: RepositoryRef
    target: TargetRepositoryRef
    outcomes: List[TagOutcome] = field(default_factory=list)
    any_new_copied: bool = False
    phase_two_ran: bool = False
    description_synced: bool = False
    error: Optional[str] = None

    def count(self, status: OutcomeStatus) -> int:
        return sum(1 for outcome in self.outcomes if outcome.status == status)

    def tags_with(self, status: OutcomeStatus) -> List[str]:
        return [outcome.tag for outcome in self.outcomes if outcome.status == status]

    @property
    def copies(self) -> int:
        return self.count(OutcomeStatus.COPIED) + self.count(OutcomeStatus.COPIED_DIGEST_CHANGED)

class SyncPlanner:
    """Brings one target repository up to date with its source.

    Phase one copies tags the target does not have yet. Phase two runs only if
    phase one copied something, and re-copies mutable tags whose upstream
    digest differs from the cached one. Per-tag and per-repository failures are
    recorded in the result; only RateLimitedError escapes.
    """

    def __init__(self, metadata: RegistryClient, transfer: ImageTransfer, cache: DigestCache,
                 owner: str, mutable_tags: Iterable[str],
                 sync_descriptions: bool = True,
                 placeholder_description: str = "Mirror of {source}"):
        self.metadata = metadata
        self.transfer = transfer
        self.cache = cache
        self.owner = owner
        self.mutable_tags: FrozenSet[str] = frozenset(mutable_tags)
        self.sync_descriptions = sync_descriptions
        self.placeholder_description = placeholder_description

    async def sync_repository(self, entry: RepositoryEntry) -> RepositoryResult:
        source = entry.repository
        target = source.target(self.owner)
        result = RepositoryResult(repository=source, target=target)
        logger.info(f"Mirroring {source} -> {target}")

        try:
            source_tags = self._resolve_source_tags(entry)
        except MetadataUnavailable as e:
            result.error = f"could not list source tags: {e}"
            logger.error(f"Skipping {source}: {result.error}")
            return result

        existing_tags = self._existing_tags(target)
        new_tags = self._diff_tags(source_tags, existing_tags, result)
        logger.info(f"{source}: {len(source_tags)} tags, {len(new_tags)} new")

        await self._copy_new_tags(source, target, new_tags, result)

        if result.any_new_copied:
            await self._check_mutable_tags(source, target, source_tags, result)
        else:
            logger.info(f"{source}: no new tags copied, skipping mutable tag digest check")

        if self.sync_descriptions:
            self._sync_description(source, target, result)

        return result

    def _resolve_source_tags(self, entry: RepositoryEntry) -> List[str]:
        if entry.pinned:
            tags = entry.tags
        else:
            tags = self.metadata.list_tags(entry.repository)
        return list(dict.fromkeys(tags))

    def _existing_tags(self, target: TargetRepositoryRef) -> Set[str]:
        try:
            return set(self.metadata.list_tags(target))
        except MetadataUnavailable as e:
            logger.warning(f"Could not list tags of {target}, treating it as empty: {e}")
            return set()

    def _diff_tags(self, source_tags: List[str], existing_tags: Set[str], result: RepositoryResult) -> List[str]:
        new_tags = []
        for tag in source_tags:
            if tag in existing_tags:
                result.outcomes.append(TagOutcome(tag, OutcomeStatus.SKIPPED))
            else:
                new_tags.append(tag)
        return new_tags

    async def _copy(self, source: RepositoryRef, target: TargetRepositoryRef, tag: str) -> TransferResult:
        transfer = await self.transfer.copy(source, target, tag)
        if transfer.status == TransferStatus.RATE_LIMITED:
            raise RateLimitedError(
                f"Registry rate limit reached while copying {source}:{tag}",
                reference=f"{source}:{tag}"
            )
        return transfer

    async def _copy_new_tags(self, source: RepositoryRef, target: TargetRepositoryRef,
                             new_tags: List[str], result: RepositoryResult) -> None:
        for tag in new_tags:
            logger.info(f"New tag found: {source}:{tag}")
            transfer = await self._copy(source, target, tag)

            if not transfer.succeeded:
                logger.error(f"Failed to copy {source}:{tag}: {transfer.reason}")
                result.outcomes.append(TagOutcome(tag, OutcomeStatus.FAILED, reason=transfer.reason))
                continue

            result.any_new_copied = True
            if transfer.digest:
                self.cache.put(cache_key(source, tag), transfer.digest)
                logger.info(f"Cache updated: {cache_key(source, tag)} = {transfer.digest}")
            result.outcomes.append(TagOutcome(tag, OutcomeStatus.COPIED, new_digest=transfer.digest))

    async def _check_mutable_tags(self, source: RepositoryRef, target: TargetRepositoryRef,
                                  source_tags: List[str], result: RepositoryResult) -> None:
        result.phase_two_ran = True
        for tag in source_tags:
            if tag not in self.mutable_tags:
                continue

            key = cache_key(source, tag)
            try:
                current = self.metadata.get_digest(source, tag)
            except MetadataUnavailable as e:
                logger.warning(f"Could not read digest of {source}:{tag}, skipping: {e}")
                continue
            if current is None:
                logger.warning(f"{source}:{tag} no longer exists upstream, skipping")
                continue

            cached = self.cache.get(key)
            if current == cached:
                logger.info(f"Digest unchanged for {source}:{tag}")
                result.outcomes.append(TagOutcome(tag, OutcomeStatus.UNCHANGED, old_digest=cached, new_digest=current))
                continue

            logger.info(f"Digest changed for {source}:{tag}: {cached or 'not cached'} -> {current}")
            transfer = await self._copy(source, target, tag)
            if not transfer.succeeded:
                logger.error(f"Failed to re-copy {source}:{tag}: {transfer.reason}")
                result.outcomes.append(TagOutcome(tag, OutcomeStatus.FAILED, old_digest=cached, reason=transfer.reason))
                continue

            new_digest = transfer.digest or current
            self.cache.put(key, new_digest)
            result.outcomes.append(TagOutcome(
                tag, OutcomeStatus.COPIED_DIGEST_CHANGED, old_digest=cached, new_digest=new_digest
            ))

    def _sync_description(self, source: RepositoryRef, target: TargetRepositoryRef, result: RepositoryResult) -> None:
        try:
            description = self.metadata.get_description(source)
            status = self.metadata.set_description(target, description)

            if status == 403:
                logger.info(f"{target} does not exist yet, creating it with a placeholder description")
                placeholder = self.placeholder_description.format(source=source)
                self.metadata.create_repository(target, Description(short=placeholder, full=placeholder))
                status = self.metadata.set_description(target, description)
        except MetadataUnavailable as e:
            logger.warning(f"Description sync for {target} failed: {e}")
            return

        if status == 200:
            result.description_synced = True
            logger.info(f"Description synced for {target}")
        else:
            logger.warning(f"Description update for {target} answered HTTP {status}")
