#!/usr/bin/env python3

import asyncio
import logging
from enum import Enum
from dataclasses import dataclass
from typing import List, Optional

from ..errors import MetadataUnavailable, TransferError
from ..registry.client import RegistryClient
from ..registry.retry import RetryPolicy
from .strategies import TransferStrategy, is_rate_limited

logger = logging.getLogger(__name__)

class TransferStatus(Enum):
    SUCCESS = "success"
    RATE_LIMITED = "rate_limited"
    FAILURE = "failure"

@dataclass
class TransferResult:
    status: TransferStatus
    digest: Optional[str] = None
    reason: str = ""
    strategy: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == TransferStatus.SUCCESS

def is_retryable_transfer(error: Exception) -> bool:
    return isinstance(error, TransferError) and not is_rate_limited(error.output)

class ImageTransfer:
    """Copies one tag from a source repository to its target repository.

    Strategies are tried in order until one succeeds. A rate-limit answer from
    any of them ends the attempt at once, since every further request extends
    the penalty.
    """

    def __init__(self, strategies: List[TransferStrategy], metadata: RegistryClient,
                 source_registry: str = "docker.io", copy_delay: float = 1.0,
                 retry_policy: Optional[RetryPolicy] = None):
        self.metadata = metadata
        self.source_registry = source_registry
        self.copy_delay = copy_delay
        self.retry_policy = retry_policy or RetryPolicy(max_attempts=1, is_retryable=is_retryable_transfer)
        self.strategies = self._select_available(strategies)

    def _select_available(self, strategies: List[TransferStrategy]) -> List[TransferStrategy]:
        available = [s for s in strategies if s.is_available()]
        missing = [s.name for s in strategies if s not in available]
        if missing:
            logger.warning(f"Transfer tools not available: {', '.join(missing)}")
        if len(available) == 1:
            logger.info(f"Using single transfer path: {available[0].name}")
        elif not available:
            logger.error("No transfer tool is available, every copy will fail")
        return available

    def login(self, username: str, password: str) -> None:
        for strategy in self.strategies:
            strategy.login(self.source_registry, username, password)

    def reference(self, repo, tag: str) -> str:
        return f"{self.source_registry}/{repo}:{tag}"

    async def copy(self, source_repo, target_repo, tag: str) -> TransferResult:
        source_ref = self.reference(source_repo, tag)
        target_ref = self.reference(target_repo, tag)
        logger.info(f"Syncing {source_ref} -> {target_ref}")

        if not self.strategies:
            return TransferResult(TransferStatus.FAILURE, reason="no transfer tool available")

        reasons = []
        for strategy in self.strategies:
            try:
                self.retry_policy.call(
                    lambda: strategy.run(source_ref, target_ref),
                    f"{strategy.name} copy of {source_ref}"
                )
            except TransferError as e:
                if is_rate_limited(e.output):
                    logger.error(f"Rate limited while copying {source_ref} with {strategy.name}")
                    return TransferResult(TransferStatus.RATE_LIMITED, reason=e.output, strategy=strategy.name)
                logger.warning(f"{strategy.name} failed for {source_ref}: {e.output or e}")
                reasons.append(f"{strategy.name}: {e.output or e}")
                continue

            digest = self._source_digest(source_repo, tag)
            logger.info(f"Pushed {target_ref} via {strategy.name}")
            await asyncio.sleep(self.copy_delay)
            return TransferResult(TransferStatus.SUCCESS, digest=digest, strategy=strategy.name)

        return TransferResult(TransferStatus.FAILURE, reason="; ".join(reasons))

    def _source_digest(self, source_repo, tag: str) -> Optional[str]:
        # Cached value reflects the source at copy time, not the target
        try:
            digest = self.metadata.get_digest(source_repo, tag)
        except MetadataUnavailable as e:
            logger.warning(f"Copied {source_repo}:{tag} but could not read its digest: {e}")
            return None
        if digest is None:
            logger.warning(f"Copied {source_repo}:{tag} but the registry reports no digest")
        return digest
