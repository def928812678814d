#!/usr/bin/env python3

"""
Pytest configuration and shared fixtures for hub-mirror test suite.
"""

import os
import sys
import tempfile
import pytest
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple

# Add src to Python path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from hub_mirror.cache.digest_cache import DigestCache
from hub_mirror.config.manager import MirrorConfig
from hub_mirror.registry.client import Description
from hub_mirror.sync.planner import SyncPlanner
from hub_mirror.transfer.operation import TransferResult, TransferStatus


class FakeRegistry:
    """In-memory stand-in for RegistryClient, keyed by ``str(repo)``"""

    def __init__(self):
        self.tags: Dict[str, List[str]] = {}
        self.digests: Dict[Tuple[str, str], str] = {}
        self.descriptions: Dict[str, Description] = {}
        self.existing_repos: Set[str] = set()
        self.list_calls: List[str] = []
        self.digest_calls: List[Tuple[str, str]] = []
        self.created: List[str] = []
        self.description_writes: List[str] = []
        self.unavailable: Set[str] = set()
        self.unavailable_digests: Set[Tuple[str, str]] = set()
        self.unavailable_descriptions: Set[str] = set()

    def add_repo(self, repo: str, tags: Dict[str, str], description: Optional[Description] = None):
        self.tags[repo] = list(tags)
        for tag, digest in tags.items():
            self.digests[(repo, tag)] = digest
        self.existing_repos.add(repo)
        if description:
            self.descriptions[repo] = description

    def list_tags(self, repo):
        from hub_mirror.errors import MetadataUnavailable
        key = str(repo)
        self.list_calls.append(key)
        if key in self.unavailable:
            raise MetadataUnavailable(f"listing {key} failed")
        yield from list(self.tags.get(key, []))

    def get_digest(self, repo, tag):
        from hub_mirror.errors import MetadataUnavailable
        self.digest_calls.append((str(repo), tag))
        if (str(repo), tag) in self.unavailable_digests:
            raise MetadataUnavailable(f"digest of {repo}:{tag} unavailable")
        return self.digests.get((str(repo), tag))

    def get_description(self, repo):
        from hub_mirror.errors import MetadataUnavailable
        if str(repo) in self.unavailable_descriptions:
            raise MetadataUnavailable(f"description of {repo} unavailable")
        return self.descriptions.get(str(repo), Description())

    def set_description(self, target, description):
        key = str(target)
        if key not in self.existing_repos:
            return 403
        self.descriptions[key] = description
        self.description_writes.append(key)
        return 200

    def create_repository(self, target, description):
        self.existing_repos.add(str(target))
        self.created.append(str(target))
        return 201


class FakeTransfer:
    """Copies tags inside a FakeRegistry and records every call"""

    def __init__(self, registry: FakeRegistry):
        self.registry = registry
        self.calls: List[Tuple[str, str, str]] = []
        self.failing: Set[str] = set()
        self.rate_limited: Set[str] = set()

    async def copy(self, source_repo, target_repo, tag):
        source, target = str(source_repo), str(target_repo)
        self.calls.append((source, target, tag))

        if tag in self.rate_limited:
            return TransferResult(TransferStatus.RATE_LIMITED, reason="429 Too Many Requests")
        if tag in self.failing:
            return TransferResult(TransferStatus.FAILURE, reason="manifest unknown")

        digest = self.registry.digests.get((source, tag))
        target_tags = self.registry.tags.setdefault(target, [])
        if tag not in target_tags:
            target_tags.append(tag)
        self.registry.digests[(target, tag)] = digest
        self.registry.existing_repos.add(target)
        return TransferResult(TransferStatus.SUCCESS, digest=digest, strategy="fake")


@pytest.fixture
def temp_dir():
    """Provide a temporary directory that gets cleaned up after test"""
    temp_dir = tempfile.mkdtemp()
    yield temp_dir

    # Cleanup
    import shutil
    if os.path.exists(temp_dir):
        shutil.rmtree(temp_dir)


@pytest.fixture
def sample_mirror_config(temp_dir):
    """Provide a mirror configuration with no pacing and paths in temp_dir"""
    return MirrorConfig(
        repos_file=os.path.join(temp_dir, "backup_repos.conf"),
        cache_file=os.path.join(temp_dir, "digest_cache.json"),
        flag_file=os.path.join(temp_dir, "digest_cache_updated.flag"),
        copy_delay=0,
        repository_delay=0,
        retry_delay=0
    )


@pytest.fixture
def fake_registry():
    return FakeRegistry()


@pytest.fixture
def fake_transfer(fake_registry):
    return FakeTransfer(fake_registry)


@pytest.fixture
def digest_cache(sample_mirror_config):
    cache = DigestCache(sample_mirror_config.cache_file)
    cache.ensure_exists()
    return cache.load()


@pytest.fixture
def planner(fake_registry, fake_transfer, digest_cache):
    return SyncPlanner(
        fake_registry,
        fake_transfer,
        digest_cache,
        owner="mirroruser",
        mutable_tags=["latest", "debian", "stable", "edge"]
    )


@pytest.fixture
def repos_file(temp_dir):
    path = os.path.join(temp_dir, "backup_repos.conf")
    with open(path, 'w') as f:
        f.write("# mirrored repositories\n")
        f.write("library/redis:7.0,7.2\n")
        f.write("\n")
        f.write("bitnami/nginx  # every tag\n")
    return path


@pytest.fixture(autouse=True)
def setup_logging():
    """Set up logging for tests"""
    import logging

    # Set up basic logging for tests
    logging.basicConfig(
        level=logging.WARNING,  # Only show warnings and errors in tests
        format="%(name)s - %(levelname)s - %(message)s"
    )

    # Silence some noisy loggers during tests
    logging.getLogger("asyncio").setLevel(logging.ERROR)


@pytest.fixture
def environment_variables():
    """Provide controlled environment variables for tests"""
    original_environ = os.environ.copy()

    test_environ = {
        'DOCKER_USER': 'mirroruser',
        'DOCKER_PASS': 'secret'
    }

    os.environ.update(test_environ)

    yield test_environ

    # Restore original environment
    os.environ.clear()
    os.environ.update(original_environ)


def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )


def pytest_collection_modifyitems(config, items):
    """Add integration marker to integration test classes"""
    for item in items:
        if "Integration" in item.cls.__name__ if item.cls else False:
            item.add_marker(pytest.mark.integration)
