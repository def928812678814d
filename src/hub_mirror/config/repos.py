#!/usr/bin/env python3

"""
Repository list parsing.

Each non-comment line names one source repository::

    [namespace/]image[:tag1,tag2,...]

Lines without a namespace use the default namespace (``library`` on Docker
Hub). Lines without tags mean "mirror every tag the source has".
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Iterator, List, Optional, Tuple

logger = logging.getLogger(__name__)

@dataclass(frozen=True)
class RepositoryRef:
    namespace: str
    image: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.image}"

    def target(self, owner: str) -> "TargetRepositoryRef":
        # The owner account has a single flat namespace
        return TargetRepositoryRef(owner=owner, name=f"{self.namespace}_{self.image}")

@dataclass(frozen=True)
class TargetRepositoryRef:
    owner: str
    name: str

    @property
    def namespace(self) -> str:
        return self.owner

    @property
    def image(self) -> str:
        return self.name

    def __str__(self) -> str:
        return f"{self.owner}/{self.name}"

@dataclass(frozen=True)
class RepositoryEntry:
    repository: RepositoryRef
    tags: Optional[Tuple[str, ...]] = None
    line_number: int = 0

    @property
    def pinned(self) -> bool:
        return self.tags is not None

def strip_comment(line: str) -> str:
    return line.split('#', 1)[0].strip()

def parse_repo_line(line: str, default_namespace: str = "library", line_number: int = 0) -> Optional[RepositoryEntry]:
    """Parse one repository list line, returning None for blank and comment lines.

    Raises ValueError for lines that cannot name a repository.
    """
    text = strip_comment(line)
    if not text:
        return None

    if '/' in text:
        namespace, image_with_tag = text.split('/', 1)
    else:
        namespace, image_with_tag = default_namespace, text

    tags = None
    if ':' in image_with_tag:
        image, tag_literal = image_with_tag.split(':', 1)
        # An empty tag list after the colon means discover all tags
        tags = tuple(t.strip() for t in tag_literal.split(',') if t.strip()) or None
    else:
        image = image_with_tag

    namespace = namespace.strip()
    image = image.strip()
    if not namespace or not image:
        raise ValueError(f"missing namespace or image in {line.strip()!r}")
    if '/' in image:
        raise ValueError(f"nested repository paths are not supported: {line.strip()!r}")

    return RepositoryEntry(RepositoryRef(namespace, image), tags, line_number)

def iter_repo_entries(lines: Iterable[str], default_namespace: str = "library") -> Iterator[RepositoryEntry]:
    for number, line in enumerate(lines, start=1):
        try:
            entry = parse_repo_line(line, default_namespace, number)
        except ValueError as e:
            logger.warning(f"Skipping line {number}: {e}")
            continue
        if entry is not None:
            yield entry

def load_repo_list(path: str, default_namespace: str = "library") -> List[RepositoryEntry]:
    with open(path, 'r', encoding='utf-8') as f:
        entries = list(iter_repo_entries(f, default_namespace))
    logger.info(f"Loaded {len(entries)} repositories from {path}")
    return entries
