#!/usr/bin/env python3

import os
import json
import logging
import tempfile
from pathlib import Path
from typing import Dict, Iterator, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)

def cache_key(repo, tag: str) -> str:
    return f"{repo}:{tag}"

class DigestCache:
    """Last copied digest per ``namespace/image:tag``, stored as one JSON object.

    Entries are only ever added or overwritten. ``dirty`` turns True on the
    first ``put`` and decides whether the file is rewritten after a run.
    """

    def __init__(self, path: str):
        self.path = path
        self._entries: Dict[str, str] = {}
        self._dirty = False

    @property
    def dirty(self) -> bool:
        return self._dirty

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def items(self) -> Iterator[Tuple[str, str]]:
        return iter(sorted(self._entries.items()))

    def get(self, key: str) -> Optional[str]:
        return self._entries.get(key)

    def put(self, key: str, digest: str) -> None:
        self._entries[key] = digest
        self._dirty = True

    def update(self, entries: Mapping[str, str]) -> None:
        for key, digest in entries.items():
            self.put(key, digest)

    def ensure_exists(self) -> None:
        if os.path.exists(self.path):
            return
        parent = os.path.dirname(self.path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        with open(self.path, 'w') as f:
            f.write("{}\n")
        logger.info(f"Digest cache not found, created empty {self.path}")

    def load(self) -> "DigestCache":
        with open(self.path, 'r') as f:
            content = f.read().strip()

        data = json.loads(content) if content else {}
        if not isinstance(data, dict):
            raise ValueError(f"Digest cache {self.path} must contain a JSON object")

        # Entries written by older runs may hold null for unknown digests
        self._entries = {str(k): str(v) for k, v in data.items() if v}
        self._dirty = False
        logger.debug(f"Loaded {len(self._entries)} cached digests from {self.path}")
        return self

    def save(self) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)

        fd, tmp_path = tempfile.mkstemp(prefix=".digest_cache.", suffix=".tmp", dir=directory)
        try:
            with os.fdopen(fd, 'w') as f:
                json.dump(self._entries, f, indent=2, sort_keys=True)
                f.write("\n")
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

        self._dirty = False
        logger.info(f"Saved {len(self._entries)} cached digests to {self.path}")

    def mark_changed(self, flag_path: str) -> None:
        Path(flag_path).touch()
        logger.info(f"Digest cache changed, created marker {flag_path}")
