#!/usr/bin/env python3

import shutil
import logging
import subprocess
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Type

from ..errors import AuthError, ConfigError, TransferError

logger = logging.getLogger(__name__)

RATE_LIMIT_MARKERS = ("429 too many requests", "toomanyrequests", "status 429", "http 429")

def is_rate_limited(output: str) -> bool:
    text = (output or "").lower()
    return any(marker in text for marker in RATE_LIMIT_MARKERS)

class TransferStrategy(ABC):
    name: str = ""
    executable: str = ""

    def is_available(self) -> bool:
        return shutil.which(self.executable) is not None

    def login_command(self, registry: str, username: str) -> Optional[List[str]]:
        return None

    def login(self, registry: str, username: str, password: str) -> None:
        cmd = self.login_command(registry, username)
        if cmd is None:
            return
        try:
            result = subprocess.run(cmd, input=password, capture_output=True, text=True)
        except OSError as e:
            raise AuthError(f"{self.name} login could not be started: {e}")
        if result.returncode != 0:
            raise AuthError(f"{self.name} login to {registry} failed: {result.stderr.strip()}")
        logger.info(f"{self.name} logged in to {registry} as {username}")

    @abstractmethod
    def build_command(self, source_ref: str, target_ref: str) -> List[str]:
        pass

    def run(self, source_ref: str, target_ref: str) -> None:
        cmd = self.build_command(source_ref, target_ref)
        logger.debug(f"Running: {' '.join(cmd)}")
        try:
            result = subprocess.run(cmd, capture_output=True, text=True)
        except OSError as e:
            raise TransferError(f"{self.name} could not be started: {e}", tool=self.name, output=str(e))

        if result.returncode != 0:
            output = "\n".join(part for part in (result.stderr, result.stdout) if part).strip()
            raise TransferError(
                f"{self.name} exited with {result.returncode}",
                tool=self.name,
                output=output
            )

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.name}>"

class SkopeoCopyStrategy(TransferStrategy):
    """Registry-to-registry copy of every platform in the manifest list."""
    name = "skopeo"
    executable = "skopeo"

    def login_command(self, registry: str, username: str) -> List[str]:
        return ["skopeo", "login", "--username", username, "--password-stdin", registry]

    def build_command(self, source_ref: str, target_ref: str) -> List[str]:
        return ["skopeo", "copy", "--all", f"docker://{source_ref}", f"docker://{target_ref}"]

class ImagetoolsCreateStrategy(TransferStrategy):
    """Recompose the source manifest list under the target tag with buildx."""
    name = "imagetools"
    executable = "docker"

    def login_command(self, registry: str, username: str) -> List[str]:
        return ["docker", "login", "--username", username, "--password-stdin", registry]

    def is_available(self) -> bool:
        if not super().is_available():
            return False
        try:
            result = subprocess.run(["docker", "buildx", "version"], capture_output=True, text=True)
        except OSError:
            return False
        return result.returncode == 0

    def build_command(self, source_ref: str, target_ref: str) -> List[str]:
        return ["docker", "buildx", "imagetools", "create", "--tag", target_ref, source_ref]

STRATEGIES: Dict[str, Type[TransferStrategy]] = {
    SkopeoCopyStrategy.name: SkopeoCopyStrategy,
    ImagetoolsCreateStrategy.name: ImagetoolsCreateStrategy,
}

def build_strategies(names: List[str]) -> List[TransferStrategy]:
    strategies = []
    for name in names:
        strategy_class = STRATEGIES.get(name)
        if strategy_class is None:
            raise ConfigError(f"Unknown transfer tool '{name}', expected one of {sorted(STRATEGIES)}")
        strategies.append(strategy_class())
    return strategies
