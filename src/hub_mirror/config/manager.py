#!/usr/bin/env python3

import os
import yaml
from typing import List, Optional, Tuple
from dataclasses import dataclass, asdict, field, fields

from ..errors import ConfigError

DEFAULT_MUTABLE_TAGS = ["latest", "debian", "stable", "edge"]
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")

@dataclass
class MirrorConfig:
    repos_file: str = None
    cache_file: str = "digest_cache.json"
    flag_file: str = "digest_cache_updated.flag"
    default_namespace: str = "library"
    source_registry: str = "docker.io"
    hub_api_url: str = "https://hub.docker.com"
    registry_url: str = "https://registry-1.docker.io"
    auth_url: str = "https://auth.docker.io/token"
    mutable_tags: List[str] = field(default_factory=lambda: list(DEFAULT_MUTABLE_TAGS))
    # Tried in order; unavailable tools are skipped
    transfer_tools: List[str] = field(default_factory=lambda: ["skopeo", "imagetools"])
    copy_delay: float = 1.0
    repository_delay: float = 1.0
    retry_attempts: int = 3
    retry_delay: float = 2.0
    transfer_attempts: int = 1
    request_timeout: int = 30
    sync_descriptions: bool = True
    placeholder_description: str = "Mirror of {source}"
    log_level: str = "INFO"

    def __post_init__(self):
        if self.repos_file is None:
            self.repos_file = os.path.expanduser("~/backup_repos.conf")

        if self.retry_attempts < 1:
            raise ConfigError("retry_attempts must be at least 1")

        if self.transfer_attempts < 1:
            raise ConfigError("transfer_attempts must be at least 1")

        if str(self.log_level).upper() not in LOG_LEVELS:
            raise ConfigError(f"log_level must be one of {', '.join(LOG_LEVELS)}")

class ConfigManager:
    def __init__(self, config_path: Optional[str] = None):
        self.config_path = config_path or self._get_default_config_path()
        self._config: Optional[MirrorConfig] = None

    def _get_default_config_path(self) -> str:
        xdg_config = os.environ.get('XDG_CONFIG_HOME', '~/.config')
        return os.path.expanduser(f"{xdg_config}/hub-mirror/config.yaml")

    def load_config(self) -> MirrorConfig:
        if self._config is not None:
            return self._config

        if not os.path.exists(self.config_path):
            self._config = MirrorConfig()
            self.save_config()
            return self._config

        try:
            with open(self.config_path, 'r') as f:
                data = yaml.safe_load(f) or {}

            if not isinstance(data, dict):
                raise ValueError("top level must be a mapping")

            # Ignore keys from older versions instead of failing the run
            known = {f.name for f in fields(MirrorConfig)}
            data = {key: value for key, value in data.items() if key in known}

            self._config = MirrorConfig(**data)
            return self._config

        except ConfigError:
            raise
        except Exception as e:
            raise ConfigError(f"Error loading config from {self.config_path}: {e}")

    def save_config(self) -> None:
        if self._config is None:
            raise ConfigError("No config loaded to save")

        config_dir = os.path.dirname(self.config_path)
        if config_dir:
            os.makedirs(config_dir, exist_ok=True)

        config_dict = asdict(self._config)
        with open(self.config_path, 'w') as f:
            f.write("# Docker Hub mirror configuration\n")
            f.write("# Credentials are read from DOCKER_USER and DOCKER_PASS\n\n")
            yaml.dump(config_dict, f, default_flow_style=False, indent=2)

    def get_config(self) -> MirrorConfig:
        if self._config is None:
            return self.load_config()
        return self._config

    def get_credentials(self) -> Tuple[str, str]:
        username = os.environ.get("DOCKER_USER", "")
        password = os.environ.get("DOCKER_PASS", "")
        if not username or not password:
            raise ConfigError("DOCKER_USER and DOCKER_PASS must be set in the environment")
        return username, password

    def get_mutable_tags(self) -> frozenset:
        return frozenset(self.get_config().mutable_tags or [])

    def resolve_repos_file(self, override: Optional[str] = None) -> str:
        path = os.path.expanduser(override or self.get_config().repos_file)
        if not os.path.isfile(path):
            raise ConfigError(f"Repository list not found: {path}")
        return path
