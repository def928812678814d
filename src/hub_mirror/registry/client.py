#!/usr/bin/env python3

import logging
import requests
from dataclasses import dataclass
from typing import Dict, Iterator, Optional, Tuple

from ..config.manager import MirrorConfig
from ..errors import AuthError, MetadataUnavailable, RateLimitedError, TransientNetworkError
from .retry import RetryPolicy

logger = logging.getLogger(__name__)

MANIFEST_ACCEPT_HEADER = ", ".join([
    "application/vnd.docker.distribution.manifest.list.v2+json",
    "application/vnd.oci.image.index.v1+json",
    "application/vnd.docker.distribution.manifest.v2+json",
    "application/vnd.oci.image.manifest.v1+json",
])

PAGE_SIZE = 100
# Docker Hub rejects longer short descriptions
SHORT_DESCRIPTION_LIMIT = 100

@dataclass
class Description:
    short: str = ""
    full: str = ""

class RegistryClient:
    """Docker Hub metadata access: tags, digests and repository descriptions.

    Hub API calls (``hub.docker.com``) carry the JWT from ``login``. Digest
    lookups go to the registry API with a per-repository bearer token, using
    HEAD requests so they do not count as pulls.
    """

    def __init__(self, config: MirrorConfig, session: Optional[requests.Session] = None,
                 retry_policy: Optional[RetryPolicy] = None):
        self.config = config
        self.session = session or requests.Session()
        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=config.retry_attempts,
            delay=config.retry_delay
        )
        self.token: Optional[str] = None
        self._credentials: Optional[Tuple[str, str]] = None
        self._registry_tokens: Dict[str, str] = {}

    def _send(self, method: str, url: str, **kwargs) -> requests.Response:
        kwargs.setdefault('timeout', self.config.request_timeout)
        try:
            response = self.session.request(method, url, **kwargs)
        except (requests.ConnectionError, requests.Timeout) as e:
            raise TransientNetworkError(f"{method} {url}: {e}") from e
        except requests.RequestException as e:
            raise MetadataUnavailable(f"{method} {url}: {e}") from e

        if response.status_code == 429:
            raise RateLimitedError(f"{method} {url} answered 429 Too Many Requests", reference=url)
        if response.status_code >= 500:
            raise TransientNetworkError(f"{method} {url} answered {response.status_code}")
        return response

    def _request(self, method: str, url: str, description: str, **kwargs) -> requests.Response:
        try:
            return self.retry_policy.call(lambda: self._send(method, url, **kwargs), description)
        except TransientNetworkError as e:
            raise MetadataUnavailable(f"{description}: {e}") from e

    def _hub_headers(self) -> Dict[str, str]:
        if self.token:
            return {'Authorization': f'JWT {self.token}'}
        return {}

    def login(self, username: str, password: str) -> str:
        url = f"{self.config.hub_api_url}/v2/users/login/"
        try:
            response = self._request(
                "POST", url, "hub login",
                json={'username': username, 'password': password}
            )
        except MetadataUnavailable as e:
            raise AuthError(f"Login request failed: {e}") from e

        token = None
        if response.status_code == 200:
            try:
                token = response.json().get('token')
            except ValueError:
                token = None

        if not token:
            raise AuthError(f"Login failed for {username} (HTTP {response.status_code})")

        self.token = token
        self._credentials = (username, password)
        logger.info(f"Logged in to {self.config.hub_api_url} as {username}")
        return token

    def list_tags(self, repo) -> Iterator[str]:
        """Yield every tag name of ``repo``, following the hub's page cursor.

        A missing repository yields nothing. Raises MetadataUnavailable when a
        page keeps failing.
        """
        url = f"{self.config.hub_api_url}/v2/repositories/{repo}/tags"
        params = {'page': 1, 'page_size': PAGE_SIZE}

        while url:
            response = self._request("GET", url, f"list tags of {repo}",
                                     params=params, headers=self._hub_headers())
            if response.status_code == 404:
                logger.debug(f"Repository {repo} not found, no tags")
                return
            if response.status_code != 200:
                raise MetadataUnavailable(f"Listing tags of {repo} answered {response.status_code}")

            try:
                data = response.json()
            except ValueError:
                logger.warning(f"Tag listing for {repo} returned a non-JSON page, stopping")
                return

            results = data.get('results') or []
            if not results:
                return

            for result in results:
                name = result.get('name')
                if name:
                    yield name

            # The cursor already carries page and page_size
            url = data.get('next')
            params = None

    def _registry_token(self, repo) -> Optional[str]:
        key = str(repo)
        if key in self._registry_tokens:
            return self._registry_tokens[key]

        response = self._send(
            "GET", self.config.auth_url,
            params={'service': 'registry.docker.io', 'scope': f'repository:{key}:pull'},
            auth=self._credentials
        )
        if response.status_code != 200:
            raise MetadataUnavailable(f"Token request for {key} answered {response.status_code}")

        try:
            token = response.json().get('token')
        except ValueError as e:
            raise MetadataUnavailable(f"Token response for {key} is not JSON") from e

        if token:
            self._registry_tokens[key] = token
        else:
            logger.warning(f"Token response for {key} carried no token")
        return token

    def get_digest(self, repo, tag: str) -> Optional[str]:
        """Return the manifest digest of ``repo:tag``, or None if the tag does not exist."""
        url = f"{self.config.registry_url}/v2/{repo}/manifests/{tag}"

        def head_manifest() -> requests.Response:
            headers = {'Accept': MANIFEST_ACCEPT_HEADER}
            token = self._registry_token(repo)
            if token:
                headers['Authorization'] = f'Bearer {token}'
            response = self._send("HEAD", url, headers=headers)
            if response.status_code == 401:
                # Bearer tokens expire after a few minutes
                self._registry_tokens.pop(str(repo), None)
                raise TransientNetworkError(f"HEAD {url} answered 401")
            return response

        try:
            response = self.retry_policy.call(head_manifest, f"digest of {repo}:{tag}")
        except TransientNetworkError as e:
            raise MetadataUnavailable(f"digest of {repo}:{tag}: {e}") from e

        if response.status_code == 404:
            return None
        if response.status_code != 200:
            raise MetadataUnavailable(f"Manifest of {repo}:{tag} answered {response.status_code}")
        return response.headers.get('Docker-Content-Digest')

    def get_description(self, repo) -> Description:
        url = f"{self.config.hub_api_url}/v2/repositories/{repo}/"
        response = self._request("GET", url, f"description of {repo}", headers=self._hub_headers())
        if response.status_code == 404:
            return Description()
        if response.status_code != 200:
            raise MetadataUnavailable(f"Description of {repo} answered {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise MetadataUnavailable(f"Description of {repo} is not JSON") from e
        return Description(
            short=data.get('description') or "",
            full=data.get('full_description') or ""
        )

    def set_description(self, target, description: Description) -> int:
        """Write both descriptions; returns the HTTP status (403 means the repository is missing)."""
        url = f"{self.config.hub_api_url}/v2/repositories/{target}/"
        response = self._request(
            "PATCH", url, f"update description of {target}",
            headers=self._hub_headers(),
            json={
                'description': description.short[:SHORT_DESCRIPTION_LIMIT],
                'full_description': description.full
            }
        )
        return response.status_code

    def create_repository(self, target, description: Description) -> int:
        url = f"{self.config.hub_api_url}/v2/repositories/"
        response = self._request(
            "POST", url, f"create repository {target}",
            headers=self._hub_headers(),
            json={
                'namespace': target.namespace,
                'name': target.image,
                'description': description.short[:SHORT_DESCRIPTION_LIMIT],
                'full_description': description.full,
                'is_private': False
            }
        )
        if response.status_code in (200, 201):
            logger.info(f"Created repository {target}")
        else:
            logger.warning(f"Creating repository {target} answered {response.status_code}")
        return response.status_code
