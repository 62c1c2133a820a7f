"""
Notary (TUF) trust repository client.

Reads the published targets metadata of a repository and returns the hashes
recorded for a tag. Lookup follows the Notary client default role order: the
``targets/releases`` delegation first, then the base ``targets`` role.
"""

import asyncio
import base64
import binascii
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, Optional
from urllib.parse import urlparse

import aiohttp

from warden.config import NotaryConfig
from warden.exceptions import DeadlineExceeded, NoTrustData, RepoClientError

logger = logging.getLogger(__name__)

RELEASES_ROLE = "targets/releases"
TARGETS_ROLE = "targets"
DEFAULT_ROLES = (RELEASES_ROLE, TARGETS_ROLE)


@dataclass
class TrustTarget:
    """A signed target and the hashes published for it."""

    name: str
    hashes: Dict[str, bytes] = field(default_factory=dict)
    length: int = 0
    role: str = TARGETS_ROLE


class RepoClient(ABC):
    """Looks up trust data for a single repository."""

    @abstractmethod
    async def get_target_by_name(self, name: str) -> TrustTarget:
        pass


class RepoFactory(ABC):
    """Creates a repository client per validation call."""

    @abstractmethod
    def new_repo_client(self, repository: str, notary_config: NotaryConfig) -> RepoClient:
        pass


class NotaryRepoClient(RepoClient):
    """Client for the Notary server ``/v2/<gun>/_trust/tuf`` metadata endpoints."""

    def __init__(self, url: str, gun: str, timeout: float):
        self.url = url.rstrip("/")
        self.gun = gun
        self.timeout = aiohttp.ClientTimeout(total=timeout)

    def _metadata_url(self, role: str) -> str:
        return f"{self.url}/v2/{self.gun}/_trust/tuf/{role}.json"

    async def get_target_by_name(self, name: str) -> TrustTarget:
        """Return the first target named ``name`` in role lookup order."""
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                for role in DEFAULT_ROLES:
                    targets = await self._fetch_targets(session, role)
                    if targets is None or name not in targets:
                        continue

                    logger.debug("Found trust data for %s:%s in role %s", self.gun, name, role)
                    return self._to_trust_target(name, role, targets[name])

        except asyncio.TimeoutError as e:
            logger.error("Notary request for %s timed out", self.gun)
            raise DeadlineExceeded() from e
        except aiohttp.ClientError as e:
            raise RepoClientError(f"notary request for {self.gun} failed: {e}") from e

        raise NoTrustData(f"No valid trust data for {name}")

    async def _fetch_targets(self, session: aiohttp.ClientSession, role: str) -> Optional[Dict]:
        """Fetch the targets map of a role; None when a delegation is not published."""
        async with session.get(self._metadata_url(role)) as response:
            if response.status == 404:
                if role == TARGETS_ROLE:
                    raise NoTrustData(f"{self.url} does not have trust data for {self.gun}")
                return None

            if response.status != 200:
                raise RepoClientError(
                    f"notary returned status {response.status} for {self.gun} role {role}"
                )

            try:
                metadata = await response.json(content_type=None)
            except ValueError as e:
                raise RepoClientError(f"invalid {role} metadata for {self.gun}: {e}") from e

        if not isinstance(metadata, dict):
            raise RepoClientError(f"invalid {role} metadata for {self.gun}")

        return metadata.get("signed", {}).get("targets") or {}

    def _to_trust_target(self, name: str, role: str, meta: Dict) -> TrustTarget:
        hashes = {}
        for algorithm, encoded in (meta.get("hashes") or {}).items():
            try:
                hashes[algorithm] = base64.b64decode(encoded, validate=True)
            except (binascii.Error, TypeError) as e:
                raise RepoClientError(
                    f"invalid {algorithm} hash encoding for {self.gun}:{name}"
                ) from e

        return TrustTarget(name=name, hashes=hashes, length=meta.get("length", 0), role=role)


class NotaryRepoFactory(RepoFactory):
    """Builds Notary clients; ``timeout`` overrides the configured client timeout."""

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout

    def new_repo_client(self, repository: str, notary_config: NotaryConfig) -> RepoClient:
        if not repository:
            raise RepoClientError("notary repository name is empty")

        parsed = urlparse(notary_config.url or "")
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise RepoClientError(f"invalid notary url: {notary_config.url!r}")

        return NotaryRepoClient(
            url=notary_config.url,
            gun=repository,
            timeout=self.timeout or notary_config.timeout,
        )
