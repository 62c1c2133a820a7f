"""
Registry digest fetcher.

Resolves an image reference against a Docker Registry v2 / OCI distribution
API and returns the hex digest of the image config recorded in its manifest.
"""

import asyncio
import json
import logging
import re
from dataclasses import dataclass
from typing import Dict, Optional

import aiohttp

from warden.exceptions import DeadlineExceeded, RefParseError, RegistryFetchError

logger = logging.getLogger(__name__)

DEFAULT_REGISTRY = "index.docker.io"
DOCKER_HUB_ALIASES = ("docker.io", "index.docker.io")
DOCKER_HUB_API_HOST = "registry-1.docker.io"
DEFAULT_TAG = "latest"
DEFAULT_PLATFORM = "linux/amd64"

DOCKER_MANIFEST = "application/vnd.docker.distribution.manifest.v2+json"
DOCKER_MANIFEST_LIST = "application/vnd.docker.distribution.manifest.list.v2+json"
OCI_MANIFEST = "application/vnd.oci.image.manifest.v1+json"
OCI_INDEX = "application/vnd.oci.image.index.v1+json"
INDEX_MEDIA_TYPES = (DOCKER_MANIFEST_LIST, OCI_INDEX)
ACCEPT_HEADER = ", ".join([DOCKER_MANIFEST, OCI_MANIFEST, DOCKER_MANIFEST_LIST, OCI_INDEX])

_PATH_COMPONENT = re.compile(r"^[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*$")
_TAG = re.compile(r"^[\w][\w.-]{0,127}$", re.ASCII)
_DIGEST = re.compile(r"^[a-z0-9]+(?:[.+_-][a-z0-9]+)*:[a-zA-Z0-9=_-]+$")
_BEARER_PARAM = re.compile(r'(\w+)="([^"]*)"')


@dataclass(frozen=True)
class RegistryReference:
    """A parsed image reference: registry host, repository path and tag or digest."""

    registry: str
    repository: str
    reference: str

    @property
    def api_host(self) -> str:
        if self.registry in DOCKER_HUB_ALIASES:
            return DOCKER_HUB_API_HOST
        return self.registry

    @property
    def scheme(self) -> str:
        if self.registry.startswith("["):
            host = self.registry.split("]", 1)[0] + "]"
        else:
            host = self.registry.split(":", 1)[0]
        if host in ("localhost", "127.0.0.1", "[::1]") or host.endswith((".local", ".localhost")):
            return "http"
        return "https"

    def manifest_url(self, reference: Optional[str] = None) -> str:
        return f"{self.scheme}://{self.api_host}/v2/{self.repository}/manifests/{reference or self.reference}"


def parse_reference(image: str) -> RegistryReference:
    """
    Parse an image reference using Docker naming conventions.

    Examples:
        nginx:1.25 -> (index.docker.io, library/nginx, 1.25)
        eu.gcr.io/proj/app:v1 -> (eu.gcr.io, proj/app, v1)
        localhost:5000/app@sha256:... -> (localhost:5000, app, sha256:...)
    """
    if not image:
        raise RefParseError("ref parse: empty image reference")

    name, reference = image, DEFAULT_TAG
    if "@" in name:
        name, reference = name.split("@", 1)
        if not _DIGEST.fullmatch(reference):
            raise RefParseError(f"ref parse: invalid digest {reference!r} in {image!r}")
    elif ":" in name.rsplit("/", 1)[-1]:
        name, reference = name.rsplit(":", 1)
        if not _TAG.fullmatch(reference):
            raise RefParseError(f"ref parse: invalid tag {reference!r} in {image!r}")

    parts = name.split("/")
    first = parts[0]
    if len(parts) > 1 and ("." in first or ":" in first or first == "localhost"):
        registry, path = first, parts[1:]
    else:
        registry, path = DEFAULT_REGISTRY, parts

    if registry in DOCKER_HUB_ALIASES and len(path) == 1:
        path = ["library"] + path

    for component in path:
        if not _PATH_COMPONENT.fullmatch(component):
            raise RefParseError(f"ref parse: invalid repository name {name!r}")

    return RegistryReference(registry=registry, repository="/".join(path), reference=reference)


class RegistryDigestFetcher:
    """Fetches image manifests and returns their config digest as hex."""

    def __init__(self, timeout: float = 10.0, platform: str = DEFAULT_PLATFORM):
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.platform = platform

    async def fetch_digest(self, image: str) -> str:
        ref = parse_reference(image)

        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                manifest = await self._get_manifest(session, ref, ref.reference)

                if manifest.get("mediaType") in INDEX_MEDIA_TYPES or "manifests" in manifest:
                    digest = self._select_platform(ref, manifest)
                    manifest = await self._get_manifest(session, ref, digest)

        except asyncio.TimeoutError as e:
            logger.error("Registry request for %s timed out", image)
            raise DeadlineExceeded() from e
        except aiohttp.ClientError as e:
            raise RegistryFetchError(f"get image: {e}") from e

        config_digest = (manifest.get("config") or {}).get("digest", "")
        if ":" not in config_digest:
            raise RegistryFetchError(f"image manifest: missing config digest for {image}")

        algorithm, hex_digest = config_digest.split(":", 1)
        logger.debug("Resolved %s config digest %s:%s", image, algorithm, hex_digest[:16])
        return hex_digest

    async def _get_manifest(
        self, session: aiohttp.ClientSession, ref: RegistryReference, reference: str
    ) -> Dict:
        url = ref.manifest_url(reference)
        headers = {"Accept": ACCEPT_HEADER}

        status, body, challenge = await self._request(session, url, headers)
        if status == 401 and challenge:
            token = await self._fetch_token(session, ref, challenge)
            if token:
                headers["Authorization"] = f"Bearer {token}"
                status, body, _ = await self._request(session, url, headers)

        if status != 200:
            raise RegistryFetchError(f"get image: {self._describe_error(status, body)}")

        try:
            manifest = json.loads(body)
        except ValueError as e:
            raise RegistryFetchError(f"image manifest: {e}") from e

        if not isinstance(manifest, dict):
            raise RegistryFetchError(f"image manifest: unexpected manifest for {ref.repository}")
        return manifest

    async def _request(self, session: aiohttp.ClientSession, url: str, headers: Dict):
        async with session.get(url, headers=headers) as response:
            body = await response.text()
            return response.status, body, response.headers.get("WWW-Authenticate")

    async def _fetch_token(
        self, session: aiohttp.ClientSession, ref: RegistryReference, challenge: str
    ) -> Optional[str]:
        """Anonymous token exchange for a ``Bearer`` challenge."""
        if not challenge.startswith("Bearer "):
            logger.warning("Unsupported registry auth scheme for %s", ref.registry)
            return None

        params = dict(_BEARER_PARAM.findall(challenge[len("Bearer "):]))
        realm = params.pop("realm", None)
        if not realm:
            return None
        params.setdefault("scope", f"repository:{ref.repository}:pull")

        async with session.get(realm, params=params) as response:
            if response.status != 200:
                logger.warning("Token request to %s failed with status %d", realm, response.status)
                return None
            data = await response.json(content_type=None)

        return data.get("token") or data.get("access_token")

    def _select_platform(self, ref: RegistryReference, index: Dict) -> str:
        os_name, _, architecture = self.platform.partition("/")
        for entry in index.get("manifests", []):
            platform = entry.get("platform") or {}
            if platform.get("os") == os_name and platform.get("architecture") == architecture:
                return entry["digest"]

        raise RegistryFetchError(
            f"image manifest: no manifest for platform {self.platform} in {ref.repository}"
        )

    @staticmethod
    def _describe_error(status: int, body: str) -> str:
        """Render registry error bodies as ``CODE: message``."""
        try:
            errors = json.loads(body).get("errors") or []
        except (ValueError, AttributeError):
            errors = []

        described = [
            f"{e.get('code', 'UNKNOWN')}: {e.get('message', '')}"
            for e in errors
            if isinstance(e, dict)
        ]
        if described:
            return "; ".join(described)
        return f"unexpected status code {status}"
