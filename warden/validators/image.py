"""
Image trust validation.

An image is admissible when its repository is on the allowed-registries list,
or when the digest published for its tag in Notary matches the digest the
registry serves for it.
"""

import asyncio
import hmac
import logging
from dataclasses import dataclass
from typing import Optional

from warden.config import ServiceConfig
from warden.exceptions import (
    AmbiguousHash,
    ChecksumDecodeError,
    DeadlineExceeded,
    EmptyArguments,
    HashMismatch,
    ImageValidationError,
    MalformedReference,
    MissingHash,
    RefParseError,
    RegistryFetchError,
    RepoClientError,
)
from warden.providers.notary import RepoFactory
from warden.providers.registry import RegistryDigestFetcher

logger = logging.getLogger(__name__)

TAG_DELIM = ":"


@dataclass(frozen=True)
class ImageReference:
    repository: str
    tag: str

    @classmethod
    def parse(cls, image: str) -> "ImageReference":
        # Registry hosts with a port carry a second delimiter and are rejected
        parts = image.split(TAG_DELIM)
        if len(parts) != 2:
            raise MalformedReference()
        return cls(repository=parts[0], tag=parts[1])


class ImageValidator:
    """Decides whether an image reference is trusted. Holds no mutable state."""

    def __init__(
        self,
        config: ServiceConfig,
        repo_factory: RepoFactory,
        digest_fetcher: Optional[RegistryDigestFetcher] = None,
    ):
        self.config = config
        self.repo_factory = repo_factory
        self.digest_fetcher = digest_fetcher or RegistryDigestFetcher(
            timeout=config.notary_config.timeout
        )

    async def validate(self, image: str, timeout: Optional[float] = None) -> None:
        """
        Validate an image reference.

        Args:
            image: Image reference in ``repository:tag`` form
            timeout: Deadline in seconds for the whole decision

        Raises:
            ImageValidationError: a subclass naming the reason the image was rejected
        """
        try:
            await asyncio.wait_for(self._validate(image), timeout)
        except asyncio.TimeoutError as e:
            logger.warning("Validation of %s exceeded deadline of %ss", image, timeout)
            raise DeadlineExceeded() from e

    async def _validate(self, image: str) -> None:
        ref = ImageReference.parse(image)

        if self._is_image_allowed(ref.repository):
            logger.debug("Repository %s is in allowed registries, skipping verification", ref.repository)
            return

        expected = await self._get_notary_image_digest_hash(ref.repository, ref.tag)
        actual = await self._get_image_digest_hash(image)

        if not hmac.compare_digest(actual, expected):
            raise HashMismatch()

    def _is_image_allowed(self, repository: str) -> bool:
        return any(repository.startswith(allowed) for allowed in self.config.allowed_registries)

    async def _get_notary_image_digest_hash(self, repository: str, tag: str) -> bytes:
        if not repository or not tag:
            raise EmptyArguments()

        try:
            client = self.repo_factory.new_repo_client(repository, self.config.notary_config)
            target = await client.get_target_by_name(tag)
        except ImageValidationError:
            raise
        except asyncio.TimeoutError as e:
            raise DeadlineExceeded() from e
        except Exception as e:
            raise RepoClientError(str(e)) from e

        if len(target.hashes) == 0:
            raise MissingHash()

        if len(target.hashes) > 1:
            raise AmbiguousHash()

        return next(iter(target.hashes.values()))

    async def _get_image_digest_hash(self, image: str) -> bytes:
        if not image:
            raise RefParseError("ref parse: empty image provided")

        try:
            hex_digest = await self.digest_fetcher.fetch_digest(image)
        except ImageValidationError:
            raise
        except asyncio.TimeoutError as e:
            raise DeadlineExceeded() from e
        except Exception as e:
            raise RegistryFetchError(f"get image: {e}") from e

        try:
            return bytes.fromhex(hex_digest)
        except (ValueError, TypeError) as e:
            raise ChecksumDecodeError(f"checksum error: {e}") from e
