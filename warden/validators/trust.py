import asyncio
import logging
from typing import Dict, List, Optional

from warden.config import WardenConfig
from warden.exceptions import ImageValidationError
from warden.metrics import MetricsCollector
from warden.providers.notary import NotaryRepoFactory
from warden.providers.registry import RegistryDigestFetcher
from warden.validators.base import ValidationResult, ValidatorBase
from warden.validators.image import ImageValidator


logger = logging.getLogger(__name__)

VALIDATED_OPERATIONS = ("CREATE", "UPDATE")


class TrustValidator(ValidatorBase):
    """Validator that checks every pod image against published trust data."""

    def __init__(
        self,
        config: WardenConfig,
        image_validator: Optional[ImageValidator] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        super().__init__(config)
        self.metrics = metrics
        self.image_validator = image_validator or ImageValidator(
            config.service_config(),
            NotaryRepoFactory(),
            RegistryDigestFetcher(timeout=config.notary_timeout),
        )

    async def validate(self, admission_review: Dict) -> ValidationResult:
        """Deny the pod if any of its images fails trust validation."""
        request = admission_review.get("request", {})

        kind = request.get("kind", {}).get("kind", "")
        if kind != "Pod":
            return ValidationResult.allow()

        # Delete requests have object set to None so no images to check
        if request.get("operation") not in VALIDATED_OPERATIONS:
            return ValidationResult.allow()

        images = self.extract_images(request.get("object") or {})
        if not images:
            return ValidationResult.allow()

        try:
            violation = await asyncio.wait_for(
                self._validate_images(images), self.config.admission_timeout
            )
        except asyncio.TimeoutError:
            logger.error("Image validation for %s timed out", request.get("uid", "unknown"))
            self._record("DeadlineExceeded")
            return ValidationResult.deny("image validation failed: context deadline exceeded")

        if violation:
            return ValidationResult.deny(violation)
        return ValidationResult.allow()

    async def _validate_images(self, images: List[str]) -> Optional[str]:
        """Return the deny message for the first untrusted image, if any."""
        for image in images:
            try:
                await self.image_validator.validate(image)
            except ImageValidationError as e:
                logger.warning("Image %s rejected: %s", image, e)
                self._record(e.__class__.__name__)
                return f"image {image} validation failed: {e}"

            logger.debug("Image %s validated", image)
            self._record("Trusted")

        return None

    def _record(self, outcome: str) -> None:
        if self.metrics:
            self.metrics.record_image_validation(outcome)
