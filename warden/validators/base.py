"""
Base validator interface and common functionality.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List

from warden.config import WardenConfig


@dataclass
class ValidationResult:
    """Result of a validation check."""

    allowed: bool
    messages: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @classmethod
    def allow(cls, message: str = None, warning: str = None):
        """Create an allowed result."""
        result = cls(allowed=True)
        if message:
            result.messages.append(message)
        if warning:
            result.warnings.append(warning)
        return result

    @classmethod
    def deny(cls, message: str):
        """Create a denied result."""
        return cls(allowed=False, messages=[message])


class ValidatorBase(ABC):
    """Base class for admission validators."""

    def __init__(self, config: WardenConfig):
        self.config = config

    @abstractmethod
    async def validate(self, admission_review: Dict) -> ValidationResult:
        """
        Validate an admission review request.

        Args:
            admission_review: Kubernetes admission review request

        Returns:
            ValidationResult with decision and messages
        """
        pass

    async def health_check(self) -> bool:
        return True

    def extract_images(self, pod: Dict) -> List[str]:
        """Extract container images from a pod in declaration order, without duplicates."""
        spec = pod.get("spec") or {}

        images = []
        for key in ("containers", "initContainers", "ephemeralContainers"):
            images.extend(c.get("image", "") for c in spec.get(key) or [])

        return list(dict.fromkeys(img for img in images if img))
