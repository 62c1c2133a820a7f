"""
Cluster object store for webhook configuration objects.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException

from warden.exceptions import ObjectNotFound

logger = logging.getLogger(__name__)

# resource kind -> (read, create, replace) methods of AdmissionregistrationV1Api
_OPERATIONS = {
    "MutatingWebhookConfiguration": (
        "read_mutating_webhook_configuration",
        "create_mutating_webhook_configuration",
        "replace_mutating_webhook_configuration",
    ),
    "ValidatingWebhookConfiguration": (
        "read_validating_webhook_configuration",
        "create_validating_webhook_configuration",
        "replace_validating_webhook_configuration",
    ),
}


class ObjectStore(ABC):
    """Get/create/update of cluster-scoped objects by kind and name."""

    @abstractmethod
    async def get(self, kind: str, name: str) -> Dict[str, Any]:
        """Return the object as an API dict; raise ObjectNotFound if it does not exist."""

    @abstractmethod
    async def create(self, kind: str, body: Dict[str, Any]) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def update(self, kind: str, name: str, body: Dict[str, Any]) -> Dict[str, Any]:
        pass


class KubernetesObjectStore(ObjectStore):
    """Object store backed by the Kubernetes admissionregistration/v1 API."""

    def __init__(
        self,
        api: Optional[client.AdmissionregistrationV1Api] = None,
        request_timeout: float = 10.0,
    ):
        self.api = api or client.AdmissionregistrationV1Api()
        self.request_timeout = request_timeout

    @classmethod
    def from_environment(cls, request_timeout: float = 10.0) -> "KubernetesObjectStore":
        """Load in-cluster credentials, falling back to the local kubeconfig."""
        try:
            config.load_incluster_config()
            logger.info("Using in-cluster Kubernetes configuration")
        except ConfigException:
            config.load_kube_config()
            logger.info("Using local kubeconfig")
        return cls(request_timeout=request_timeout)

    def _method(self, kind: str, index: int):
        try:
            return getattr(self.api, _OPERATIONS[kind][index])
        except KeyError:
            raise ValueError(f"Unsupported object kind: {kind}") from None

    async def _call(self, method, *args, **kwargs) -> Dict[str, Any]:
        # Blocking client call, run in a worker thread
        result = await asyncio.to_thread(
            method, *args, _request_timeout=self.request_timeout, **kwargs
        )
        return self.api.api_client.sanitize_for_serialization(result)

    async def get(self, kind: str, name: str) -> Dict[str, Any]:
        try:
            return await self._call(self._method(kind, 0), name)
        except ApiException as e:
            if e.status == 404:
                raise ObjectNotFound(f"{kind} {name} not found") from e
            raise

    async def create(self, kind: str, body: Dict[str, Any]) -> Dict[str, Any]:
        return await self._call(self._method(kind, 1), body=body)

    async def update(self, kind: str, name: str, body: Dict[str, Any]) -> Dict[str, Any]:
        return await self._call(self._method(kind, 2), name, body=body)
