"""
Desired state of the warden webhook registrations.

Field names follow the ``admissionregistration.k8s.io/v1`` API (camelCase on
the wire). Webhook fields warden does not manage are kept on parsed live
objects so that any of them counts as drift. Empty selectors equal missing
ones, the API server defaults both to ``{}``.
"""

import base64
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator
from pydantic.alias_generators import to_camel

from warden.config import WebhookConfig

API_VERSION = "admissionregistration.k8s.io/v1"

DOMAIN = "warden.kyma-project.io"
DEFAULTING_WEBHOOK_NAME = f"defaulting.webhook.{DOMAIN}"
VALIDATION_WEBHOOK_NAME = f"validation.webhook.{DOMAIN}"

POD_DEFAULTING_PATH = "/defaulting/pods"
POD_VALIDATION_PATH = "/validation/pods"

WEBHOOK_PORT = 443
WEBHOOK_TIMEOUT = 15
ADMISSION_REVIEW_VERSIONS = ("v1beta1", "v1")


class WebhookKind(str, Enum):
    MUTATING = "Mutating"
    VALIDATING = "Validating"


@dataclass(frozen=True)
class WebhookProfile:
    """Constant registration parameters of one webhook kind."""

    name: str
    resource_kind: str
    path: str
    failure_policy: str
    reinvocation_policy: Optional[str] = None


# The mutating webhook fails closed, the validating webhook fails open.
PROFILES: Dict[WebhookKind, WebhookProfile] = {
    WebhookKind.MUTATING: WebhookProfile(
        name=DEFAULTING_WEBHOOK_NAME,
        resource_kind="MutatingWebhookConfiguration",
        path=POD_DEFAULTING_PATH,
        failure_policy="Fail",
        reinvocation_policy="Never",
    ),
    WebhookKind.VALIDATING: WebhookProfile(
        name=VALIDATION_WEBHOOK_NAME,
        resource_kind="ValidatingWebhookConfiguration",
        path=POD_VALIDATION_PATH,
        failure_policy="Ignore",
    ),
}


class _ApiModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="ignore", frozen=True
    )


class RuleWithOperations(_ApiModel):
    operations: List[str] = Field(default_factory=list)
    api_groups: List[str] = Field(default_factory=list)
    api_versions: List[str] = Field(default_factory=list)
    resources: List[str] = Field(default_factory=list)
    scope: Optional[str] = None


class ServiceReference(_ApiModel):
    namespace: str
    name: str
    path: Optional[str] = None
    port: Optional[int] = None


class WebhookClientConfig(_ApiModel):
    ca_bundle: bytes = b""
    service: Optional[ServiceReference] = None
    url: Optional[str] = None

    @field_validator("ca_bundle", mode="before")
    @classmethod
    def decode_ca_bundle(cls, v: Any) -> Any:
        # The API carries the bundle base64 encoded
        if isinstance(v, str):
            return base64.b64decode(v)
        if v is None:
            return b""
        return v

    @field_serializer("ca_bundle")
    def encode_ca_bundle(self, v: bytes) -> str:
        return base64.b64encode(v).decode("ascii")


class AdmissionWebhook(_ApiModel):
    model_config = ConfigDict(extra="allow")

    name: str
    admission_review_versions: List[str] = Field(default_factory=list)
    client_config: WebhookClientConfig
    failure_policy: Optional[str] = None
    match_policy: Optional[str] = None
    reinvocation_policy: Optional[str] = None
    rules: List[RuleWithOperations] = Field(default_factory=list)
    side_effects: Optional[str] = None
    timeout_seconds: Optional[int] = None
    namespace_selector: Optional[Dict[str, Any]] = None
    object_selector: Optional[Dict[str, Any]] = None

    @field_validator("namespace_selector", "object_selector", mode="before")
    @classmethod
    def empty_selector(cls, v: Any) -> Any:
        return v or None


class WebhookConfiguration(_ApiModel):
    kind: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    webhooks: List[AdmissionWebhook] = Field(default_factory=list)

    @classmethod
    def from_body(cls, body: Dict[str, Any]) -> "WebhookConfiguration":
        return cls.model_validate(
            {
                "kind": body.get("kind", ""),
                "metadata": body.get("metadata") or {},
                "webhooks": body.get("webhooks") or [],
            }
        )

    def to_body(self) -> Dict[str, Any]:
        return {
            "apiVersion": API_VERSION,
            **self.model_dump(by_alias=True, exclude_none=True),
        }


def webhooks_equal(desired: List[AdmissionWebhook], live: List[AdmissionWebhook]) -> bool:
    """
    Compare webhook lists field by field; metadata is never part of the comparison.

    Unmodelled keys on a live webhook such as ``matchConditions`` count as drift.
    """
    if len(desired) != len(live):
        return False
    if any(w.model_extra for w in live):
        return False
    return all(d.model_dump() == w.model_dump() for d, w in zip(desired, live))


def build_webhook(kind: WebhookKind, config: WebhookConfig) -> AdmissionWebhook:
    """Build the single webhook of ``kind`` routed to the configured service."""
    profile = PROFILES[kind]

    return AdmissionWebhook(
        name=profile.name,
        admission_review_versions=list(ADMISSION_REVIEW_VERSIONS),
        client_config=WebhookClientConfig(
            ca_bundle=config.ca_bundle,
            service=ServiceReference(
                namespace=config.service_namespace,
                name=config.service_name,
                path=profile.path,
                port=WEBHOOK_PORT,
            ),
        ),
        failure_policy=profile.failure_policy,
        match_policy="Exact",
        reinvocation_policy=profile.reinvocation_policy,
        rules=[
            RuleWithOperations(
                operations=["CREATE", "UPDATE"],
                api_groups=[""],
                api_versions=["v1"],
                resources=["pods"],
                scope="*",
            )
        ],
        side_effects="None",
        timeout_seconds=WEBHOOK_TIMEOUT,
    )


def build_webhook_configuration(kind: WebhookKind, config: WebhookConfig) -> WebhookConfiguration:
    profile = PROFILES[kind]
    return WebhookConfiguration(
        kind=profile.resource_kind,
        metadata={"name": profile.name},
        webhooks=[build_webhook(kind, config)],
    )
