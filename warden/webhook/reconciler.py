"""
Webhook configuration reconciler.

Keeps the cluster's webhook configuration objects aligned with the desired
state built from a WebhookConfig. Objects are created when missing and
updated in place when their webhooks drift; they are never deleted. There is
no retry here, callers re-run the reconcile on their own schedule.
"""

import copy
import logging
from enum import Enum

from pydantic import ValidationError

from warden.config import WebhookConfig
from warden.exceptions import (
    ClusterCreateError,
    ClusterFetchError,
    ClusterUpdateError,
    ObjectNotFound,
)
from warden.webhook.models import (
    PROFILES,
    WebhookConfiguration,
    WebhookKind,
    build_webhook_configuration,
    webhooks_equal,
)
from warden.webhook.store import ObjectStore

logger = logging.getLogger(__name__)


class ReconcileAction(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


async def ensure_webhook_configuration_for(
    store: ObjectStore, config: WebhookConfig, kind: WebhookKind
) -> ReconcileAction:
    """
    Ensure the webhook configuration object of ``kind`` matches ``config``.

    Returns:
        The action taken against the cluster

    Raises:
        ClusterFetchError, ClusterCreateError, ClusterUpdateError
    """
    profile = PROFILES[kind]
    desired = build_webhook_configuration(kind, config)

    try:
        body = await store.get(profile.resource_kind, profile.name)
    except ObjectNotFound:
        try:
            await store.create(profile.resource_kind, desired.to_body())
        except Exception as e:
            raise ClusterCreateError(
                f"while creating {profile.resource_kind} {profile.name}: {e}"
            ) from e

        logger.info("Created %s %s", profile.resource_kind, profile.name)
        return ReconcileAction.CREATED
    except Exception as e:
        raise ClusterFetchError(
            f"failed to get {profile.resource_kind}: {profile.name}: {e}"
        ) from e

    try:
        live_webhooks = WebhookConfiguration.from_body(body).webhooks
    except ValidationError as e:
        logger.warning("Unreadable webhooks in %s %s, replacing: %s", profile.resource_kind, profile.name, e)
        live_webhooks = None

    if live_webhooks is not None and webhooks_equal(desired.webhooks, live_webhooks):
        logger.debug("%s %s is up to date", profile.resource_kind, profile.name)
        return ReconcileAction.UNCHANGED

    # Keep resourceVersion and the rest of the live identity
    updated = desired.model_copy(update={"metadata": copy.deepcopy(body.get("metadata") or {})})
    try:
        await store.update(profile.resource_kind, profile.name, updated.to_body())
    except Exception as e:
        raise ClusterUpdateError(
            f"while updating {profile.resource_kind} {profile.name}: {e}"
        ) from e

    logger.info("Updated %s %s", profile.resource_kind, profile.name)
    return ReconcileAction.UPDATED
