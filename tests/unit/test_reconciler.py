"""
Unit tests for the webhook configuration reconciler
"""

import pytest

from warden.config import WebhookConfig
from warden.exceptions import ClusterCreateError, ClusterFetchError, ClusterUpdateError
from warden.webhook.models import (
    DEFAULTING_WEBHOOK_NAME,
    VALIDATION_WEBHOOK_NAME,
    WebhookConfiguration,
    WebhookKind,
)
from warden.webhook.reconciler import ReconcileAction, ensure_webhook_configuration_for

MUTATING_KEY = ("MutatingWebhookConfiguration", DEFAULTING_WEBHOOK_NAME)
VALIDATING_KEY = ("ValidatingWebhookConfiguration", VALIDATION_WEBHOOK_NAME)


class TestEnsureWebhookConfiguration:
    """Test create, update and no-op reconciles."""

    @pytest.mark.asyncio
    async def test_creates_missing_configuration(self, object_store, webhook_config):
        action = await ensure_webhook_configuration_for(
            object_store, webhook_config, WebhookKind.MUTATING
        )

        assert action is ReconcileAction.CREATED
        assert object_store.writes() == [("create", *MUTATING_KEY)]

        stored = object_store.objects[MUTATING_KEY]
        assert stored["metadata"]["name"] == DEFAULTING_WEBHOOK_NAME
        assert stored["webhooks"][0]["failurePolicy"] == "Fail"

    @pytest.mark.asyncio
    async def test_creates_validating_configuration(self, object_store, webhook_config):
        action = await ensure_webhook_configuration_for(
            object_store, webhook_config, WebhookKind.VALIDATING
        )

        assert action is ReconcileAction.CREATED
        assert VALIDATING_KEY in object_store.objects
        assert MUTATING_KEY not in object_store.objects
        assert object_store.objects[VALIDATING_KEY]["webhooks"][0]["failurePolicy"] == "Ignore"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("kind", list(WebhookKind))
    async def test_second_reconcile_is_noop(self, object_store, webhook_config, kind):
        """Server-defaulted fields on the stored object do not count as drift."""
        await ensure_webhook_configuration_for(object_store, webhook_config, kind)
        object_store.calls.clear()

        action = await ensure_webhook_configuration_for(object_store, webhook_config, kind)

        assert action is ReconcileAction.UNCHANGED
        assert object_store.writes() == []

    @pytest.mark.asyncio
    async def test_updates_drifted_configuration(self, object_store, webhook_config):
        await ensure_webhook_configuration_for(object_store, webhook_config, WebhookKind.MUTATING)
        stored = object_store.objects[MUTATING_KEY]
        stored["webhooks"][0]["failurePolicy"] = "Ignore"
        stored["metadata"]["labels"] = {"app.kubernetes.io/part-of": "warden"}

        action = await ensure_webhook_configuration_for(
            object_store, webhook_config, WebhookKind.MUTATING
        )

        assert action is ReconcileAction.UPDATED
        updated = object_store.objects[MUTATING_KEY]
        assert updated["webhooks"][0]["failurePolicy"] == "Fail"
        # Live metadata is carried over and the update was not stale
        assert updated["metadata"]["labels"] == {"app.kubernetes.io/part-of": "warden"}
        assert updated["metadata"]["resourceVersion"] == "2"

    @pytest.mark.asyncio
    async def test_updates_rotated_ca_bundle(self, object_store, webhook_config):
        await ensure_webhook_configuration_for(object_store, webhook_config, WebhookKind.VALIDATING)
        rotated = WebhookConfig(
            ca_bundle=b"rotated-ca",
            service_namespace=webhook_config.service_namespace,
            service_name=webhook_config.service_name,
        )

        action = await ensure_webhook_configuration_for(object_store, rotated, WebhookKind.VALIDATING)

        assert action is ReconcileAction.UPDATED
        live = WebhookConfiguration.from_body(object_store.objects[VALIDATING_KEY])
        assert live.webhooks[0].client_config.ca_bundle == b"rotated-ca"

    @pytest.mark.asyncio
    async def test_replaces_unreadable_webhooks(self, object_store, webhook_config):
        object_store.objects[VALIDATING_KEY] = {
            "kind": "ValidatingWebhookConfiguration",
            "metadata": {"name": VALIDATION_WEBHOOK_NAME, "resourceVersion": "7"},
            "webhooks": [{"name": "broken"}],
        }

        action = await ensure_webhook_configuration_for(
            object_store, webhook_config, WebhookKind.VALIDATING
        )

        assert action is ReconcileAction.UPDATED
        assert object_store.objects[VALIDATING_KEY]["webhooks"][0]["name"] == VALIDATION_WEBHOOK_NAME

    @pytest.mark.asyncio
    async def test_extra_webhook_is_drift(self, object_store, webhook_config):
        await ensure_webhook_configuration_for(object_store, webhook_config, WebhookKind.MUTATING)
        stored = object_store.objects[MUTATING_KEY]
        stored["webhooks"].append(dict(stored["webhooks"][0], name="extra.example.com"))

        action = await ensure_webhook_configuration_for(
            object_store, webhook_config, WebhookKind.MUTATING
        )

        assert action is ReconcileAction.UPDATED
        assert len(object_store.objects[MUTATING_KEY]["webhooks"]) == 1

    @pytest.mark.asyncio
    async def test_reverts_tampered_namespace_selector(self, object_store, webhook_config):
        await ensure_webhook_configuration_for(object_store, webhook_config, WebhookKind.VALIDATING)
        object_store.objects[VALIDATING_KEY]["webhooks"][0]["namespaceSelector"] = {
            "matchExpressions": [
                {
                    "key": "kubernetes.io/metadata.name",
                    "operator": "NotIn",
                    "values": ["default"],
                }
            ]
        }

        action = await ensure_webhook_configuration_for(
            object_store, webhook_config, WebhookKind.VALIDATING
        )

        assert action is ReconcileAction.UPDATED
        assert object_store.objects[VALIDATING_KEY]["webhooks"][0]["namespaceSelector"] == {}

    @pytest.mark.asyncio
    async def test_removes_match_conditions(self, object_store, webhook_config):
        await ensure_webhook_configuration_for(object_store, webhook_config, WebhookKind.MUTATING)
        object_store.objects[MUTATING_KEY]["webhooks"][0]["matchConditions"] = [
            {"name": "never", "expression": "false"}
        ]

        action = await ensure_webhook_configuration_for(
            object_store, webhook_config, WebhookKind.MUTATING
        )

        assert action is ReconcileAction.UPDATED
        assert "matchConditions" not in object_store.objects[MUTATING_KEY]["webhooks"][0]


class TestReconcileErrors:
    """Test error wrapping for cluster failures."""

    @pytest.mark.asyncio
    async def test_get_failure(self, object_store, webhook_config):
        object_store.get_error = RuntimeError("connection refused")

        with pytest.raises(ClusterFetchError) as exc_info:
            await ensure_webhook_configuration_for(
                object_store, webhook_config, WebhookKind.VALIDATING
            )

        assert "failed to get ValidatingWebhookConfiguration" in str(exc_info.value)
        assert "connection refused" in str(exc_info.value)
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert object_store.writes() == []

    @pytest.mark.asyncio
    async def test_create_failure(self, object_store, webhook_config):
        object_store.create_error = RuntimeError("forbidden")

        with pytest.raises(ClusterCreateError) as exc_info:
            await ensure_webhook_configuration_for(
                object_store, webhook_config, WebhookKind.MUTATING
            )

        assert "while creating MutatingWebhookConfiguration" in str(exc_info.value)
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert object_store.objects == {}

    @pytest.mark.asyncio
    async def test_update_failure_leaves_object(self, object_store, webhook_config):
        await ensure_webhook_configuration_for(object_store, webhook_config, WebhookKind.MUTATING)
        object_store.objects[MUTATING_KEY]["webhooks"][0]["timeoutSeconds"] = 30
        object_store.update_error = RuntimeError("conflict")

        with pytest.raises(ClusterUpdateError) as exc_info:
            await ensure_webhook_configuration_for(
                object_store, webhook_config, WebhookKind.MUTATING
            )

        assert "conflict" in str(exc_info.value)
        assert object_store.objects[MUTATING_KEY]["webhooks"][0]["timeoutSeconds"] == 30
