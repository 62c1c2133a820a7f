#!/usr/bin/env python3
"""
Warden admission service.

Serves the pod validation and defaulting webhooks and, when enabled, keeps
the webhook configuration objects in the cluster up to date.
"""

import asyncio
import json
import logging
import sys
import time
from contextlib import asynccontextmanager, suppress
from typing import Callable, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from loguru import logger

from warden.config import WardenConfig, WebhookConfig, load_config
from warden.exceptions import ReconcileError
from warden.metrics import MetricsCollector
from warden.server import WebServer
from warden.validators.base import ValidatorBase
from warden.validators.trust import TrustValidator
from warden.webhook.models import POD_DEFAULTING_PATH, POD_VALIDATION_PATH, WebhookKind
from warden.webhook.reconciler import ensure_webhook_configuration_for
from warden.webhook.store import KubernetesObjectStore, ObjectStore

ADMISSION_API_VERSION = "admission.k8s.io/v1"
SUPPORTED_API_VERSIONS = ("admission.k8s.io/v1", "admission.k8s.io/v1beta1")


def review_api_version(admission_review) -> str:
    """Return the AdmissionReview version to answer with; responses must match the request."""
    if isinstance(admission_review, dict):
        api_version = admission_review.get("apiVersion")
        if api_version in SUPPORTED_API_VERSIONS:
            return api_version
    return ADMISSION_API_VERSION


class AdmissionController:
    """Main admission controller that orchestrates validation."""

    def __init__(
        self,
        config: WardenConfig,
        validators: Optional[List[ValidatorBase]] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.config = config
        self.metrics = metrics or MetricsCollector()

        if validators is None:
            validators = [TrustValidator(config, metrics=self.metrics)]
        self.validators: List[ValidatorBase] = validators

        logger.info(
            "Admission controller initialized with validators: {}",
            [v.__class__.__name__ for v in self.validators],
        )

    async def validate_admission(self, admission_review: Dict) -> Dict:
        """
        Main validation entry point.

        Args:
            admission_review: Kubernetes admission review request

        Returns:
            Admission review response
        """
        start_time = time.time()
        request = admission_review.get("request", {})
        uid = request.get("uid", "unknown")
        operation = request.get("operation", "unknown")

        logger.debug(
            "Processing admission request: uid={}, kind={}, operation={}",
            uid,
            request.get("kind", {}).get("kind", "unknown"),
            operation,
        )

        try:
            results = await asyncio.gather(
                *(validator.validate(admission_review) for validator in self.validators),
                return_exceptions=True,
            )

            allowed = True
            messages = []
            warnings = []

            for validator, result in zip(self.validators, results):
                validator_name = validator.__class__.__name__

                if isinstance(result, Exception):
                    logger.error("Validator {} failed: {}", validator_name, result)
                    self.metrics.record_validator_error(validator_name)
                    # Fail closed on validator errors
                    allowed = False
                    messages.append(f"{validator_name}: Internal error")
                    continue

                if not result.allowed:
                    allowed = False
                    messages.extend(result.messages)

                warnings.extend(result.warnings)

            response = self._build_response(
                uid=uid,
                allowed=allowed,
                messages=messages,
                warnings=warnings,
                api_version=review_api_version(admission_review),
            )

            elapsed = time.time() - start_time
            self.metrics.record_admission_decision(
                allowed=allowed, operation=operation, duration=elapsed
            )

            logger.debug(
                "Admission decision for {}: allowed={}, duration={:.3f}s", uid, allowed, elapsed
            )

            return response

        except Exception as e:
            logger.exception("Unexpected error processing admission request {}", uid)

            # Fail closed on unexpected errors
            return self._build_response(
                uid=uid,
                allowed=False,
                messages=[f"Internal error: {str(e)}"],
                warnings=[],
                api_version=review_api_version(admission_review),
            )

    def _build_response(
        self,
        uid: str,
        allowed: bool,
        messages: List[str],
        warnings: List[str],
        api_version: str = ADMISSION_API_VERSION,
    ) -> Dict:
        """Build admission review response in the version of the request."""
        response = {
            "apiVersion": api_version,
            "kind": "AdmissionReview",
            "response": {"uid": uid, "allowed": allowed},
        }

        if messages:
            response["response"]["status"] = {"message": "; ".join(messages)}

        if warnings:
            response["response"]["warnings"] = warnings

        return response

    async def health_check(self) -> Dict:
        """Check health of all validators."""
        health_status = {"healthy": True, "validators": {}}

        for validator in self.validators:
            try:
                is_healthy = await validator.health_check()
                health_status["validators"][validator.__class__.__name__] = {"healthy": is_healthy}
                if not is_healthy:
                    health_status["healthy"] = False
            except Exception as e:
                health_status["validators"][validator.__class__.__name__] = {
                    "healthy": False,
                    "error": str(e),
                }
                health_status["healthy"] = False

        return health_status


class AdmissionWebhookServer(WebServer):
    """Async web server for the warden admission webhooks."""

    def __init__(
        self,
        config: WardenConfig,
        controller: Optional[AdmissionController] = None,
        store_factory: Optional[Callable[[], ObjectStore]] = None,
    ):
        self.controller = controller or AdmissionController(config)
        self.store_factory = store_factory or KubernetesObjectStore.from_environment
        super().__init__(config, lifespan=self.lifespan)

    @asynccontextmanager
    async def lifespan(self, app: FastAPI):
        """Reconcile webhook configurations at startup and then periodically."""
        if not self.config.manage_webhooks:
            logger.info("Webhook configuration management disabled")
            yield
            return

        webhook_config = self.config.webhook_config()
        store = self.store_factory()

        await self.reconcile_webhooks(store, webhook_config)
        task = asyncio.create_task(self._reconcile_loop(store, webhook_config))
        app.state.reconcile_task = task
        try:
            yield
        finally:
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task

    async def _reconcile_loop(self, store: ObjectStore, webhook_config: WebhookConfig):
        while True:
            await asyncio.sleep(self.config.reconcile_interval)
            await self.reconcile_webhooks(store, webhook_config)

    async def reconcile_webhooks(self, store: ObjectStore, webhook_config: WebhookConfig):
        """Reconcile every webhook kind once; failures are logged and counted."""
        for kind in WebhookKind:
            try:
                action = await ensure_webhook_configuration_for(store, webhook_config, kind)
            except ReconcileError as e:
                logger.error("Failed to reconcile {} webhook configuration: {}", kind.value, e)
                self.controller.metrics.record_reconcile(kind.value, "failed")
                continue

            logger.debug("{} webhook configuration {}", kind.value, action.value)
            self.controller.metrics.record_reconcile(kind.value, action.value)

    def _setup_routes(self):
        """Setup web routes."""
        self.app.add_api_route(POD_VALIDATION_PATH, self.handle_validate, methods=["POST"])
        self.app.add_api_route(POD_DEFAULTING_PATH, self.handle_default, methods=["POST"])
        self.app.add_api_route("/healthz", self.handle_health, methods=["GET"])
        self.app.add_api_route("/readyz", self.handle_ready, methods=["GET"])
        if self.config.metrics_enabled:
            self.app.add_api_route("/metrics", self.handle_metrics, methods=["GET"])

    async def handle_validate(self, request: Request) -> JSONResponse:
        """Handle pod validation webhook requests."""
        admission_review = {}
        try:
            admission_review = await request.json()

            if not isinstance(admission_review, dict):
                return JSONResponse(
                    content={"error": "Invalid admission review: expected an object"},
                    status_code=400,
                )

            if not isinstance(admission_review.get("request"), dict) or not admission_review["request"]:
                return JSONResponse(
                    content={"error": "Invalid admission review: missing request"},
                    status_code=400,
                )

            response = await self.controller.validate_admission(admission_review)

            return JSONResponse(content=response)

        except json.JSONDecodeError as e:
            logger.error("Invalid JSON in request: {}", e)
            return JSONResponse(content={"error": "Invalid JSON"}, status_code=400)
        except Exception as e:
            logger.exception("Error handling validation request")

            # Return a valid admission response that denies the request
            return JSONResponse(
                content={
                    "apiVersion": review_api_version(admission_review),
                    "kind": "AdmissionReview",
                    "response": {
                        "uid": (admission_review.get("request") or {}).get("uid", "unknown"),
                        "allowed": False,
                        "status": {"message": f"Internal server error: {str(e)}"},
                    },
                }
            )

    async def handle_default(self, request: Request) -> JSONResponse:
        """Handle pod defaulting webhook requests; pods are admitted unchanged."""
        try:
            request_data = await request.json()
        except json.JSONDecodeError as e:
            logger.error("Invalid JSON in defaulting request: {}", e)
            return JSONResponse(content={"error": "Invalid JSON"}, status_code=400)

        if not isinstance(request_data, dict):
            return JSONResponse(
                content={"error": "Invalid admission review: expected an object"},
                status_code=400,
            )

        return JSONResponse(
            content={
                "apiVersion": review_api_version(request_data),
                "kind": "AdmissionReview",
                "response": {
                    "uid": (request_data.get("request") or {}).get("uid", "unknown"),
                    "allowed": True,
                },
            }
        )

    async def handle_health(self, request: Request) -> JSONResponse:
        """Liveness endpoint."""
        health_status = await self.controller.health_check()
        status_code = 200 if health_status["healthy"] else 503
        return JSONResponse(content=health_status, status_code=status_code)

    async def handle_ready(self, request: Request) -> JSONResponse:
        """Readiness endpoint."""
        health_status = await self.controller.health_check()
        if health_status["healthy"]:
            return JSONResponse(content={"ready": True})
        return JSONResponse(content={"ready": False}, status_code=503)

    async def handle_metrics(self, request: Request) -> PlainTextResponse:
        """Prometheus metrics endpoint."""
        metrics = self.controller.metrics.export_prometheus()
        return PlainTextResponse(content=metrics, media_type="text/plain")


def configure_logging(debug: bool) -> None:
    """Route loguru and stdlib logging at the level implied by ``debug``."""
    level = "DEBUG" if debug else "INFO"
    logger.remove()
    logger.add(sys.stderr, level=level)
    logging.basicConfig(
        level=getattr(logging, level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def create_app(config: Optional[WardenConfig] = None) -> FastAPI:
    """Create the admission FastAPI app (for testing or programmatic use)."""
    server = AdmissionWebhookServer(config or load_config())
    return server.app


def run():
    """Main entry point."""
    try:
        config = load_config()
        configure_logging(config.debug)

        if config.debug:
            logger.debug("Configuration: {}", config.export_json())

        server = AdmissionWebhookServer(config)
        server.run()

    except Exception as e:
        logger.exception("Failed to start warden admission service: {}", e)
        raise


if __name__ == "__main__":
    run()
