"""
Metrics collection for the warden admission service.
"""

import time
from collections import defaultdict
from typing import Dict

from warden import __version__


class MetricsCollector:
    """Collect and export metrics for monitoring."""

    def __init__(self):
        # Counters
        self.admission_total = defaultdict(int)  # by allowed/denied
        self.admission_by_operation = defaultdict(int)  # by operation
        self.image_validations = defaultdict(int)  # by outcome
        self.reconciles = defaultdict(int)  # by webhook kind and action

        # Histograms (simplified - just track sum and count)
        self.admission_duration_sum = 0.0
        self.admission_duration_count = 0

        # Errors
        self.validator_errors = defaultdict(int)  # by validator name

        self.start_time = time.time()

    def record_admission_decision(self, allowed: bool, operation: str, duration: float):
        """Record an admission decision."""
        decision = "allowed" if allowed else "denied"
        self.admission_total[decision] += 1
        self.admission_by_operation[(operation, decision)] += 1

        self.admission_duration_sum += duration
        self.admission_duration_count += 1

    def record_image_validation(self, outcome: str):
        """Record the outcome of a single image validation (``Trusted`` or an error name)."""
        self.image_validations[outcome] += 1

    def record_reconcile(self, kind: str, action: str):
        """Record a webhook configuration reconcile (created/updated/unchanged/failed)."""
        self.reconciles[(kind, action)] += 1

    def record_validator_error(self, validator_name: str):
        """Record a validator error."""
        self.validator_errors[validator_name] += 1

    def export_prometheus(self) -> str:
        """Export metrics in Prometheus format."""
        lines = []

        lines.append("# HELP warden_info Warden information")
        lines.append("# TYPE warden_info gauge")
        lines.append(f'warden_info{{version="{__version__}"}} 1')

        uptime = time.time() - self.start_time
        lines.append("# HELP warden_uptime_seconds Uptime in seconds")
        lines.append("# TYPE warden_uptime_seconds gauge")
        lines.append(f"warden_uptime_seconds {uptime:.2f}")

        lines.append("# HELP warden_admission_requests_total Total admission requests")
        lines.append("# TYPE warden_admission_requests_total counter")
        for decision, count in self.admission_total.items():
            lines.append(f'warden_admission_requests_total{{decision="{decision}"}} {count}')

        lines.append("# HELP warden_admission_requests_by_operation_total Admission requests by operation")
        lines.append("# TYPE warden_admission_requests_by_operation_total counter")
        for (operation, decision), count in self.admission_by_operation.items():
            lines.append(
                f'warden_admission_requests_by_operation_total{{operation="{operation}",decision="{decision}"}} {count}'
            )

        if self.admission_duration_count > 0:
            lines.append("# HELP warden_admission_request_duration_seconds Request processing duration")
            lines.append("# TYPE warden_admission_request_duration_seconds summary")
            lines.append(f"warden_admission_request_duration_seconds_sum {self.admission_duration_sum:.4f}")
            lines.append(f"warden_admission_request_duration_seconds_count {self.admission_duration_count}")

        lines.append("# HELP warden_image_validations_total Image validations by outcome")
        lines.append("# TYPE warden_image_validations_total counter")
        for outcome, count in self.image_validations.items():
            lines.append(f'warden_image_validations_total{{outcome="{outcome}"}} {count}')

        lines.append("# HELP warden_webhook_reconciles_total Webhook configuration reconciles")
        lines.append("# TYPE warden_webhook_reconciles_total counter")
        for (kind, action), count in self.reconciles.items():
            lines.append(f'warden_webhook_reconciles_total{{kind="{kind}",action="{action}"}} {count}')

        if self.validator_errors:
            lines.append("# HELP warden_validator_errors_total Validator errors")
            lines.append("# TYPE warden_validator_errors_total counter")
            for validator, count in self.validator_errors.items():
                lines.append(f'warden_validator_errors_total{{validator="{validator}"}} {count}')

        return "\n".join(lines) + "\n"

    def export_json(self) -> Dict:
        """Export metrics as JSON."""
        return {
            "uptime_seconds": time.time() - self.start_time,
            "admission_total": dict(self.admission_total),
            "image_validations": dict(self.image_validations),
            "reconciles": {f"{kind}/{action}": count for (kind, action), count in self.reconciles.items()},
            "admission_duration": {
                "sum": self.admission_duration_sum,
                "count": self.admission_duration_count,
            },
            "validator_errors": dict(self.validator_errors),
        }
