# backend/studio_booking/monitoring/prometheus_metrics.py
"""
Prometheus metrics for the studio booking engine.

Service-level timings come from the @measure_operation decorator; the
domain counters below track credit movement, optimistic-concurrency
conflicts and waitlist promotion outcomes.
"""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)
from typing import Optional

# Custom registry so test runs and embedded apps don't collide with the default one
REGISTRY = CollectorRegistry()

service_operation_duration_seconds = Histogram(
    "studio_booking_service_operation_duration_seconds",
    "Service operation duration in seconds",
    ["service", "operation"],
    registry=REGISTRY,
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

service_operations_total = Counter(
    "studio_booking_service_operations_total",
    "Total number of service operations",
    ["service", "operation", "status"],
    registry=REGISTRY,
)

errors_total = Counter(
    "studio_booking_errors_total",
    "Total number of errors",
    ["service", "operation", "error_type"],
    registry=REGISTRY,
)

credits_allocated_total = Counter(
    "studio_booking_credits_allocated_total",
    "Plan credits attached to bookings",
    ["modality", "unlimited"],
    registry=REGISTRY,
)

credits_refunded_total = Counter(
    "studio_booking_credits_refunded_total",
    "Plan credits returned to plans",
    ["reason"],  # cancellation | compensation | rebook | rollback
    registry=REGISTRY,
)

optimistic_conflicts_total = Counter(
    "studio_booking_optimistic_conflicts_total",
    "Conditional updates that matched no rows",
    ["resource"],  # plan_purchase | booking | waitlist_entry
    registry=REGISTRY,
)

waitlist_promotions_total = Counter(
    "studio_booking_waitlist_promotions_total",
    "Waitlist promotion attempts by outcome",
    ["outcome"],  # promoted | duplicate | failed | lost_claim
    registry=REGISTRY,
)


class PrometheusMetrics:
    """Manages Prometheus metrics collection and exposure."""

    @staticmethod
    def record_service_operation(
        service: str,
        operation: str,
        duration: float,
        status: str = "success",
        error_type: Optional[str] = None,
    ) -> None:
        """
        Record service operation metrics from @measure_operation decorator.

        Args:
            service: Service name (e.g., 'BookingService')
            operation: Operation/method name (e.g., 'create_booking')
            duration: Operation duration in seconds
            status: Operation status ('success' or 'error')
            error_type: Type of error if status is 'error'
        """
        service_operation_duration_seconds.labels(service=service, operation=operation).observe(
            duration
        )
        service_operations_total.labels(service=service, operation=operation, status=status).inc()
        if status == "error" and error_type:
            errors_total.labels(service=service, operation=operation, error_type=error_type).inc()

    @staticmethod
    def inc_credit_allocated(modality: str, unlimited: bool) -> None:
        credits_allocated_total.labels(
            modality=modality, unlimited="true" if unlimited else "false"
        ).inc()

    @staticmethod
    def inc_credit_refunded(reason: str) -> None:
        credits_refunded_total.labels(reason=reason).inc()

    @staticmethod
    def inc_optimistic_conflict(resource: str) -> None:
        optimistic_conflicts_total.labels(resource=resource).inc()

    @staticmethod
    def inc_waitlist_promotion(outcome: str) -> None:
        waitlist_promotions_total.labels(outcome=outcome).inc()

    @staticmethod
    def get_metrics() -> bytes:
        """Render the registry in Prometheus text exposition format."""
        return generate_latest(REGISTRY)

    @staticmethod
    def get_content_type() -> str:
        return CONTENT_TYPE_LATEST


prometheus_metrics = PrometheusMetrics()
