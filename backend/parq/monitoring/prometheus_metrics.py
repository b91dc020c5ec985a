"""
Prometheus metrics module for the Parq booking engine.

Service timings come from the @measure_operation decorator; the domain
counters below track availability index activity, waitlist offers and
index/table consistency.
"""

from typing import Optional, cast

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

# Private registry; the default one carries process collectors we do not scrape
REGISTRY = CollectorRegistry()

service_operation_duration_seconds = Histogram(
    "parq_service_operation_duration_seconds",
    "Service operation duration in seconds",
    ["service", "operation"],
    registry=REGISTRY,
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

service_operations_total = Counter(
    "parq_service_operations_total",
    "Total number of service operations",
    ["service", "operation", "status"],
    registry=REGISTRY,
)

errors_total = Counter(
    "parq_errors_total",
    "Total number of errors",
    ["service", "operation", "error_type"],
    registry=REGISTRY,
)

availability_index_operations_total = Counter(
    "parq_availability_index_operations_total",
    "Availability index mutations by outcome",
    ["outcome"],  # reserved | conflict | released | extended | extension_conflict
    registry=REGISTRY,
)

availability_index_reservations = Gauge(
    "parq_availability_index_reservations",
    "Reservations currently held in the availability index",
    registry=REGISTRY,
)

waitlist_offers_total = Counter(
    "parq_waitlist_offers_total",
    "Waitlist offer lifecycle events",
    ["event"],  # offered | claimed | expired | lost_race
    registry=REGISTRY,
)

booking_transitions_total = Counter(
    "parq_booking_transitions_total",
    "Booking status transitions applied",
    ["from_status", "to_status"],
    registry=REGISTRY,
)

consistency_faults_total = Counter(
    "parq_consistency_faults_total",
    "Disagreements found between the availability index and the booking table",
    ["kind"],  # missing_in_index | stale_in_index | window_mismatch
    registry=REGISTRY,
)


class PrometheusMetrics:
    """Recording helpers over the module-level collectors, plus the scrape payload."""

    @staticmethod
    def record_service_operation(
        service: str,
        operation: str,
        duration: float,
        status: str = "success",
        error_type: Optional[str] = None,
    ) -> None:
        """Called by @measure_operation once per service call."""
        service_operation_duration_seconds.labels(service=service, operation=operation).observe(
            duration
        )
        service_operations_total.labels(service=service, operation=operation, status=status).inc()
        if error_type:
            errors_total.labels(service=service, operation=operation, error_type=error_type).inc()

    @staticmethod
    def record_index_operation(outcome: str) -> None:
        availability_index_operations_total.labels(outcome=outcome).inc()

    @staticmethod
    def set_index_size(size: int) -> None:
        availability_index_reservations.set(size)

    @staticmethod
    def record_waitlist_event(event: str, count: int = 1) -> None:
        if count > 0:
            waitlist_offers_total.labels(event=event).inc(count)

    @staticmethod
    def record_booking_transition(from_status: str, to_status: str) -> None:
        booking_transitions_total.labels(from_status=from_status, to_status=to_status).inc()

    @staticmethod
    def record_consistency_fault(kind: str) -> None:
        consistency_faults_total.labels(kind=kind).inc()

    @staticmethod
    def get_metrics() -> bytes:
        return cast(bytes, generate_latest(REGISTRY))

    @staticmethod
    def get_content_type() -> str:
        return cast(str, CONTENT_TYPE_LATEST)


prometheus_metrics = PrometheusMetrics()
