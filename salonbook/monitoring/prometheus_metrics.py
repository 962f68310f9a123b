"""
Prometheus metrics for SalonBook.

Service timings come from the ``@measure_operation`` decorator; settlement,
webhook and gateway counters are recorded by the payment services.
"""

from typing import Optional, cast

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

# Custom registry keeps test runs and multiple app instances isolated from the default one
REGISTRY = CollectorRegistry()

service_operation_duration_seconds = Histogram(
    "salonbook_service_operation_duration_seconds",
    "Service operation duration in seconds",
    ["service", "operation"],
    registry=REGISTRY,
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

service_operations_total = Counter(
    "salonbook_service_operations_total",
    "Total number of service operations",
    ["service", "operation", "status"],
    registry=REGISTRY,
)

errors_total = Counter(
    "salonbook_errors_total",
    "Total number of errors",
    ["service", "operation", "error_type"],
    registry=REGISTRY,
)

settlement_outcomes_total = Counter(
    "salonbook_settlement_outcomes_total",
    "Payment settlement attempts by entry point and outcome",
    ["source", "outcome"],  # source: verify | webhook; outcome: won | duplicate | failed | conflict
    registry=REGISTRY,
)

webhook_events_total = Counter(
    "salonbook_webhook_events_total",
    "Verified gateway webhook deliveries",
    ["event_type", "result"],  # processed | duplicate | ignored | unknown_order
    registry=REGISTRY,
)

gateway_calls_total = Counter(
    "salonbook_gateway_calls_total",
    "Outbound payment gateway calls",
    ["operation", "status"],  # success | retry | error
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
            service: Service name (e.g., 'PaymentService')
            operation: Operation/method name (e.g., 'verify_payment')
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
    def record_settlement(source: str, outcome: str) -> None:
        settlement_outcomes_total.labels(source=source, outcome=outcome).inc()

    @staticmethod
    def record_webhook(event_type: str, result: str) -> None:
        webhook_events_total.labels(event_type=event_type, result=result).inc()

    @staticmethod
    def record_gateway_call(operation: str, status: str) -> None:
        gateway_calls_total.labels(operation=operation, status=status).inc()

    @staticmethod
    def get_metrics() -> bytes:
        """Metrics data in Prometheus text format."""
        return cast(bytes, generate_latest(REGISTRY))

    @staticmethod
    def get_content_type() -> str:
        return cast(str, CONTENT_TYPE_LATEST)


prometheus_metrics = PrometheusMetrics()
