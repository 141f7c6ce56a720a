"""
Prometheus metrics for purchase gateway monitoring.

Tracks:
- Purchase requests by service type and outcome
- Purchase processing duration and amounts
- Idempotency lookups and duplicate-key races
- Order status transitions
- VTpass API calls, latency and errors
- Reconciliation write failures
- Chain backfill runs
"""
import time

from prometheus_client import Counter, Gauge, Histogram

# Purchase metrics
purchase_requests_total = Counter(
    "purchase_requests_total",
    "Total number of purchase requests",
    ["service_type", "outcome"],  # success, replayed, conflict, invalid, failed
)

purchase_processing_duration_seconds = Histogram(
    "purchase_processing_duration_seconds",
    "Purchase processing duration in seconds",
    ["service_type"],
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
)

purchase_amount_naira = Histogram(
    "purchase_amount_naira",
    "Purchase amounts in Naira",
    ["service_type"],
    buckets=(100, 200, 500, 1000, 2000, 5000, 10000, 20000, 50000),
)

# Idempotency metrics
idempotency_lookups_total = Counter(
    "idempotency_lookups_total",
    "Total requestId lookups before order creation",
    ["result"],  # miss, replay, conflict
)

duplicate_key_races_total = Counter(
    "duplicate_key_races_total",
    "Order inserts that lost a unique-key race",
    ["key"],  # request_id, transaction_hash
)

order_status_transitions_total = Counter(
    "order_status_transitions_total",
    "Total order fulfillment status transitions",
    ["to_status"],
)

reconciliation_write_failures_total = Counter(
    "reconciliation_write_failures_total",
    "Provider outcomes that could not be written to the order",
    ["to_status"],
)

# VTpass API metrics
vtpass_api_requests_total = Counter(
    "vtpass_api_requests_total",
    "Total VTpass API requests",
    ["operation", "status"],  # status: success, declined, error
)

vtpass_api_errors_total = Counter(
    "vtpass_api_errors_total",
    "Total VTpass transport errors",
    ["operation", "error_type"],
)

vtpass_api_duration_seconds = Histogram(
    "vtpass_api_duration_seconds",
    "VTpass API call duration in seconds",
    ["operation"],
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

# Circuit breaker metrics
vtpass_circuit_breaker_state = Gauge(
    "vtpass_circuit_breaker_state",
    "VTpass circuit breaker state (0=closed, 1=open, 2=half_open)",
)

# Maintenance metrics
chain_backfill_orders_total = Counter(
    "chain_backfill_orders_total",
    "Legacy orders assigned chain info by the backfill task",
)

chain_backfill_last_run_timestamp = Gauge(
    "chain_backfill_last_run_timestamp",
    "Timestamp of last chain backfill run",
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_purchase(
        service_type: str, outcome: str, duration_seconds: float, amount_naira: float = 0
    ) -> None:
        """Record a finished purchase request."""
        purchase_requests_total.labels(service_type=service_type, outcome=outcome).inc()
        purchase_processing_duration_seconds.labels(service_type=service_type).observe(
            duration_seconds
        )
        if amount_naira > 0:
            purchase_amount_naira.labels(service_type=service_type).observe(amount_naira)

    @staticmethod
    def record_idempotency_lookup(result: str) -> None:
        idempotency_lookups_total.labels(result=result).inc()

    @staticmethod
    def record_duplicate_key_race(key: str) -> None:
        duplicate_key_races_total.labels(key=key).inc()

    @staticmethod
    def record_status_transition(to_status: str) -> None:
        order_status_transitions_total.labels(to_status=to_status).inc()

    @staticmethod
    def record_reconciliation_write_failure(to_status: str) -> None:
        reconciliation_write_failures_total.labels(to_status=to_status).inc()

    @staticmethod
    def record_vtpass_api_call(operation: str, status: str, duration_seconds: float) -> None:
        """Record VTpass API call."""
        vtpass_api_requests_total.labels(operation=operation, status=status).inc()
        vtpass_api_duration_seconds.labels(operation=operation).observe(duration_seconds)

    @staticmethod
    def record_vtpass_api_error(operation: str, error_type: str) -> None:
        vtpass_api_errors_total.labels(operation=operation, error_type=error_type).inc()

    @staticmethod
    def set_circuit_breaker_state(state: str) -> None:
        """Set circuit breaker state."""
        state_map = {"closed": 0, "open": 1, "half_open": 2}
        vtpass_circuit_breaker_state.set(state_map.get(state, 0))

    @staticmethod
    def record_chain_backfill(updated: int) -> None:
        chain_backfill_orders_total.inc(updated)
        chain_backfill_last_run_timestamp.set(time.time())


# Export singleton instance
metrics = MetricsCollector()
