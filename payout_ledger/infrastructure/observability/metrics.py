"""Prometheus metrics for ledger mutations, contention and payout flow"""

from prometheus_client import Counter, Histogram

# Ledger metrics
ledger_operation_counter = Counter(
    "payout_ledger_operations_total",
    "Ledger operations by outcome",
    ["operation", "outcome"],  # applied | duplicate | rejected | conflict_exhausted
)

ledger_conflict_counter = Counter(
    "payout_ledger_conflicts_total",
    "Optimistic concurrency conflicts that forced a re-read",
    ["operation"],
)

# Payout metrics
payout_transition_counter = Counter(
    "payout_transitions_total",
    "Payout request state transitions",
    ["transition"],  # requested | approve | mark_processing | reject | complete
)

payout_amount_histogram = Histogram(
    "payout_amount_cents",
    "Requested payout amounts in minor units",
    buckets=[100_000, 500_000, 1_000_000, 5_000_000, 10_000_000, 50_000_000],
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_ledger_operation(operation: str, outcome: str) -> None:
    ledger_operation_counter.labels(operation=operation, outcome=outcome).inc()


def record_payout_transition(transition: str, amount_cents: int | None = None) -> None:
    """Count a transition; new requests also feed the amount distribution"""
    payout_transition_counter.labels(transition=transition).inc()
    if transition == "requested" and amount_cents is not None:
        payout_amount_histogram.observe(amount_cents)
