"""
Prometheus metrics for rsandbox.

Defines the sandbox counters, gauges and histograms. Exposed at /metrics.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# Use standard Prometheus naming conventions: namespace_subsystem_name_unit
NAMESPACE = "rsandbox"

# ============================================================================
# Execution Metrics
# ============================================================================

executions_total = Counter(
    f"{NAMESPACE}_executions_total",
    "Total number of code executions by outcome",
    ["outcome"],  # "completed", "timeout", "failed", "cancelled", "rejected"
)

execution_duration_seconds = Histogram(
    f"{NAMESPACE}_execution_duration_seconds",
    "Wall-clock duration of completed executions in seconds",
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
)

validation_rejections_total = Counter(
    f"{NAMESPACE}_validation_rejections_total",
    "Total number of submissions rejected by the code validator",
    ["category"],
)


# ============================================================================
# Session Pool Metrics
# ============================================================================

sessions_active = Gauge(
    f"{NAMESPACE}_sessions_active",
    "Number of live interpreter sessions in the pool",
)

sessions_reaped_total = Counter(
    f"{NAMESPACE}_sessions_reaped_total",
    "Total number of sessions removed from the pool",
    ["reason"],  # "idle", "dead", "evicted", "cancelled"
)


# ============================================================================
# WebSocket Metrics
# ============================================================================

ws_messages_total = Counter(
    f"{NAMESPACE}_websocket_messages_total",
    "Total number of WebSocket messages processed",
    ["direction"],  # "inbound" or "outbound"
)
