"""
Prometheus metrics configuration for agnt-core.

Defines custom metrics for the orchestration loop, provider calls and tools.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# Use standard Prometheus naming conventions: namespace_subsystem_name_unit
NAMESPACE = "agnt"

# ============================================================================
# Orchestration Metrics
# ============================================================================

runs_active = Gauge(
    f"{NAMESPACE}_runs_active",
    "Number of orchestration runs currently in flight",
)

runs_total = Counter(
    f"{NAMESPACE}_runs_total",
    "Total orchestration runs by terminal status",
    ["status"],  # "completed", "failed"
)

tool_rounds = Histogram(
    f"{NAMESPACE}_tool_rounds",
    "Tool rounds executed per orchestration run",
    buckets=(0, 1, 2, 3, 5, 8, 10, 20),
)

context_managed_total = Counter(
    f"{NAMESPACE}_context_managed_total",
    "Number of times message history was reduced to fit the context window",
    ["model"],
)

# ============================================================================
# Provider Metrics
# ============================================================================

llm_calls_total = Counter(
    f"{NAMESPACE}_llm_calls_total",
    "Provider streaming calls by outcome",
    ["provider", "status"],  # status: "success", "retry", "error"
)

llm_call_duration_seconds = Histogram(
    f"{NAMESPACE}_llm_call_duration_seconds",
    "Provider streaming call duration in seconds",
    ["provider"],
    buckets=(0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
)

# ============================================================================
# Tool Metrics
# ============================================================================

tool_calls_total = Counter(
    f"{NAMESPACE}_tool_calls_total",
    "Total number of tool calls executed",
    ["tool_name", "status"],  # status: "success", "error"
)

tool_call_duration_seconds = Histogram(
    f"{NAMESPACE}_tool_call_duration_seconds",
    "Tool call execution duration in seconds",
    ["tool_name"],
    buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

# ============================================================================
# Content Offload Metrics
# ============================================================================

content_offloaded_total = Counter(
    f"{NAMESPACE}_content_offloaded_total",
    "Payloads replaced with reference tokens",
    ["kind"],  # "image", "data"
)

content_offloaded_bytes = Counter(
    f"{NAMESPACE}_content_offloaded_chars_total",
    "Characters moved out of model context into the preserved-content store",
    ["kind"],
)
