from __future__ import annotations

from prometheus_client import Counter

WIDGET_VALIDATIONS = Counter(
    "widget_validations_total",
    "Widget validation decisions by result",
    ["result"],
)

WIDGET_KEYS_ISSUED = Counter(
    "widget_keys_issued_total",
    "Widget keys issued",
    ["calculator_type"],
)

WIDGET_LEADS_CAPTURED = Counter(
    "widget_leads_captured_total",
    "Leads captured through embedded widgets",
    ["calculator_type"],
)

BEST_EFFORT_FAILURES = Counter(
    "widget_best_effort_failures_total",
    "Swallowed failures of advisory writes",
    ["operation"],
)
