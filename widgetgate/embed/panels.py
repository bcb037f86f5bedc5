from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional


@dataclass(frozen=True)
class ErrorPanel:
    title: str
    suggestion: str


@dataclass(frozen=True)
class RenderedPanel:
    reason: str
    title: str
    description: str
    suggestion: str


# Keyed by reason code; the browser loader is rendered from this same table.
PANELS: Dict[str, ErrorPanel] = {
    "invalid_key": ErrorPanel(
        "Invalid Widget Key",
        "Please contact the website owner to resolve this issue.",
    ),
    "key_disabled": ErrorPanel(
        "Widget Disabled",
        "The calculator widget has been temporarily disabled.",
    ),
    "subscription_inactive": ErrorPanel(
        "Subscription Inactive",
        "Please contact the website owner to renew their subscription.",
    ),
    "subscription_unverifiable": ErrorPanel(
        "Subscription Check Unavailable",
        "Please refresh the page in a few minutes.",
    ),
    "calculator_not_allowed": ErrorPanel(
        "Calculator Not Authorized",
        "This widget key is not authorized for this calculator type.",
    ),
    "domain_mismatch": ErrorPanel(
        "Domain Not Authorized",
        "This widget is not authorized for this domain.",
    ),
    "rate_limited": ErrorPanel(
        "Rate Limit Exceeded",
        "Please wait a moment and try again.",
    ),
    "server_error": ErrorPanel(
        "Service Error",
        "Please try again later.",
    ),
    "network_error": ErrorPanel(
        "Connection Error",
        "Please check your internet connection and try again.",
    ),
}

FALLBACK_PANEL = ErrorPanel("Widget Unavailable", "Please try again later.")

DEFAULT_DESCRIPTION = "This widget cannot be displayed right now."


def panel_for(reason: Optional[str]) -> ErrorPanel:
    return PANELS.get(reason or "", FALLBACK_PANEL)


def render_panel(reason: Optional[str], message: Optional[str]) -> RenderedPanel:
    """Only the server-provided message is shown; nothing else leaks through."""
    panel = panel_for(reason)
    description = message.strip() if isinstance(message, str) and message.strip() else DEFAULT_DESCRIPTION
    return RenderedPanel(
        reason=reason or "unknown",
        title=panel.title,
        description=description,
        suggestion=panel.suggestion,
    )


def panel_table() -> Dict[str, Dict[str, str]]:
    table = {reason: {"title": p.title, "suggestion": p.suggestion} for reason, p in PANELS.items()}
    table["default"] = {"title": FALLBACK_PANEL.title, "suggestion": FALLBACK_PANEL.suggestion}
    return table
