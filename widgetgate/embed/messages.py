"""
Cross-frame protocol between the widget iframe and the host page.

Messages are accepted only from the widget origin. Recognised tags map to
typed messages; anything else becomes ``UnknownMessage`` and is a no-op.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Optional, Union
from urllib.parse import urlsplit

from widgetgate.core.logging import get_structlog_logger

logger = get_structlog_logger(__name__)

LEAD_SUBMITTED = "LEAD_SUBMITTED"
WIDGET_RESIZE = "WIDGET_RESIZE"

# Bounds for WIDGET_RESIZE heights, in pixels.
MIN_HEIGHT = 100
MAX_HEIGHT = 5000


@dataclass(frozen=True)
class LeadSubmitted:
    lead_id: str


@dataclass(frozen=True)
class WidgetResize:
    height: int


@dataclass(frozen=True)
class UnknownMessage:
    type: Optional[str]


FrameMessage = Union[LeadSubmitted, WidgetResize, UnknownMessage]


def origin_of(url: str) -> str:
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}"


def _parse_height(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        return None
    if not math.isfinite(number):
        return None
    height = int(number)
    if height <= 0:
        return None
    return max(MIN_HEIGHT, min(MAX_HEIGHT, height))


def parse_frame_message(data: Any) -> FrameMessage:
    if not isinstance(data, dict):
        return UnknownMessage(type=None)

    tag = data.get("type")
    if tag == LEAD_SUBMITTED and data.get("leadId"):
        return LeadSubmitted(lead_id=str(data["leadId"]))
    if tag == WIDGET_RESIZE:
        height = _parse_height(data.get("height"))
        if height is not None:
            return WidgetResize(height=height)
    return UnknownMessage(type=tag if isinstance(tag, str) else None)


def accept_message(origin: str, expected_origin: str, data: Any) -> Optional[FrameMessage]:
    """Origin guard. Messages from any other origin are dropped silently."""
    if origin != expected_origin:
        return None
    message = parse_frame_message(data)
    if isinstance(message, UnknownMessage):
        logger.info("embed.message.unknown", message_type=message.type)
    return message
