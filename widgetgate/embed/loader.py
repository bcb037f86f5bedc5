"""
Headless embed loader.

Runs the same state machine as the browser ``embed.js``:

    UNVALIDATED -> ALLOWED   (iframe mounted, message listener installed)
    UNVALIDATED -> DENIED    (error panel rendered)

Validation happens at most once per loader instance; there is no retry.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import quote

import httpx

from widgetgate.core.clock import Clock, utc_now
from widgetgate.core.config import settings
from widgetgate.core.logging import get_structlog_logger
from widgetgate.embed.messages import FrameMessage, LeadSubmitted, WidgetResize, accept_message, origin_of
from widgetgate.embed.panels import RenderedPanel, render_panel

logger = get_structlog_logger(__name__)

NETWORK_ERROR = "network_error"
NETWORK_ERROR_MESSAGE = "Failed to validate widget. Please try again later."
DEFAULT_FRAME_HEIGHT = 600


class LoaderState(str, Enum):
    UNVALIDATED = "unvalidated"
    ALLOWED = "allowed"
    DENIED = "denied"


@dataclass(frozen=True)
class EmbedConfig:
    widget_key: Optional[str]
    calculator_type: Optional[str]

    @classmethod
    def from_attributes(cls, attributes: Mapping[str, str]) -> "EmbedConfig":
        """Read the configuration off the script tag's data attributes."""
        return cls(
            widget_key=(attributes.get("data-widget-key") or "").strip() or None,
            calculator_type=(attributes.get("data-calculator") or "").strip() or None,
        )

    @property
    def complete(self) -> bool:
        return bool(self.widget_key and self.calculator_type)


@dataclass(frozen=True)
class PageContext:
    hostname: str
    referrer: str = ""


@dataclass
class MountedFrame:
    src: str
    contractor_id: str
    title: str
    height: int = DEFAULT_FRAME_HEIGHT
    allow: str = "clipboard-write"


@dataclass(frozen=True)
class HostEvent:
    name: str
    detail: Dict[str, Any]


@dataclass
class EmbedLoader:
    config: EmbedConfig
    page: PageContext
    validate_url: str = field(default_factory=lambda: settings.validate_url)
    widget_base_url: str = field(default_factory=lambda: settings.widget_base_url)
    event_name: str = field(default_factory=lambda: settings.lead_event_name)
    timeout: float = 10.0
    clock: Clock = utc_now

    state: LoaderState = field(default=LoaderState.UNVALIDATED, init=False)
    frame: Optional[MountedFrame] = field(default=None, init=False)
    panel: Optional[RenderedPanel] = field(default=None, init=False)
    config_error: Optional[str] = field(default=None, init=False)
    events: List[HostEvent] = field(default_factory=list, init=False)
    validation_calls: int = field(default=0, init=False)

    @property
    def expected_origin(self) -> str:
        return origin_of(self.widget_base_url)

    async def load(self, client: Optional[httpx.AsyncClient] = None) -> LoaderState:
        if self.state is not LoaderState.UNVALIDATED:
            return self.state

        if not self.config.complete:
            # Fail closed without touching the network.
            self.config_error = "Missing required attributes (data-widget-key, data-calculator)"
            logger.error("embed.config_missing", error=self.config_error)
            self.state = LoaderState.DENIED
            return self.state

        if client is None:
            async with httpx.AsyncClient(timeout=self.timeout) as owned:
                result = await self._validate(owned)
        else:
            result = await self._validate(client)

        if result.get("valid") is True:
            self._mount(result.get("contractor") or {})
        else:
            self._deny(result.get("reason"), result.get("error"))
        return self.state

    async def _validate(self, client: httpx.AsyncClient) -> Dict[str, Any]:
        self.validation_calls += 1
        body = {
            "widgetKey": self.config.widget_key,
            "calculatorType": self.config.calculator_type,
            "domain": self.page.hostname,
            "referer": self.page.referrer,
        }
        try:
            response = await client.post(self.validate_url, json=body)
            result = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("embed.validation_failed", error=str(e) or e.__class__.__name__)
            return {"valid": False, "reason": NETWORK_ERROR, "error": NETWORK_ERROR_MESSAGE}

        if not isinstance(result, dict):
            return {"valid": False, "reason": None, "error": None}
        return result

    def _mount(self, contractor: Mapping[str, Any]) -> None:
        business_name = contractor.get("business_name") or "Contractor"
        self.frame = MountedFrame(
            src=(
                f"{self.widget_base_url}/widget/{quote(self.config.calculator_type, safe='')}"
                f"?key={quote(self.config.widget_key, safe='')}"
            ),
            contractor_id=str(contractor.get("id") or ""),
            title=f"{business_name} Calculator Widget",
        )
        self.state = LoaderState.ALLOWED
        logger.info("embed.mounted", calculator_type=self.config.calculator_type)

    def _deny(self, reason: Optional[str], message: Optional[str]) -> None:
        self.panel = render_panel(reason, message)
        self.state = LoaderState.DENIED
        logger.info("embed.denied", reason=self.panel.reason)

    def handle_message(self, origin: str, data: Any) -> Optional[FrameMessage]:
        """Dispatch one ``postMessage`` event. Only listening once mounted."""
        if self.state is not LoaderState.ALLOWED or self.frame is None:
            return None

        message = accept_message(origin, self.expected_origin, data)
        if isinstance(message, LeadSubmitted):
            self.events.append(
                HostEvent(
                    name=self.event_name,
                    detail={
                        "leadId": message.lead_id,
                        "calculatorType": self.config.calculator_type,
                        "widgetKey": self.config.widget_key,
                        "timestamp": self.clock().isoformat(),
                    },
                )
            )
        elif isinstance(message, WidgetResize):
            self.frame.height = message.height
        return message
