from __future__ import annotations

import json
from functools import lru_cache
from importlib import resources
from typing import Any, Dict

from widgetgate.core.config import Settings, settings
from widgetgate.embed.loader import DEFAULT_FRAME_HEIGHT, NETWORK_ERROR_MESSAGE
from widgetgate.embed.messages import MAX_HEIGHT, MIN_HEIGHT, origin_of
from widgetgate.embed.panels import DEFAULT_DESCRIPTION, panel_table

CONFIG_PLACEHOLDER = "__WIDGET_CONFIG__"


@lru_cache(maxsize=1)
def _template() -> str:
    return resources.files("widgetgate.embed").joinpath("assets/embed.js").read_text(encoding="utf-8")


def loader_config(config: Settings = settings) -> Dict[str, Any]:
    return {
        "validateUrl": config.validate_url,
        "widgetBaseUrl": config.widget_base_url,
        "widgetOrigin": origin_of(config.widget_base_url),
        "containerId": config.widget_container_id,
        "leadEventName": config.lead_event_name,
        "frameHeight": DEFAULT_FRAME_HEIGHT,
        "minHeight": MIN_HEIGHT,
        "maxHeight": MAX_HEIGHT,
        "networkErrorMessage": NETWORK_ERROR_MESSAGE,
        "defaultDescription": DEFAULT_DESCRIPTION,
        "panels": panel_table(),
    }


def render_embed_script(config: Settings = settings) -> str:
    payload = json.dumps(loader_config(config), sort_keys=True)
    # Keep the inline JSON from closing a surrounding <script> element.
    payload = payload.replace("</", "<\\/")
    return _template().replace(CONFIG_PLACEHOLDER, payload, 1)
