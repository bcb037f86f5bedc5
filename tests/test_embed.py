import json

import httpx
import pytest

from fakes import FakeClock
from widgetgate.core.config import settings
from widgetgate.embed.loader import EmbedConfig, EmbedLoader, LoaderState, PageContext
from widgetgate.embed.messages import (
    LeadSubmitted,
    UnknownMessage,
    WidgetResize,
    accept_message,
    parse_frame_message,
)
from widgetgate.embed.panels import DEFAULT_DESCRIPTION, PANELS, render_panel
from widgetgate.embed.script import CONFIG_PLACEHOLDER, loader_config, render_embed_script

VALIDATE_URL = "https://api.widgets.example/api/widget-validate"
WIDGET_ORIGIN = "https://widgets.example"


class _Server:
    """Records validate calls and answers with a canned response."""

    def __init__(self, status_code=200, body=None, error=None, raw=None):
        self.status_code = status_code
        self.body = body
        self.error = error
        self.raw = raw
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error(request)
        if self.raw is not None:
            return httpx.Response(self.status_code, content=self.raw)
        return httpx.Response(self.status_code, json=self.body)

    def client(self):
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


def _connect_error(request):
    return httpx.ConnectError("connection refused", request=request)


def _loader(widget_key="wk_live_abc", calculator_type="roofing"):
    return EmbedLoader(
        config=EmbedConfig(widget_key=widget_key, calculator_type=calculator_type),
        page=PageContext(hostname="www.example.com", referrer="https://www.example.com/"),
        validate_url=VALIDATE_URL,
        widget_base_url=WIDGET_ORIGIN,
        clock=FakeClock(),
    )


def _allowed_body():
    return {
        "valid": True,
        "contractor": {"id": "3c1b0a8e-0000-4000-8000-000000000001", "business_name": "Acme Roofing"},
    }


def test_config_from_script_attributes():
    config = EmbedConfig.from_attributes({"data-widget-key": " wk_live_abc ", "data-calculator": "roofing"})
    assert config == EmbedConfig(widget_key="wk_live_abc", calculator_type="roofing")
    assert config.complete

    assert not EmbedConfig.from_attributes({"data-widget-key": "wk_live_abc"}).complete
    assert not EmbedConfig.from_attributes({"data-calculator": "", "data-widget-key": ""}).complete


@pytest.mark.asyncio
async def test_missing_config_fails_closed_without_network():
    server = _Server(body=_allowed_body())
    loader = _loader(widget_key=None)

    async with server.client() as client:
        state = await loader.load(client)

    assert state is LoaderState.DENIED
    assert loader.config_error
    assert loader.frame is None
    assert loader.validation_calls == 0
    assert server.requests == []


@pytest.mark.asyncio
async def test_allowed_mounts_frame_for_calculator():
    server = _Server(body=_allowed_body())
    loader = _loader()

    async with server.client() as client:
        state = await loader.load(client)

    assert state is LoaderState.ALLOWED
    assert loader.frame.src == "https://widgets.example/widget/roofing?key=wk_live_abc"
    assert loader.frame.title == "Acme Roofing Calculator Widget"
    assert loader.frame.height == 600
    assert loader.panel is None

    sent = json.loads(server.requests[0].content)
    assert sent == {
        "widgetKey": "wk_live_abc",
        "calculatorType": "roofing",
        "domain": "www.example.com",
        "referer": "https://www.example.com/",
    }


@pytest.mark.asyncio
async def test_denied_renders_panel_with_server_message():
    server = _Server(
        status_code=403,
        body={"valid": False, "reason": "domain_mismatch", "error": "Widget is locked to example.com"},
    )
    loader = _loader()

    async with server.client() as client:
        state = await loader.load(client)

    assert state is LoaderState.DENIED
    assert loader.frame is None
    assert loader.panel.reason == "domain_mismatch"
    assert loader.panel.title == "Domain Not Authorized"
    assert loader.panel.description == "Widget is locked to example.com"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "server",
    [
        _Server(error=_connect_error),
        _Server(status_code=502, raw=b"<html>Bad Gateway</html>"),
    ],
)
async def test_transport_or_parse_failure_is_network_error(server):
    loader = _loader()

    async with server.client() as client:
        state = await loader.load(client)

    assert state is LoaderState.DENIED
    assert loader.panel.reason == "network_error"
    assert loader.panel.title == "Connection Error"
    assert loader.panel.description == "Failed to validate widget. Please try again later."


@pytest.mark.asyncio
async def test_validation_happens_once():
    server = _Server(body=_allowed_body())
    loader = _loader()

    async with server.client() as client:
        await loader.load(client)
        await loader.load(client)

    assert loader.validation_calls == 1
    assert len(server.requests) == 1


@pytest.mark.asyncio
async def test_lead_message_from_widget_origin_emits_host_event():
    server = _Server(body=_allowed_body())
    loader = _loader()
    async with server.client() as client:
        await loader.load(client)

    message = loader.handle_message(WIDGET_ORIGIN, {"type": "LEAD_SUBMITTED", "leadId": "lead-123"})

    assert message == LeadSubmitted(lead_id="lead-123")
    assert len(loader.events) == 1
    event = loader.events[0]
    assert event.name == settings.lead_event_name
    assert event.detail["leadId"] == "lead-123"
    assert event.detail["calculatorType"] == "roofing"
    assert event.detail["widgetKey"] == "wk_live_abc"


@pytest.mark.asyncio
async def test_messages_from_other_origins_are_ignored():
    server = _Server(body=_allowed_body())
    loader = _loader()
    async with server.client() as client:
        await loader.load(client)

    assert loader.handle_message("https://evil.example", {"type": "LEAD_SUBMITTED", "leadId": "x"}) is None
    assert loader.handle_message("https://evil.example", {"type": "WIDGET_RESIZE", "height": 900}) is None
    assert loader.events == []
    assert loader.frame.height == 600


@pytest.mark.asyncio
async def test_resize_message_updates_frame_height():
    server = _Server(body=_allowed_body())
    loader = _loader()
    async with server.client() as client:
        await loader.load(client)

    loader.handle_message(WIDGET_ORIGIN, {"type": "WIDGET_RESIZE", "height": 842})
    assert loader.frame.height == 842

    loader.handle_message(WIDGET_ORIGIN, {"type": "WIDGET_RESIZE", "height": 99999})
    assert loader.frame.height == 5000


@pytest.mark.asyncio
async def test_non_finite_resize_is_ignored():
    server = _Server(body=_allowed_body())
    loader = _loader()
    async with server.client() as client:
        await loader.load(client)

    for height in (float("inf"), "1e999", "-inf"):
        message = loader.handle_message(WIDGET_ORIGIN, {"type": "WIDGET_RESIZE", "height": height})
        assert message == UnknownMessage(type="WIDGET_RESIZE")
    assert loader.frame.height == 600


@pytest.mark.asyncio
async def test_denied_loader_does_not_listen():
    server = _Server(status_code=404, body={"valid": False, "reason": "invalid_key", "error": "Widget key not found"})
    loader = _loader()
    async with server.client() as client:
        await loader.load(client)

    assert loader.handle_message(WIDGET_ORIGIN, {"type": "LEAD_SUBMITTED", "leadId": "x"}) is None
    assert loader.events == []


@pytest.mark.parametrize(
    "data, expected",
    [
        ({"type": "WIDGET_RESIZE", "height": 10}, WidgetResize(height=100)),
        ({"type": "WIDGET_RESIZE", "height": "720"}, WidgetResize(height=720)),
        ({"type": "WIDGET_RESIZE", "height": "tall"}, UnknownMessage(type="WIDGET_RESIZE")),
        ({"type": "WIDGET_RESIZE", "height": "1e999"}, UnknownMessage(type="WIDGET_RESIZE")),
        ({"type": "WIDGET_RESIZE", "height": float("inf")}, UnknownMessage(type="WIDGET_RESIZE")),
        ({"type": "WIDGET_RESIZE", "height": float("nan")}, UnknownMessage(type="WIDGET_RESIZE")),
        ({"type": "WIDGET_RESIZE", "height": 10**400}, UnknownMessage(type="WIDGET_RESIZE")),
        ({"type": "LEAD_SUBMITTED"}, UnknownMessage(type="LEAD_SUBMITTED")),
        ({"type": "SOMETHING_NEW", "x": 1}, UnknownMessage(type="SOMETHING_NEW")),
        ("LEAD_SUBMITTED", UnknownMessage(type=None)),
        (None, UnknownMessage(type=None)),
    ],
)
def test_parse_frame_message(data, expected):
    assert parse_frame_message(data) == expected


def test_accept_message_checks_exact_origin():
    data = {"type": "LEAD_SUBMITTED", "leadId": "lead-1"}
    assert accept_message("https://widgets.example", WIDGET_ORIGIN, data) == LeadSubmitted("lead-1")
    assert accept_message("https://widgets.example.evil.com", WIDGET_ORIGIN, data) is None
    assert accept_message("http://widgets.example", WIDGET_ORIGIN, data) is None


def test_every_server_reason_has_a_panel():
    for reason in (
        "invalid_key",
        "key_disabled",
        "subscription_inactive",
        "subscription_unverifiable",
        "calculator_not_allowed",
        "domain_mismatch",
        "rate_limited",
        "server_error",
        "network_error",
    ):
        assert reason in PANELS


def test_unknown_reason_falls_back_to_generic_panel():
    panel = render_panel("brand_new_reason", None)
    assert panel.title == "Widget Unavailable"
    assert panel.description == DEFAULT_DESCRIPTION

    panel = render_panel(None, "   ")
    assert panel.reason == "unknown"
    assert panel.description == DEFAULT_DESCRIPTION


def test_embed_script_inlines_loader_config():
    script = render_embed_script()

    assert CONFIG_PLACEHOLDER not in script
    assert settings.validate_url in script
    assert "LEAD_SUBMITTED" in script

    config = loader_config()
    assert config["widgetOrigin"] == WIDGET_ORIGIN
    assert config["panels"]["domain_mismatch"]["title"] == "Domain Not Authorized"
    assert config["panels"]["default"]["title"] == "Widget Unavailable"


def test_embed_script_escapes_closing_tags():
    settings_copy = settings.model_copy(update={"lead_event_name": "</script><script>alert(1)//"})
    script = render_embed_script(settings_copy)
    assert "</script><script>" not in script
