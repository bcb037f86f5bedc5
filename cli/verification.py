# cli/verification.py
"""
Live checks against a running gate.
All functions return a VerificationResult: (success, message, data).
"""
from __future__ import annotations

import traceback
from dataclasses import dataclass, field
from typing import Dict, Optional

import httpx

from widgetgate.core.config import settings
from widgetgate.embed.loader import EmbedConfig, EmbedLoader, LoaderState, PageContext


@dataclass
class VerificationResult:
    """Structured result from verification functions."""
    success: bool
    message: str
    data: Dict = field(default_factory=dict)


def _api(api_url: str, path: str) -> str:
    return f"{api_url.rstrip('/')}{settings.api_prefix}{path}"


async def check_api_health(api_url: str = "http://localhost:8000", timeout: float = 5.0) -> VerificationResult:
    """Check the liveness probe answers."""
    url = _api(api_url, "/health/live")
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            response = await client.get(url)
    except httpx.RequestError as e:
        return VerificationResult(
            success=False,
            message=f"API not accessible at {api_url}: {e}",
            data={'error': str(e), 'url': url},
        )

    if response.status_code == 200:
        return VerificationResult(
            success=True,
            message="API health check passed",
            data={'status_code': response.status_code, 'url': url},
        )
    return VerificationResult(
        success=False,
        message=f"API health check failed with status {response.status_code}",
        data={'status_code': response.status_code, 'url': url},
    )


async def check_cors(
    api_url: str = "http://localhost:8000",
    origin: str = "https://customer-site.example",
    timeout: float = 5.0,
) -> VerificationResult:
    """
    Preflight every public widget endpoint from a foreign origin.
    Embedding only works when each answers with a permissive CORS policy.
    """
    endpoints = ["/widget-validate", "/widget-lead-capture", "/widget-key-generate"]
    results = {}
    failures = []

    async with httpx.AsyncClient(timeout=timeout) as client:
        for endpoint in endpoints:
            try:
                response = await client.options(
                    _api(api_url, endpoint),
                    headers={
                        'Origin': origin,
                        'Access-Control-Request-Method': 'POST',
                        'Access-Control-Request-Headers': 'content-type',
                    },
                )
            except httpx.RequestError as e:
                results[endpoint] = {'error': str(e)}
                failures.append(f"{endpoint}: {e}")
                continue

            allow_origin = response.headers.get('access-control-allow-origin')
            ok = response.status_code == 200 and allow_origin in ('*', origin)
            results[endpoint] = {'status_code': response.status_code, 'allow_origin': allow_origin}
            if not ok:
                failures.append(f"{endpoint} answered {response.status_code} (allow-origin={allow_origin})")

    if failures:
        return VerificationResult(
            success=False,
            message=f"CORS preflight failed for {len(failures)} endpoints",
            data={'results': results, 'failures': failures},
        )
    return VerificationResult(
        success=True,
        message=f"All {len(endpoints)} widget endpoints accept cross-origin calls",
        data={'results': results},
    )


async def check_widget(
    api_url: str,
    widget_key: Optional[str],
    calculator_type: Optional[str],
    domain: str = "localhost",
    referer: str = "",
    timeout: float = 10.0,
) -> VerificationResult:
    """Load a widget the way a host page would and report the outcome."""
    loader = EmbedLoader(
        config=EmbedConfig(widget_key=widget_key, calculator_type=calculator_type),
        page=PageContext(hostname=domain, referrer=referer),
        validate_url=_api(api_url, "/widget-validate"),
        timeout=timeout,
    )
    try:
        state = await loader.load()
    except Exception as e:
        return VerificationResult(
            success=False,
            message=f"Widget check error: {e}",
            data={'error': str(e), 'traceback': traceback.format_exc()},
        )

    if state is LoaderState.ALLOWED:
        return VerificationResult(
            success=True,
            message=f"Widget allowed; iframe {loader.frame.src}",
            data={'state': state.value, 'frame': loader.frame.src, 'title': loader.frame.title},
        )
    if loader.config_error:
        return VerificationResult(
            success=False,
            message=loader.config_error,
            data={'state': state.value},
        )
    return VerificationResult(
        success=False,
        message=f"Widget denied: {loader.panel.title}",
        data={
            'state': state.value,
            'reason': loader.panel.reason,
            'description': loader.panel.description,
            'suggestion': loader.panel.suggestion,
        },
    )
