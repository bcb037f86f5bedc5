# widgetgate/embed/__init__.py
"""
Embed loader: the browser script served to host pages and its headless twin.
"""

from widgetgate.embed.loader import EmbedConfig, EmbedLoader, LoaderState, PageContext
from widgetgate.embed.script import render_embed_script

__all__ = [
    "EmbedConfig",
    "EmbedLoader",
    "LoaderState",
    "PageContext",
    "render_embed_script",
]
