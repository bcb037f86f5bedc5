from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import Response

from widgetgate.embed.script import render_embed_script

router = APIRouter(tags=["embed"])


@router.get("/widget/v1/embed.js", include_in_schema=False)
async def embed_script() -> Response:
    return Response(
        content=render_embed_script(),
        media_type="application/javascript",
        headers={
            "Cache-Control": "public, max-age=300",
            "Access-Control-Allow-Origin": "*",
        },
    )
