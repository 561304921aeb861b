"""Server-sent event framing for the realtime relay."""

import asyncio
import json
import logging
from typing import Any, Dict, Optional

from fastapi import Request

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}

SSE_MEDIA_TYPE = "text/event-stream"


def sse_frame(payload: Dict[str, Any]) -> bytes:
    """Format a payload as one `data: <JSON>` event."""
    return f"data: {json.dumps(payload, separators=(',', ':'))}\n\n".encode()


def connected_marker(via: Optional[str] = None) -> Dict[str, Any]:
    marker: Dict[str, Any] = {"type": "connected"}
    if via:
        marker["via"] = via
    return marker


def error_marker(message: str) -> Dict[str, Any]:
    return {"type": "error", "error": message}


def closed_marker(code: int) -> Dict[str, Any]:
    return {"type": "closed", "code": code}


async def disconnect_watcher(request: Request, interval: float) -> None:
    """
    Return once the HTTP client behind `request` has gone away.

    Args:
        request: The incoming request whose response is being streamed
        interval: Seconds between disconnect checks
    """
    while not await request.is_disconnected():
        await asyncio.sleep(interval)
    logger.info("Client disconnected")
