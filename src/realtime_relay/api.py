"""FastAPI application and routes for the realtime relay."""

import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from functools import partial
from typing import Any, Callable, Optional
from urllib.parse import parse_qs

import websockets
from fastapi import Depends, FastAPI, Request, Response
from fastapi.responses import StreamingResponse

from .backends import call_forward_completion, extract_completion_text, haiku_request
from .config import get_settings, relay_logger, warn_missing_secrets
from .forward_token import build_forward_token
from .models import RelaySettings
from .session import RelaySession
from .streaming import SSE_HEADERS, SSE_MEDIA_TYPE, disconnect_watcher
from .upstream import UpstreamTarget, direct_target, forward_target

logger = logging.getLogger(__name__)

PROMPT_ERROR = "prompt is required and must be a string"


@asynccontextmanager
async def lifespan(app: FastAPI):
    warn_missing_secrets(get_settings())
    yield


app = FastAPI(title="Realtime Relay", lifespan=lifespan)


def get_connector() -> Callable[..., Any]:
    """WebSocket connect function used for upstream sessions."""
    return websockets.connect


async def read_prompt(request: Request) -> Optional[str]:
    """
    Extract the prompt from a JSON or form-encoded request body.

    Returns None unless the body carries a non-empty string prompt. Bodies
    with any other content type are rejected.
    """
    body = await request.body()
    content_type = request.headers.get("content-type", "").lower()

    if content_type.startswith("application/x-www-form-urlencoded"):
        values = parse_qs(body.decode(errors="replace"), keep_blank_values=True)
        prompt = (values.get("prompt") or [None])[0]
    elif content_type.startswith("application/json"):
        try:
            data = json.loads(body)
        except ValueError:
            return None
        if not isinstance(data, dict):
            return None
        prompt = data.get("prompt")
    else:
        return None

    if not isinstance(prompt, str) or not prompt:
        return None
    return prompt


def invalid_prompt_response() -> Response:
    return Response(
        content=json.dumps(
            {"error": {"message": PROMPT_ERROR, "type": "invalid_request_error"}}
        ),
        status_code=400,
        media_type="application/json",
    )


def relay_response(
    request: Request,
    settings: RelaySettings,
    target: UpstreamTarget,
    prompt: str,
    connector: Callable[..., Any],
) -> StreamingResponse:
    session = RelaySession(
        settings,
        target,
        prompt,
        connect=connector,
        wait_for_disconnect=partial(
            disconnect_watcher, request, settings.disconnect_poll_interval
        ),
    )
    return StreamingResponse(
        session.frames(),
        media_type=SSE_MEDIA_TYPE,
        headers=SSE_HEADERS,
    )


@app.get("/")
async def root():
    return {"message": "Welcome to the realtime relay!"}


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


@app.get("/haiku")
async def haiku(settings: RelaySettings = Depends(get_settings)) -> Response:
    """
    Ask for a haiku through the intermediary proxy's HTTP forward endpoint.

    The response carries the extracted text plus the raw upstream status and
    body for debugging.
    """
    logger.info("--- /haiku request started ---")
    try:
        token = build_forward_token(settings)
        result = await call_forward_completion(
            settings, token, haiku_request(settings), settings.timeout
        )
        content = result["content"]
        text = extract_completion_text(content)
        logger.info(f"Extracted haiku: {text}")

        return Response(
            content=json.dumps(
                {
                    "haiku": text,
                    "debug": {"status": result["status_code"], "data": content},
                }
            ),
            status_code=200,
            media_type="application/json",
        )
    except Exception as e:
        logger.error(f"Error in /haiku: {str(e)}")
        return Response(
            content=json.dumps({"error": {"message": str(e), "type": "proxy_error"}}),
            status_code=500,
            media_type="application/json",
        )


@app.post("/realtime")
async def realtime(
    request: Request,
    settings: RelaySettings = Depends(get_settings),
    connector: Callable[..., Any] = Depends(get_connector),
) -> Response:
    """Relay a prompt straight to the realtime service and stream its events."""
    prompt = await read_prompt(request)
    if prompt is None:
        return invalid_prompt_response()

    relay_logger.info("--- /realtime request started ---")
    relay_logger.info(f"Prompt: {prompt}")
    return relay_response(request, settings, direct_target(settings), prompt, connector)


@app.post("/realtime-forward")
async def realtime_forward(
    request: Request,
    settings: RelaySettings = Depends(get_settings),
    connector: Callable[..., Any] = Depends(get_connector),
) -> Response:
    """Relay a prompt to the realtime service through the intermediary proxy."""
    prompt = await read_prompt(request)
    if prompt is None:
        return invalid_prompt_response()

    relay_logger.info("--- /realtime-forward request started ---")
    relay_logger.info(f"Prompt: {prompt}")
    token = build_forward_token(settings)
    return relay_response(
        request, settings, forward_target(settings, token), prompt, connector
    )


def main():
    settings = get_settings()
    import uvicorn
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
