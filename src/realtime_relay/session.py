"""Relay sessions: one upstream realtime WebSocket streamed to one SSE response."""

import asyncio
import json
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional

import anyio
import websockets
from pydantic import ValidationError
from websockets.exceptions import (
    ConnectionClosed,
    ConnectionClosedError,
    ConnectionClosedOK,
    WebSocketException,
)

from .config import relay_logger
from .errors import FrameDecodeError
from .models import RelaySettings, UpstreamEvent
from .streaming import closed_marker, connected_marker, error_marker, sse_frame
from .upstream import UpstreamTarget

COMPLETION_EVENT = "response.done"

# Close code reported when the connection dropped without a close frame
ABNORMAL_CLOSURE = 1006

UPSTREAM_CONNECT_ERRORS = (OSError, asyncio.TimeoutError, WebSocketException)


class SessionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    STREAMING = "streaming"
    CLOSING = "closing"
    CLOSED = "closed"


def decode_event(raw: Any) -> Dict[str, Any]:
    """
    Decode one upstream frame into an event payload.

    Args:
        raw: Text or binary frame as received from the WebSocket

    Returns:
        The decoded JSON object, unchanged

    Raises:
        FrameDecodeError: If the frame is not JSON or has no string `type`
    """
    try:
        payload = json.loads(raw)
    except ValueError as e:
        raise FrameDecodeError(str(e)) from e

    if not isinstance(payload, dict):
        raise FrameDecodeError(
            f"Expected a JSON object, got {type(payload).__name__}"
        )

    try:
        UpstreamEvent.model_validate(payload)
    except ValidationError as e:
        raise FrameDecodeError("Event has no string 'type' field") from e

    return payload


def setup_messages(settings: RelaySettings, prompt: str) -> List[Dict[str, Any]]:
    """Messages sent upstream right after the handshake, in sending order."""
    return [
        {
            "type": "session.update",
            "session": {
                "modalities": list(settings.modalities),
                "instructions": settings.instructions,
            },
        },
        {
            "type": "conversation.item.create",
            "item": {
                "type": "message",
                "role": "user",
                "content": [{"type": "input_text", "text": prompt}],
            },
        },
        {"type": "response.create"},
    ]


class RelaySession:
    """
    Relays one prompt to the realtime service and streams its events back as SSE.

    The session is driven by iterating frames(). Upstream frames and the
    client-disconnect signal race each other; whichever arrives first decides
    the next transition. A session is single use and lives only as long as
    the request that created it.
    """

    def __init__(
        self,
        settings: RelaySettings,
        target: UpstreamTarget,
        prompt: str,
        connect: Callable[..., Awaitable[Any]] = websockets.connect,
        wait_for_disconnect: Optional[Callable[[], Awaitable[None]]] = None,
    ):
        self.settings = settings
        self.target = target
        self.prompt = prompt
        self.state = SessionState.IDLE
        self.client_gone = False
        self.close_code: Optional[int] = None
        self._connect = connect
        self._wait_for_disconnect = wait_for_disconnect
        self._upstream = None
        self._upstream_closed = False

    async def frames(self) -> AsyncIterator[bytes]:
        """Run the session, yielding SSE frames for the downstream response."""
        if self.state is not SessionState.IDLE:
            raise RuntimeError("Relay session has already been started")

        self.state = SessionState.CONNECTING
        relay_logger.info(f"Connecting to: {self.target.url}")
        try:
            self._upstream = await self._connect(
                self.target.url,
                additional_headers=self.target.headers,
                open_timeout=self.settings.connect_timeout,
            )
        except UPSTREAM_CONNECT_ERRORS as e:
            relay_logger.error(f"WebSocket connection failed: {e!r}")
            self.state = SessionState.CLOSED
            yield sse_frame(error_marker(str(e) or type(e).__name__))
            return

        disconnect_task = None
        receive = None
        try:
            self.state = SessionState.STREAMING
            relay_logger.info("WebSocket connected")
            yield sse_frame(connected_marker(self.target.via))

            try:
                await self._send_setup()
            except ConnectionClosed as e:
                relay_logger.error(f"WebSocket error during setup: {e}")
                self.state = SessionState.CLOSING
                yield sse_frame(error_marker(str(e)))
                return

            if self._wait_for_disconnect is not None:
                disconnect_task = asyncio.ensure_future(self._wait_for_disconnect())

            loop = asyncio.get_running_loop()
            deadline = loop.time() + self.settings.session_timeout

            while True:
                receive = asyncio.ensure_future(self._upstream.recv())
                waiters = {receive}
                if disconnect_task is not None:
                    waiters.add(disconnect_task)

                done, _ = await asyncio.wait(
                    waiters,
                    timeout=max(deadline - loop.time(), 0),
                    return_when=asyncio.FIRST_COMPLETED,
                )

                if disconnect_task is not None and disconnect_task in done:
                    await _cancel(receive)
                    self.client_gone = True
                    self.state = SessionState.CLOSING
                    relay_logger.info("Client disconnected, closing WebSocket")
                    await self._close_upstream()
                    return

                if receive not in done:
                    await _cancel(receive)
                    relay_logger.warning(
                        f"Session exceeded {self.settings.session_timeout:g}s, closing WebSocket"
                    )
                    yield sse_frame(
                        error_marker(
                            f"session timed out after {self.settings.session_timeout:g}s"
                        )
                    )
                    break

                try:
                    raw = receive.result()
                except ConnectionClosedOK:
                    relay_logger.info("WebSocket closed by upstream")
                    break
                except ConnectionClosedError as e:
                    relay_logger.error(f"WebSocket error: {e}")
                    self.state = SessionState.CLOSING
                    await self._close_upstream()
                    yield sse_frame(error_marker(str(e)))
                    return

                try:
                    event = decode_event(raw)
                except FrameDecodeError as e:
                    relay_logger.error(f"Error parsing message: {e}")
                    yield sse_frame(error_marker(str(e)))
                    continue

                relay_logger.info(f"Received event: {event['type']}")
                yield sse_frame(event)

                if event["type"] == COMPLETION_EVENT:
                    relay_logger.info("Response complete, closing WebSocket")
                    break

            self.state = SessionState.CLOSING
            code = await self._close_upstream()
            relay_logger.info(f"WebSocket closed: {code}")
            yield sse_frame(closed_marker(code))
        except asyncio.CancelledError:
            self.client_gone = True
            relay_logger.info("Response stream cancelled, closing WebSocket")
            raise
        finally:
            # Starlette cancels this task when the client goes away; cleanup
            # must still reach the upstream close.
            with anyio.CancelScope(shield=True):
                await self._close_upstream()
                for task in (receive, disconnect_task):
                    if task is not None:
                        await _cancel(task)
            self.state = SessionState.CLOSED

    async def _send_setup(self) -> None:
        for message in setup_messages(self.settings, self.prompt):
            relay_logger.info(f"Sending {message['type']}")
            await self._upstream.send(json.dumps(message))

    async def _close_upstream(self) -> int:
        """Close the upstream connection once and return its close code."""
        if self._upstream is None:
            return ABNORMAL_CLOSURE
        if not self._upstream_closed:
            self._upstream_closed = True
            await asyncio.shield(self._upstream.close())
        code = self._upstream.close_code
        self.close_code = ABNORMAL_CLOSURE if code is None else code
        return self.close_code


async def _cancel(task: "asyncio.Future[Any]") -> None:
    task.cancel()
    await asyncio.gather(task, return_exceptions=True)
