import asyncio
import copy
import json

import pytest
from fastapi.testclient import TestClient
from websockets.exceptions import ConnectionClosedOK
from websockets.frames import Close

from realtime_relay.config import DEFAULT_CONFIG, build_settings

# Mock environment with every secret set
MOCK_ENV = {
    "LAVA": "lava-secret-key",
    "LAVA_CONNECTION_SECRET": "lava-connection-secret",
    "LAVA_PRODUCT_SECRET": "lava-product-secret",
    "OPENAI_API_KEY": "sk-test-provider-key",
}

# Mock realtime events
MOCK_SESSION_CREATED = {"type": "session.created", "session": {"id": "sess_123"}}
MOCK_TEXT_DELTA = {
    "type": "response.text.delta",
    "response_id": "resp_123",
    "delta": "Code flows like water",
}
MOCK_RESPONSE_DONE = {
    "type": "response.done",
    "response": {"id": "resp_123", "status": "completed"},
}

MOCK_COMPLETION_RESPONSE = {
    "id": "chatcmpl-123",
    "object": "chat.completion",
    "created": 1677652288,
    "model": "gpt-4o-mini",
    "choices": [
        {
            "index": 0,
            "message": {
                "role": "assistant",
                "content": "Keys click in the night\nBugs hide in silent corners\nTests turn the lights green",
            },
            "finish_reason": "stop",
        }
    ],
    "usage": {"prompt_tokens": 14, "completion_tokens": 17, "total_tokens": 31},
}


class MockResponse:
    """Base mock response class with proper async methods"""

    def __init__(self, status_code, content=None, headers=None):
        self.status_code = status_code
        self._content = content if content is not None else b""
        self.headers = headers or {"content-type": "application/json"}

    async def aread(self):
        if isinstance(self._content, (dict, list)):
            return json.dumps(self._content).encode()
        return (
            self._content
            if isinstance(self._content, bytes)
            else str(self._content).encode()
        )


class FakeUpstream:
    """
    In-memory stand-in for a realtime WebSocket connection.

    Frames are returned by recv() in order; exception instances are raised
    instead. Once the frames run out the fake either hangs (hang=True) or
    closes cleanly with remote_close_code.
    """

    def __init__(self, frames=None, hang=False, remote_close_code=1000):
        self.frames = list(frames or [])
        self.hang = hang
        self.remote_close_code = remote_close_code
        self.sent = []
        self.closed = False
        self.close_code = None

    async def send(self, message):
        if self.closed:
            raise ConnectionClosedOK(Close(1000, ""), Close(1000, ""))
        self.sent.append(json.loads(message))

    async def recv(self):
        if self.frames:
            frame = self.frames.pop(0)
            if isinstance(frame, Exception):
                raise frame
            return frame
        if self.hang:
            await asyncio.sleep(3600)
        self.close_code = self.remote_close_code
        raise ConnectionClosedOK(Close(self.remote_close_code, ""), None)

    async def close(self, code=1000, reason=""):
        self.closed = True
        if self.close_code is None:
            self.close_code = code


class FakeConnector:
    """Replaces websockets.connect, recording each call."""

    def __init__(self, upstream=None, error=None):
        self.upstream = upstream if upstream is not None else FakeUpstream()
        self.error = error
        self.calls = []

    async def __call__(self, url, **kwargs):
        self.calls.append({"url": url, **kwargs})
        if self.error is not None:
            raise self.error
        return self.upstream


def event_frames(*events):
    return [json.dumps(event) for event in events]


def parse_sse(lines):
    """Decode the JSON payload of every non-empty `data:` line."""
    return [
        json.loads(line[len("data: "):])
        for line in lines
        if line.strip()
    ]


async def collect(session):
    return [frame async for frame in session.frames()]


def decode_frames(frames):
    return parse_sse(b"".join(frames).decode().split("\n"))


# Shared fixtures
@pytest.fixture
def mock_config():
    config = copy.deepcopy(DEFAULT_CONFIG)
    config["settings"]["disconnect_poll_interval"] = 0.01
    return config


@pytest.fixture
def relay_settings(mock_config):
    return build_settings(mock_config, environ=MOCK_ENV)


@pytest.fixture
def fake_upstream():
    return FakeUpstream(
        frames=event_frames(MOCK_SESSION_CREATED, MOCK_TEXT_DELTA, MOCK_RESPONSE_DONE)
    )


@pytest.fixture
def fake_connector(fake_upstream):
    return FakeConnector(fake_upstream)


@pytest.fixture
def test_client(relay_settings, fake_connector):
    """Create a test client wired to the mock settings and the fake upstream"""
    from realtime_relay.api import app, get_connector
    from realtime_relay.config import get_settings

    app.dependency_overrides[get_settings] = lambda: relay_settings
    app.dependency_overrides[get_connector] = lambda: fake_connector
    yield TestClient(app)
    app.dependency_overrides.clear()
