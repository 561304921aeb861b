"""Resolution of the realtime WebSocket endpoint a relay session connects to."""

from typing import Dict, Optional
from urllib.parse import quote

from pydantic import BaseModel, ConfigDict

from .models import RelaySettings

FORWARD_VIA = "forward"


class UpstreamTarget(BaseModel):
    """Where to connect, with which headers, and how to label the connection."""
    model_config = ConfigDict(frozen=True)

    url: str
    headers: Dict[str, str]
    via: Optional[str] = None


def forward_url(base_url: str, target_url: str) -> str:
    """Intermediary forward endpoint carrying the real target as the `u` query parameter."""
    return f"{base_url}?u={quote(target_url, safe='')}"


def direct_target(settings: RelaySettings) -> UpstreamTarget:
    """Connect straight to the realtime service with the provider key."""
    return UpstreamTarget(
        url=settings.realtime_url,
        headers={
            "Authorization": f"Bearer {settings.provider_key}",
            "OpenAI-Beta": settings.beta_header,
        },
    )


def forward_target(settings: RelaySettings, token: str) -> UpstreamTarget:
    """
    Connect through the intermediary proxy.

    Args:
        settings: Relay settings
        token: Encoded forward token; the intermediary attaches the provider key itself

    Returns:
        Target pointing at the intermediary's WebSocket forward endpoint
    """
    return UpstreamTarget(
        url=forward_url(settings.forward_ws_url, settings.realtime_url),
        headers={
            "Authorization": f"Bearer {token}",
            "OpenAI-Beta": settings.beta_header,
        },
        via=FORWARD_VIA,
    )
