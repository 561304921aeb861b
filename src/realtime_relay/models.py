"""Data models and schemas for the realtime relay."""

from typing import Dict, Any, List, Optional, Tuple
from pydantic import BaseModel, ConfigDict, Field


class RelaySettings(BaseModel):
    """Process-wide settings, loaded once at startup."""
    model_config = ConfigDict(frozen=True)

    host: str = "0.0.0.0"
    port: int = 4000

    realtime_url: str
    chat_completions_url: str
    beta_header: str = "realtime=v1"
    forward_http_url: str
    forward_ws_url: str

    instructions: str
    modalities: Tuple[str, ...] = ("text",)
    completion_model: str = "gpt-4o-mini"
    haiku_prompt: str = "Write me a haiku about coding."

    timeout: float = 60.0
    connect_timeout: float = 10.0
    session_timeout: float = 120.0
    disconnect_poll_interval: float = 0.1

    secret_key: str = ""
    connection_secret: str = ""
    product_secret: str = ""
    provider_key: str = ""


class CredentialBundle(BaseModel):
    """Credentials the intermediary proxy needs to forward a request."""
    model_config = ConfigDict(frozen=True)

    secret_key: str
    connection_secret: str
    product_secret: str
    provider_key: str

    @classmethod
    def from_settings(cls, settings: RelaySettings) -> "CredentialBundle":
        return cls(
            secret_key=settings.secret_key,
            connection_secret=settings.connection_secret,
            product_secret=settings.product_secret,
            provider_key=settings.provider_key,
        )

    def redacted(self) -> Dict[str, str]:
        """Loggable view with the session secret and provider key masked."""
        return {**self.model_dump(), "secret_key": "***", "provider_key": "***"}


class UpstreamEvent(BaseModel):
    """An event received from the realtime service. Only `type` is inspected."""
    model_config = ConfigDict(extra="allow")

    type: str


class Message(BaseModel):
    """Chat message model."""
    role: str
    content: str
    name: Optional[str] = None


class ChatCompletionRequest(BaseModel):
    """Request body for the forwarded chat completion."""
    model: str
    messages: List[Message] = Field(default_factory=list)

    def payload(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)
