"""Chat completion calls forwarded through the intermediary proxy."""

import json
import logging
import httpx
from typing import Dict, Any

from .forward_token import preview_token
from .models import ChatCompletionRequest, Message, RelaySettings

logger = logging.getLogger(__name__)


def haiku_request(settings: RelaySettings) -> ChatCompletionRequest:
    return ChatCompletionRequest(
        model=settings.completion_model,
        messages=[Message(role="user", content=settings.haiku_prompt)],
    )


async def call_forward_completion(
    settings: RelaySettings,
    token: str,
    request: ChatCompletionRequest,
    timeout: float,
) -> Dict[str, Any]:
    """
    Send a chat completion through the intermediary's HTTP forward endpoint.

    Args:
        settings: Relay settings with the forward and upstream URLs
        token: Encoded forward token used as the bearer credential
        request: Chat completion request body
        timeout: Request timeout in seconds

    Returns:
        Dictionary containing the status code and the decoded response content
    """
    body = json.dumps(request.payload())
    logger.info(f"Request body: {body}")

    headers = {
        "Content-Type": "application/json",
        "Authorization": f"Bearer {token}",
    }
    params = {"u": settings.chat_completions_url}
    logger.info(
        f"Fetching: {settings.forward_http_url}?u={settings.chat_completions_url} "
        f"with token {preview_token(token)}"
    )

    client = httpx.AsyncClient()
    try:
        response = await client.post(
            settings.forward_http_url,
            content=body,
            headers=headers,
            params=params,
            timeout=timeout,
        )
    except httpx.HTTPError as e:
        logger.error(f"Error calling forward endpoint: {str(e)}")
        return {
            "status_code": 502,
            "content": {"error": {"message": str(e), "type": "proxy_error"}},
        }
    finally:
        await client.aclose()

    logger.info(f"Response status: {response.status_code}")
    logger.info(f"Response headers: {dict(response.headers)}")

    content = await response.aread()
    if isinstance(content, bytes):
        content = content.decode()
    try:
        json_content = json.loads(content)
    except json.JSONDecodeError:
        json_content = {"error": {"message": content, "type": "backend_error"}}

    logger.info(f"Response data: {json.dumps(json_content)}")
    return {"status_code": response.status_code, "content": json_content}


def extract_completion_text(content: Any):
    """First choice's message content, or None when the response has none."""
    if not isinstance(content, dict):
        return None
    choices = content.get("choices")
    if not isinstance(choices, list) or not choices:
        return None
    choice = choices[0]
    if not isinstance(choice, dict):
        return None
    message = choice.get("message")
    if not isinstance(message, dict):
        return None
    return message.get("content")
