from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from snapchef.config import Settings
from snapchef.errors import NetworkError, ProcessingError

logger = logging.getLogger(__name__)

CHAT_ENDPOINT = "/chat/completions"


def build_http_client(settings: Settings) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url=settings.api_base,
        timeout=httpx.Timeout(settings.timeout),
        headers={
            "Content-Type": "application/json",
            "Authorization": f"Bearer {settings.api_key}",
        },
    )


def error_from_status(status_code: int, cause: BaseException | None = None) -> NetworkError:
    if status_code in (401, 403):
        return NetworkError.auth_failure(status_code, cause=cause)
    if status_code == 429:
        return NetworkError.rate_limited(cause=cause)
    if status_code >= 500:
        return NetworkError.server_error(status_code, cause=cause)
    return NetworkError.bad_request(status_code, cause=cause)


def extract_message_content(payload: Any) -> str:
    if not isinstance(payload, dict):
        raise ValueError("response body is not a JSON object")
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices:
        raise ValueError("response missing choices")
    first = choices[0]
    message = first.get("message") if isinstance(first, dict) else None
    content = message.get("content") if isinstance(message, dict) else None
    if not isinstance(content, str) or not content.strip():
        raise ValueError("response contained no message content")
    return content.strip()


def _strip_code_fence(text: str) -> str:
    if not text.startswith("```"):
        return text
    lines = text.splitlines()[1:]
    if lines and lines[-1].strip().startswith("```"):
        lines = lines[:-1]
    return "\n".join(lines).strip()


def parse_json_content(text: str) -> dict[str, Any]:
    try:
        data = json.loads(_strip_code_fence(text))
    except json.JSONDecodeError as exc:
        raise ValueError("response content was not valid JSON") from exc
    if not isinstance(data, dict):
        raise ValueError("response content must be a JSON object")
    return data


def decode_completion(payload: Any) -> dict[str, Any]:
    """Return the JSON object embedded in a chat completion response."""
    try:
        return parse_json_content(extract_message_content(payload))
    except ValueError as exc:
        raise ProcessingError.service_failure(str(exc), cause=exc) from exc


class ChatClient:
    """Posts chat-completions bodies and maps transport failures to NetworkError."""

    def __init__(self, http_client: httpx.AsyncClient) -> None:
        self._http = http_client

    async def complete(self, body: dict[str, Any]) -> dict[str, Any]:
        try:
            response = await self._http.post(CHAT_ENDPOINT, json=body)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise error_from_status(exc.response.status_code, cause=exc) from exc
        except httpx.TimeoutException as exc:
            raise NetworkError.timeout(cause=exc) from exc
        except httpx.TransportError as exc:
            raise NetworkError.no_connection(retryable=True, cause=exc) from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise ProcessingError.service_failure(
                "response body was not valid JSON", cause=exc
            ) from exc
        return decode_completion(payload)

    async def aclose(self) -> None:
        await self._http.aclose()
