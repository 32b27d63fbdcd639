import json

import httpx
import pytest

from conftest import completion
from snapchef.errors import NetworkError, NetworkErrorKind, ProcessingError
from snapchef.llm import CHAT_ENDPOINT, decode_completion, parse_json_content


def test_parse_json_content_strips_code_fence() -> None:
    text = '```json\n{"ingredients": [], "overall_confidence": 0.0}\n```'
    assert parse_json_content(text) == {"ingredients": [], "overall_confidence": 0.0}


def test_parse_json_content_rejects_non_objects() -> None:
    with pytest.raises(ValueError):
        parse_json_content("[1, 2]")
    with pytest.raises(ValueError):
        parse_json_content("{broken")


def test_decode_completion_missing_content() -> None:
    with pytest.raises(ProcessingError) as excinfo:
        decode_completion({"choices": []})
    assert excinfo.value.code == "processing.service-failure"
    assert isinstance(excinfo.value.__cause__, ValueError)


@pytest.mark.asyncio
async def test_complete_posts_body(make_chat) -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=completion({"ok": True}))

    chat = make_chat(handler)
    assert await chat.complete({"model": "m"}) == {"ok": True}
    assert seen["path"] == "/v1" + CHAT_ENDPOINT
    assert seen["body"] == {"model": "m"}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("status", "kind", "retryable"),
    [
        (401, NetworkErrorKind.AUTH_FAILURE, False),
        (403, NetworkErrorKind.AUTH_FAILURE, False),
        (429, NetworkErrorKind.RATE_LIMITED, False),
        (400, NetworkErrorKind.BAD_REQUEST, False),
        (500, NetworkErrorKind.SERVER_ERROR, True),
        (503, NetworkErrorKind.SERVER_ERROR, True),
    ],
)
async def test_status_mapping(make_chat, status, kind, retryable) -> None:
    chat = make_chat(lambda request: httpx.Response(status, json={"error": "x"}))
    with pytest.raises(NetworkError) as excinfo:
        await chat.complete({})
    assert excinfo.value.kind is kind
    assert excinfo.value.retryable is retryable
    assert excinfo.value.status_code == status


@pytest.mark.asyncio
async def test_timeout_and_connection_errors(make_chat) -> None:
    def timeout(request):
        raise httpx.ReadTimeout("slow", request=request)

    def refused(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(NetworkError) as excinfo:
        await make_chat(timeout).complete({})
    assert excinfo.value.kind is NetworkErrorKind.TIMEOUT

    with pytest.raises(NetworkError) as excinfo:
        await make_chat(refused).complete({})
    assert excinfo.value.kind is NetworkErrorKind.NO_CONNECTION
    assert excinfo.value.retryable is True


@pytest.mark.asyncio
async def test_non_json_body(make_chat) -> None:
    chat = make_chat(lambda request: httpx.Response(200, text="<html>"))
    with pytest.raises(ProcessingError):
        await chat.complete({})
