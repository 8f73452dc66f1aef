import asyncio
import json

import httpx
import pytest

from libs.core.errors import LLMProviderError, LLMTimeoutError
from libs.core.models import SectionRequest, ZaiEndpointType
from libs.llm.providers import (
    AnthropicClient,
    MinimaxClient,
    MistralClient,
    OpenAIClient,
    ZAIClient,
)
from libs.llm.providers.zai import zai_base_url


def _recording_transport(response_json, status_code=200):
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["headers"] = dict(request.headers)
        captured["body"] = json.loads(request.content)
        return httpx.Response(status_code, json=response_json)

    return httpx.MockTransport(handler), captured


def _chat_response(text="ok", finish_reason="stop"):
    return {
        "choices": [{"message": {"role": "assistant", "content": text}, "finish_reason": finish_reason}],
        "usage": {"prompt_tokens": 4, "completion_tokens": 6, "total_tokens": 10},
    }


def test_openai_request_shape():
    transport, captured = _recording_transport(_chat_response("hi"))
    client = OpenAIClient("sk-test", transport=transport)
    response = asyncio.run(client.complete("prompt", model="gpt-4o-mini", max_tokens=100))
    assert response.content == "hi"
    assert captured["url"] == "https://api.openai.com/v1/chat/completions"
    assert captured["headers"]["authorization"] == "Bearer sk-test"
    assert captured["body"]["model"] == "gpt-4o-mini"
    assert captured["body"]["max_tokens"] == 100
    assert captured["body"]["temperature"] == 0.7
    assert captured["body"]["messages"] == [{"role": "user", "content": "prompt"}]


def test_openai_has_no_timeout_by_default():
    assert OpenAIClient("sk-test").timeout_s is None


def test_unknown_model_resolves_to_provider_default():
    transport, captured = _recording_transport(_chat_response())
    asyncio.run(OpenAIClient("k", transport=transport).complete("p", model="mystery"))
    assert captured["body"]["model"] == "gpt-4o"
    assert captured["body"]["max_tokens"] == 16384


def test_anthropic_request_shape():
    transport, captured = _recording_transport(
        {
            "content": [{"type": "text", "text": "Claude says hi"}],
            "usage": {"input_tokens": 3, "output_tokens": 4},
            "stop_reason": "end_turn",
        }
    )
    client = AnthropicClient("ant-key", transport=transport)
    response = asyncio.run(client.complete("prompt", model="claude-sonnet-4-5"))
    assert response.content == "Claude says hi"
    assert response.finish_reason == "stop"
    assert captured["url"] == "https://api.anthropic.com/v1/messages"
    assert captured["headers"]["x-api-key"] == "ant-key"
    assert captured["headers"]["anthropic-version"] == "2023-06-01"
    assert "authorization" not in captured["headers"]


def test_mistral_uses_latest_alias():
    transport, captured = _recording_transport(_chat_response())
    asyncio.run(MistralClient("m", transport=transport).complete("p", model="mistral-small"))
    assert captured["url"] == "https://api.mistral.ai/v1/chat/completions"
    assert captured["body"]["model"] == "mistral-small-latest"


def test_zai_endpoint_matrix():
    assert zai_base_url(ZaiEndpointType.paid, False) == "https://api.z.ai/api/paas/v4"
    assert zai_base_url(ZaiEndpointType.coding, False) == "https://api.z.ai/api/coding/paas/v4"
    assert zai_base_url("paid", True) == "https://open.bigmodel.cn/api/paas/v4"
    assert zai_base_url("coding", True) == "https://open.bigmodel.cn/api/coding/paas/v4"


def test_zai_reads_reasoning_content():
    transport, captured = _recording_transport(
        {"choices": [{"message": {"content": "", "reasoning_content": "glm answer"}}]}
    )
    client = ZAIClient("z", endpoint_type="coding", transport=transport)
    response = asyncio.run(client.complete("p", model="glm-4.6"))
    assert response.content == "glm answer"
    assert captured["url"] == "https://api.z.ai/api/coding/paas/v4/chat/completions"
    assert captured["body"]["temperature"] == 0.6


def test_minimax_caps_default_max_tokens():
    transport, captured = _recording_transport(_chat_response())
    asyncio.run(MinimaxClient("mm", transport=transport).complete("p", model="minimax-m2"))
    assert captured["body"]["model"] == "MiniMax-M2"
    assert captured["body"]["max_tokens"] == 4096


def test_error_status_includes_provider_body():
    transport, _ = _recording_transport({"error": {"message": "rate limited"}}, status_code=429)
    client = OpenAIClient("sk-secret", transport=transport)
    with pytest.raises(LLMProviderError) as excinfo:
        asyncio.run(client.complete("p", model="gpt-4o"))
    assert "OpenAI API error (429)" in excinfo.value.detail
    assert "rate limited" in excinfo.value.detail
    assert "sk-secret" not in excinfo.value.detail


def test_timeout_raises_timeout_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    client = AnthropicClient("k", timeout_s=5, transport=httpx.MockTransport(handler))
    with pytest.raises(LLMTimeoutError) as excinfo:
        asyncio.run(client.complete("p", model="claude-sonnet-4-5"))
    assert excinfo.value.detail == "API request timed out after 5 seconds"


def test_invalid_json_body_is_provider_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>oops</html>")

    client = MistralClient("k", transport=httpx.MockTransport(handler))
    with pytest.raises(LLMProviderError):
        asyncio.run(client.complete("p", model="mistral-large"))


def test_undecodable_body_is_provider_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200, content=b"\x80\x81\x82", headers={"content-type": "application/json"}
        )

    client = AnthropicClient("k", transport=httpx.MockTransport(handler))
    with pytest.raises(LLMProviderError) as excinfo:
        asyncio.run(client.complete("p", model="claude-3-5-sonnet"))
    assert excinfo.value.detail.startswith("Anthropic API returned invalid JSON")


def test_generate_section_returns_completion_tokens():
    transport, captured = _recording_transport(_chat_response("## Overview\nBody"))
    client = OpenAIClient("k", transport=transport)
    request = SectionRequest(
        project_context={"title": "Acme", "description": "Widgets"},
        section_name="overview",
        artifact_type="prd",
        model_id="gpt-4o",
        max_tokens=500,
    )
    result = asyncio.run(client.generate_section(request))
    assert result.content == "## Overview\nBody"
    assert result.tokens == 6
    assert "Acme" in captured["body"]["messages"][0]["content"]


def test_is_available_tracks_api_key():
    assert OpenAIClient("k").is_available()
    assert not MistralClient("").is_available()
