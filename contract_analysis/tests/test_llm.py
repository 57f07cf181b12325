"""
Completion Client Tests
=======================

CompletionClient over httpx.MockTransport, and robust JSON parsing of
completion content.
"""

import json

import httpx
import pytest

from contract_analysis.config import Settings
from contract_analysis.llm import (
    ANALYSIS_SYSTEM_PROMPT,
    CompletionClient,
    ContractAnalyzerLLM,
    parse_json_robust,
    safe_log_content,
)
from contract_analysis.llm.base import (
    ERROR_CONFIG,
    ERROR_HTTP,
    ERROR_RESPONSE,
    ERROR_TIMEOUT,
    ERROR_TRANSPORT,
)


def _completion(content, model="gpt-4o"):
    return {
        "model": model,
        "choices": [{"message": {"role": "assistant", "content": content}}],
        "usage": {"prompt_tokens": 120, "completion_tokens": 30},
    }


def _client(handler, api_key="test-key") -> CompletionClient:
    client = CompletionClient(api_key=api_key, model="gpt-4o", base_url="https://llm.test/v1/")
    client._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return client


class TestParseJsonRobust:

    def test_plain_object(self):
        assert parse_json_robust('{"summary": "x"}') == ({"summary": "x"}, True, "")

    def test_fenced_block(self):
        data, ok, _ = parse_json_robust('```json\n{"riskLevel": "high"}\n```')
        assert ok
        assert data == {"riskLevel": "high"}

    def test_surrounding_prose(self):
        data, ok, _ = parse_json_robust('Sure! {"a": {"b": 1}} Hope this helps {x}')
        assert ok
        assert data == {"a": {"b": 1}}

    def test_non_object_json_accepted(self):
        data, ok, _ = parse_json_robust("[1, 2]")
        assert ok
        assert data == [1, 2]

    @pytest.mark.parametrize("content", ["", "   ", None])
    def test_empty(self, content):
        data, ok, error = parse_json_robust(content)
        assert data is None
        assert not ok
        assert error == "Empty content"

    def test_garbage(self):
        data, ok, error = parse_json_robust("no json here {")
        assert not ok
        assert error

    @pytest.mark.parametrize("content", [
        "[" * 100_000 + "]" * 100_000,
        '{"a": ' * 100_000 + "1" + "}" * 100_000,
    ])
    def test_too_deeply_nested_is_unparseable(self, content):
        data, ok, error = parse_json_robust(content)
        assert data is None
        assert not ok
        assert error

    def test_safe_log_content_truncates(self):
        logged = safe_log_content("x" * 500, max_chars=10)
        assert "len=500" in logged
        assert "x" * 11 not in logged


class TestCompletionClient:

    @pytest.mark.asyncio
    async def test_success(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=_completion('{"summary": "ok"}'))

        client = _client(handler)
        result = await client.call(
            [{"role": "user", "content": "hi"}],
            response_format={"type": "json_object"},
        )
        await client.close()

        assert result.success
        assert result.content == '{"summary": "ok"}'
        assert result.input_tokens == 120
        assert result.output_tokens == 30
        assert seen["url"] == "https://llm.test/v1/chat/completions"
        assert seen["auth"] == "Bearer test-key"
        assert seen["body"]["temperature"] == 0
        assert seen["body"]["response_format"] == {"type": "json_object"}

    @pytest.mark.asyncio
    async def test_http_error(self):
        client = _client(lambda request: httpx.Response(500, json={"error": "upstream"}))
        result = await client.call([{"role": "user", "content": "hi"}])

        assert not result.success
        assert result.error_kind == ERROR_HTTP
        assert result.error == "HTTP 500"

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        result = await _client(handler).call([{"role": "user", "content": "hi"}])

        assert not result.success
        assert result.error_kind == ERROR_TIMEOUT

    @pytest.mark.asyncio
    async def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        result = await _client(handler).call([{"role": "user", "content": "hi"}])
        assert result.error_kind == ERROR_TRANSPORT

    @pytest.mark.asyncio
    async def test_missing_choices(self):
        client = _client(lambda request: httpx.Response(200, json={"choices": []}))
        result = await client.call([{"role": "user", "content": "hi"}])
        assert result.error_kind == ERROR_RESPONSE

    @pytest.mark.asyncio
    async def test_null_content_is_empty_string(self):
        client = _client(lambda request: httpx.Response(200, json=_completion(None)))
        result = await client.call([{"role": "user", "content": "hi"}])

        assert result.success
        assert result.content == ""

    @pytest.mark.asyncio
    async def test_no_api_key(self):
        def handler(request):
            raise AssertionError("no request expected")

        result = await _client(handler, api_key=None).call([{"role": "user", "content": "hi"}])
        assert result.error_kind == ERROR_CONFIG


class TestContractAnalyzerLLM:

    @pytest.mark.asyncio
    async def test_prompt_and_truncation(self):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=_completion("{}"))

        settings = Settings(llm_api_key="test-key", llm_max_input_chars=20)
        analyzer = ContractAnalyzerLLM(settings=settings, client=_client(handler))

        result = await analyzer.complete("A" * 50)
        await analyzer.close()

        messages = seen["body"]["messages"]
        assert messages[0] == {"role": "system", "content": ANALYSIS_SYSTEM_PROMPT}
        assert messages[1]["content"].endswith("A" * 20)
        assert "A" * 21 not in messages[1]["content"]
        assert seen["body"]["response_format"] == {"type": "json_object"}
        assert result.success
        assert analyzer.stats.calls == 1
        assert analyzer.stats.successful == 1

    @pytest.mark.asyncio
    async def test_failure_counted(self):
        settings = Settings(llm_api_key="test-key")
        analyzer = ContractAnalyzerLLM(
            settings=settings,
            client=_client(lambda request: httpx.Response(503)),
        )

        result = await analyzer.complete("text")

        assert not result.success
        assert analyzer.stats.failed == 1
