"""Tests for the reasoning-model call: retry, backoff and parsing."""

import httpx
import pytest

from ql_shared.errors import AuthUnavailable, InvalidUpstreamRequest, OptimizationUnavailable, TransientUpstreamError
from ql_shared.llm import ChatCompletionClient
from ql_sql.optimizer_client import OptimizationClient
from ql_sql.prompts import SYSTEM_PROMPT

from conftest import FakeChatModel, model_reply


def http_model(statuses):
    """ChatCompletionClient over a transport answering with ``statuses`` in order."""
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        status = statuses[len(calls)]
        calls.append(request)
        if status == 200:
            return httpx.Response(200, json={"choices": [{"message": {"content": model_reply("SELECT 1")}}]})
        return httpx.Response(status, text="error")

    client = ChatCompletionClient(
        api_url="https://llm.example.test/api/v1",
        model="GigaChat-Pro",
        transport=httpx.MockTransport(handler),
    )
    return client, calls


class TestOptimizationClient:

    @pytest.mark.asyncio
    async def test_messages_carry_system_and_user_prompt(self):
        model = FakeChatModel(model_reply("SELECT 1"))
        await OptimizationClient(model, backoff_initial=0).optimize("optimize this")
        assert model.calls[0] == [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": "optimize this"},
        ]

    @pytest.mark.asyncio
    async def test_two_server_errors_then_success(self):
        model, calls = http_model([503, 503, 200])
        client = OptimizationClient(model, backoff_initial=0)

        fragment = await client.optimize("prompt")

        assert len(calls) == 3
        assert client.last_attempts == 3
        assert fragment.optimized_sql == "SELECT 1"

    @pytest.mark.asyncio
    async def test_three_server_errors_exhaust_retries(self):
        model, calls = http_model([503, 503, 503])
        client = OptimizationClient(model, backoff_initial=0)

        with pytest.raises(OptimizationUnavailable):
            await client.optimize("prompt")
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self):
        model, calls = http_model([400, 200])
        with pytest.raises(InvalidUpstreamRequest):
            await OptimizationClient(model, backoff_initial=0).optimize("prompt")
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_auth_failure_not_retried(self):
        model = FakeChatModel(AuthUnavailable("token endpoint down"))
        with pytest.raises(AuthUnavailable):
            await OptimizationClient(model, backoff_initial=0).optimize("prompt")
        assert len(model.calls) == 1

    @pytest.mark.asyncio
    async def test_max_attempts_configurable(self):
        model = FakeChatModel(TransientUpstreamError("down", status_code=502))
        with pytest.raises(OptimizationUnavailable):
            await OptimizationClient(model, max_attempts=5, backoff_initial=0).optimize("prompt")
        assert len(model.calls) == 5

    @pytest.mark.asyncio
    async def test_backoff_starts_at_initial_and_doubles(self):
        sleeps = []

        async def fake_sleep(seconds):
            sleeps.append(seconds)

        model = FakeChatModel(TransientUpstreamError("down"))
        client = OptimizationClient(model, backoff_initial=1.0, sleep=fake_sleep)
        with pytest.raises(OptimizationUnavailable):
            await client.optimize("prompt")
        assert sleeps == [1.0, 2.0]

    def test_from_settings(self, settings):
        client = OptimizationClient.from_settings(FakeChatModel("x"), settings)
        assert client.max_attempts == 3
        assert client.backoff_initial == 0.0
        assert client.system_prompt == settings.llm_system_prompt
