"""Tests for AnthropicApiBackend.

The SDK client is replaced by mocks; these tests cover request shaping,
response extraction and the translation of SDK errors into the retry
taxonomy.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import anthropic
import pytest

from abilitymap.backends.anthropic_api import AnthropicApiBackend
from abilitymap.core.config import BackendConfig
from abilitymap.core.errors import (
    ErrorCategory,
    FatalError,
    RateLimitedError,
    RemoteCallError,
    TransientServerError,
    classify_error,
)


# ============================================================================
# Helpers
# ============================================================================


def _make_response(*texts: str, usage: bool = True) -> MagicMock:
    """Build a mock anthropic Messages response."""
    blocks = []
    for text in texts:
        block = MagicMock()
        block.text = text
        blocks.append(block)
    resp = MagicMock()
    resp.content = blocks
    if usage:
        resp.usage.input_tokens = 10
        resp.usage.output_tokens = 5
    else:
        resp.usage = None
    return resp


def _http_response(status: int, headers: dict[str, str] | None = None) -> MagicMock:
    response = MagicMock()
    response.status_code = status
    response.headers = headers or {}
    return response


def _mock_client(
    response: MagicMock | None = None, side_effect: Exception | None = None
) -> AsyncMock:
    client = AsyncMock()
    client.messages.create = AsyncMock(side_effect=side_effect, return_value=response)
    return client


@pytest.fixture
def backend(monkeypatch: pytest.MonkeyPatch) -> AnthropicApiBackend:
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-test-fake-key")
    return AnthropicApiBackend(model="claude-test", max_tokens=256)


# ============================================================================
# Construction
# ============================================================================


class TestConstruction:
    def test_from_config(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("MY_KEY", "sk-x")
        backend = AnthropicApiBackend.from_config(
            BackendConfig(model="claude-x", api_key_env="MY_KEY", max_tokens=99, temperature=0.5)
        )
        assert backend.model == "claude-x"
        assert backend.max_tokens == 99
        assert backend.temperature == 0.5
        assert backend.name == "anthropic-api"

    def test_missing_key_is_fatal(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        backend = AnthropicApiBackend()
        with pytest.raises(FatalError, match="ANTHROPIC_API_KEY"):
            backend._get_client()

    def test_client_created_without_sdk_retries(self, backend: AnthropicApiBackend) -> None:
        with patch("abilitymap.backends.anthropic_api.anthropic.AsyncAnthropic") as mock_cls:
            client = backend._get_client()
            assert backend._get_client() is client
        mock_cls.assert_called_once_with(api_key="sk-test-fake-key", timeout=120.0, max_retries=0)


# ============================================================================
# complete()
# ============================================================================


class TestComplete:
    @pytest.mark.asyncio
    async def test_returns_joined_text(self, backend: AnthropicApiBackend) -> None:
        client = _mock_client(_make_response("Hello ", "world"))
        with patch.object(backend, "_get_client", return_value=client):
            text = await backend.complete("system prompt", "user prompt")

        assert text == "Hello world"
        kwargs = client.messages.create.call_args.kwargs
        assert kwargs["model"] == "claude-test"
        assert kwargs["max_tokens"] == 256
        assert kwargs["system"] == "system prompt"
        assert kwargs["messages"] == [{"role": "user", "content": "user prompt"}]

    @pytest.mark.asyncio
    async def test_missing_usage(self, backend: AnthropicApiBackend) -> None:
        client = _mock_client(_make_response("ok", usage=False))
        with patch.object(backend, "_get_client", return_value=client):
            assert await backend.complete("s", "p") == "ok"


class TestErrorTranslation:
    @pytest.mark.asyncio
    async def test_rate_limit_with_retry_after(self, backend: AnthropicApiBackend) -> None:
        error = anthropic.RateLimitError(
            message="Rate limit exceeded",
            response=_http_response(429, {"retry-after": "7"}),
            body=None,
        )
        with patch.object(backend, "_get_client", return_value=_mock_client(side_effect=error)):
            with pytest.raises(RateLimitedError) as exc_info:
                await backend.complete("s", "p")

        assert exc_info.value.retry_after_seconds == 7.0
        classified = classify_error(exc_info.value)
        assert classified.category is ErrorCategory.RATE_LIMIT
        assert classified.suggested_wait_seconds == 7.0

    @pytest.mark.asyncio
    async def test_rate_limit_without_header(self, backend: AnthropicApiBackend) -> None:
        error = anthropic.RateLimitError(
            message="Rate limit exceeded", response=_http_response(429), body=None
        )
        with patch.object(backend, "_get_client", return_value=_mock_client(side_effect=error)):
            with pytest.raises(RateLimitedError) as exc_info:
                await backend.complete("s", "p")
        assert exc_info.value.retry_after_seconds is None

    @pytest.mark.asyncio
    async def test_authentication_is_fatal(self, backend: AnthropicApiBackend) -> None:
        error = anthropic.AuthenticationError(
            message="invalid x-api-key", response=_http_response(401), body=None
        )
        with patch.object(backend, "_get_client", return_value=_mock_client(side_effect=error)):
            with pytest.raises(FatalError) as exc_info:
                await backend.complete("s", "p")
        assert exc_info.value.status == 401
        assert not classify_error(exc_info.value).retriable

    @pytest.mark.asyncio
    async def test_bad_request_is_fatal(self, backend: AnthropicApiBackend) -> None:
        error = anthropic.BadRequestError(
            message="prompt too long", response=_http_response(400), body=None
        )
        with patch.object(backend, "_get_client", return_value=_mock_client(side_effect=error)):
            with pytest.raises(FatalError):
                await backend.complete("s", "p")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status,expected", [(500, 500), (503, 503), (502, 503), (529, 503)]
    )
    async def test_server_errors_are_transient(
        self, backend: AnthropicApiBackend, status: int, expected: int
    ) -> None:
        error = anthropic.APIStatusError(
            message="server error", response=_http_response(status), body=None
        )
        with patch.object(backend, "_get_client", return_value=_mock_client(side_effect=error)):
            with pytest.raises(TransientServerError) as exc_info:
                await backend.complete("s", "p")
        assert exc_info.value.status == expected
        assert classify_error(exc_info.value).category is ErrorCategory.TRANSIENT

    @pytest.mark.asyncio
    async def test_other_status_is_fatal(self, backend: AnthropicApiBackend) -> None:
        error = anthropic.APIStatusError(
            message="conflict", response=_http_response(409), body=None
        )
        with patch.object(backend, "_get_client", return_value=_mock_client(side_effect=error)):
            with pytest.raises(FatalError) as exc_info:
                await backend.complete("s", "p")
        assert exc_info.value.status == 409

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [
            anthropic.APITimeoutError(request=MagicMock()),
            anthropic.APIConnectionError(request=MagicMock()),
        ],
    )
    async def test_network_errors_are_transient(
        self, backend: AnthropicApiBackend, error: Exception
    ) -> None:
        with patch.object(backend, "_get_client", return_value=_mock_client(side_effect=error)):
            with pytest.raises(TransientServerError):
                await backend.complete("s", "p")

    @pytest.mark.asyncio
    async def test_other_sdk_errors_wrapped(self, backend: AnthropicApiBackend) -> None:
        error = anthropic.AnthropicError("something odd")
        with patch.object(backend, "_get_client", return_value=_mock_client(side_effect=error)):
            with pytest.raises(RemoteCallError, match="something odd"):
                await backend.complete("s", "p")


# ============================================================================
# health_check() and close()
# ============================================================================


class TestHealthAndClose:
    @pytest.mark.asyncio
    async def test_health_check_without_key(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        assert await AnthropicApiBackend().health_check() is False

    @pytest.mark.asyncio
    async def test_health_check_success(self, backend: AnthropicApiBackend) -> None:
        with patch.object(backend, "_get_client", return_value=_mock_client(_make_response("ok"))):
            assert await backend.health_check() is True

    @pytest.mark.asyncio
    async def test_health_check_failure(self, backend: AnthropicApiBackend) -> None:
        client = _mock_client(side_effect=anthropic.APIConnectionError(request=MagicMock()))
        with patch.object(backend, "_get_client", return_value=client):
            assert await backend.health_check() is False

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, backend: AnthropicApiBackend) -> None:
        client = AsyncMock()
        backend._client = client
        await backend.close()
        await backend.close()
        client.close.assert_awaited_once()
        assert backend._client is None
