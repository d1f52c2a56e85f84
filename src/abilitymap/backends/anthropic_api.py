"""Anthropic API backend using the official SDK.

Sends evaluation prompts to Claude models and translates SDK exceptions into
the abilitymap error taxonomy. The SDK's own retries are disabled; retrying
is the job of ``abilitymap.execution.retry``.
"""

import os
import time

import anthropic

from abilitymap.backends.base import EvaluationBackend
from abilitymap.core.config import BackendConfig
from abilitymap.core.errors import (
    FatalError,
    RateLimitedError,
    RemoteCallError,
    TransientServerError,
)
from abilitymap.core.logging import get_logger

_logger = get_logger("backend.anthropic")

_TRANSIENT_STATUSES = (500, 502, 503, 504, 529)


def _retry_after_seconds(error: anthropic.APIStatusError) -> float | None:
    """Read a numeric Retry-After header from an SDK error, if present."""
    response = getattr(error, "response", None)
    if response is None:
        return None
    value = response.headers.get("retry-after")
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


class AnthropicApiBackend(EvaluationBackend):
    """Run evaluation prompts via the Anthropic API."""

    def __init__(
        self,
        model: str = "claude-sonnet-4-20250514",
        api_key_env: str = "ANTHROPIC_API_KEY",
        max_tokens: int = 4096,
        temperature: float = 0.0,
        timeout_seconds: float = 120.0,
    ):
        """Initialize API backend.

        Args:
            model: Model ID to use (e.g., claude-sonnet-4-20250514)
            api_key_env: Environment variable containing API key
            max_tokens: Maximum tokens for response
            temperature: Sampling temperature (0.0-1.0)
            timeout_seconds: Maximum time for one API request
        """
        self.model = model
        self.api_key_env = api_key_env
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.timeout_seconds = timeout_seconds

        self._api_key = os.environ.get(api_key_env)

        # Created lazily on first call
        self._client: anthropic.AsyncAnthropic | None = None

    @classmethod
    def from_config(cls, config: BackendConfig) -> "AnthropicApiBackend":
        """Create backend from configuration."""
        return cls(
            model=config.model,
            api_key_env=config.api_key_env,
            max_tokens=config.max_tokens,
            temperature=config.temperature,
            timeout_seconds=config.timeout_seconds,
        )

    @property
    def name(self) -> str:
        return "anthropic-api"

    def _get_client(self) -> anthropic.AsyncAnthropic:
        """Get or create the async Anthropic client."""
        if self._client is None:
            if not self._api_key:
                raise FatalError(
                    f"API key not found in environment variable: {self.api_key_env}"
                )
            self._client = anthropic.AsyncAnthropic(
                api_key=self._api_key,
                timeout=self.timeout_seconds,
                max_retries=0,
            )
        return self._client

    async def complete(self, system: str, prompt: str) -> str:
        """Send a prompt to the Anthropic API.

        Raises:
            RateLimitedError: On HTTP 429, with the Retry-After value if sent.
            TransientServerError: On 5xx responses, timeouts and connection errors.
            FatalError: On authentication, bad request and other failures.
        """
        client = self._get_client()
        start_time = time.monotonic()

        try:
            response = await client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                system=system,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.RateLimitError as e:
            raise RateLimitedError(
                f"Rate limited: {e}", retry_after_seconds=_retry_after_seconds(e)
            ) from e
        except anthropic.AuthenticationError as e:
            raise FatalError(f"Authentication failed: {e}", status=401) from e
        except anthropic.BadRequestError as e:
            raise FatalError(f"Bad request: {e}", status=400) from e
        except anthropic.APITimeoutError as e:
            raise TransientServerError(
                f"API timeout after {self.timeout_seconds}s: {e}", status=503
            ) from e
        except anthropic.APIConnectionError as e:
            raise TransientServerError(f"Connection error: {e}", status=503) from e
        except anthropic.APIStatusError as e:
            status = e.status_code
            if status in _TRANSIENT_STATUSES:
                # 5xx variants collapse to 503 so the retry policy backs off
                raise TransientServerError(
                    str(e), status=status if status in (500, 503) else 503
                ) from e
            raise FatalError(str(e), status=status) from e
        except anthropic.AnthropicError as e:
            raise RemoteCallError(f"Unexpected API error: {e}") from e

        response_text = "".join(
            block.text for block in response.content if hasattr(block, "text")
        )
        _logger.debug(
            "backend.completed",
            model=self.model,
            duration_seconds=round(time.monotonic() - start_time, 2),
            usage=(
                {"input": response.usage.input_tokens, "output": response.usage.output_tokens}
                if response.usage
                else None
            ),
            response_chars=len(response_text),
        )
        return response_text

    async def health_check(self) -> bool:
        """Check if the API is available and authenticated.

        Uses a minimal prompt to verify connectivity.
        """
        if not self._api_key:
            return False

        try:
            client = self._get_client()
            response = await client.messages.create(
                model=self.model,
                max_tokens=10,
                messages=[{"role": "user", "content": "Reply with only: ok"}],
            )
            return len(response.content) > 0
        except anthropic.AnthropicError as e:
            _logger.warning("backend.health_check_failed", error=str(e))
            return False

    async def close(self) -> None:
        """Close the async client connection."""
        if self._client is not None:
            await self._client.close()
            self._client = None
