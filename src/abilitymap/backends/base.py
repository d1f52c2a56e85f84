"""Abstract base for LLM evaluation backends."""

from abc import ABC, abstractmethod


class EvaluationBackend(ABC):
    """Abstract base class for the remote evaluation service.

    Backends send a system prompt and a user prompt to a language model and
    return the raw response text. Failures are raised as the exceptions in
    ``abilitymap.core.errors`` (``RateLimitedError``, ``TransientServerError``,
    ``FatalError``) so that the retry policy can classify them. Backends do
    not retry on their own.
    """

    @abstractmethod
    async def complete(self, system: str, prompt: str) -> str:
        """Send a prompt and return the response text.

        Args:
            system: System prompt setting the evaluator's role.
            prompt: The user prompt.

        Returns:
            The concatenated text of the response.
        """
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        """Check if the backend is available and authenticated.

        Returns:
            True if backend is ready, False otherwise
        """
        ...

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable backend name."""
        ...

    async def close(self) -> None:  # noqa: B027
        """Release any held connections. Default is a no-op."""
