"""Abstract base for all generation backends."""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Sequence

from src.models import HUMAN_SENDER, Message


class ProviderError(Exception):
    """Raised when a provider call fails."""

    def __init__(self, provider_name: str, message: str) -> None:
        self.provider_name = provider_name
        super().__init__(f"[{provider_name}] {message}")


def conversation_turns(history: Sequence[Message], new_prompt: str) -> list[tuple[str, str]]:
    """Map a transcript plus the new prompt onto (role, text) chat turns.

    Human messages become "user" turns, participant messages "assistant"
    turns, and the new prompt is always the final "user" turn.
    """
    turns = [
        ("user" if msg.sender == HUMAN_SENDER else "assistant", msg.content)
        for msg in history
    ]
    turns.append(("user", new_prompt))
    return turns


class AIProvider(ABC):
    """Uniform streaming capability over one generation backend."""

    @abstractmethod
    def name(self) -> str:
        """Return the configured provider name (e.g. 'openai', 'bedrock')."""
        ...

    @abstractmethod
    def stream_response(
        self,
        model_id: str,
        system_prompt: str,
        history: Sequence[Message],
        new_prompt: str,
    ) -> AsyncIterator[str]:
        """Stream a completion as text fragments.

        Args:
            model_id: Backend model identifier.
            system_prompt: The speaking participant's system prompt.
            history: Transcript at turn start, oldest first.
            new_prompt: The text the participant is responding to.

        Returns:
            Single-pass async iterator of fragments in generation order;
            their concatenation is the full response.

        Raises:
            ProviderError: On API failure or timeout, possibly mid-stream.
        """
        ...
