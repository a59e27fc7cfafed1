"""Anthropic messages provider using anthropic SDK with native async streaming."""

import logging
import os
import time
from collections.abc import AsyncIterator, Sequence

import anthropic as anthropic_sdk

from config.config_loader import ProviderConfig
from src.models import Message
from src.providers.base import AIProvider, ProviderError, conversation_turns

logger = logging.getLogger(__name__)


class AnthropicProvider(AIProvider):
    """Anthropic Claude provider via anthropic SDK."""

    def __init__(self, config: ProviderConfig) -> None:
        self._config = config
        api_key = os.environ.get(config.api_key_env or "", "").strip()
        if not api_key:
            raise ProviderError(config.name, f"Missing API key: {config.api_key_env}")
        self._client = anthropic_sdk.AsyncAnthropic(api_key=api_key, timeout=config.timeout_sec)

    def name(self) -> str:
        return self._config.name

    async def stream_response(
        self,
        model_id: str,
        system_prompt: str,
        history: Sequence[Message],
        new_prompt: str,
    ) -> AsyncIterator[str]:
        messages = [{"role": role, "content": text} for role, text in conversation_turns(history, new_prompt)]

        start = time.monotonic()
        chars = 0
        try:
            stream = await self._client.messages.create(
                model=model_id,
                max_tokens=self._config.max_tokens,
                system=system_prompt,
                messages=messages,
                stream=True,
            )
            async for event in stream:
                if event.type == "content_block_delta" and event.delta.type == "text_delta":
                    chars += len(event.delta.text)
                    yield event.delta.text
                elif event.type == "error":
                    raise ProviderError(self._config.name, f"Stream error: {event.error}")
        except ProviderError:
            raise
        except Exception as exc:
            raise ProviderError(self._config.name, f"API call failed: {exc}") from exc

        logger.info(
            "Anthropic stream (%s): %.2fs, %d chars",
            model_id,
            time.monotonic() - start,
            chars,
        )
