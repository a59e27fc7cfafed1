"""Chat-completion provider using openai SDK with native async streaming.

Also serves OpenAI-compatible endpoints (xAI Grok, DeepSeek) via base_url.
"""

import logging
import os
import time
from collections.abc import AsyncIterator, Sequence

from openai import AsyncOpenAI

from config.config_loader import ProviderConfig
from src.models import Message
from src.providers.base import AIProvider, ProviderError, conversation_turns

logger = logging.getLogger(__name__)


class OpenAIProvider(AIProvider):
    """OpenAI-protocol provider via openai SDK."""

    def __init__(self, config: ProviderConfig) -> None:
        self._config = config
        api_key = os.environ.get(config.api_key_env or "", "").strip()
        if not api_key:
            raise ProviderError(config.name, f"Missing API key: {config.api_key_env}")
        self._client = AsyncOpenAI(
            api_key=api_key,
            base_url=config.base_url,
            timeout=config.timeout_sec,
        )

    def name(self) -> str:
        return self._config.name

    async def stream_response(
        self,
        model_id: str,
        system_prompt: str,
        history: Sequence[Message],
        new_prompt: str,
    ) -> AsyncIterator[str]:
        messages = [{"role": "system", "content": system_prompt}]
        messages += [{"role": role, "content": text} for role, text in conversation_turns(history, new_prompt)]

        start = time.monotonic()
        chars = 0
        try:
            stream = await self._client.chat.completions.create(
                model=model_id,
                messages=messages,
                stream=True,
            )
            async for chunk in stream:
                content = chunk.choices[0].delta.content if chunk.choices else None
                if content:
                    chars += len(content)
                    yield content
        except ProviderError:
            raise
        except Exception as exc:
            raise ProviderError(self._config.name, f"API call failed: {exc}") from exc

        logger.info(
            "%s stream (%s): %.2fs, %d chars",
            self._config.name,
            model_id,
            time.monotonic() - start,
            chars,
        )
