"""Gemini provider using google-genai SDK with native async streaming."""

import logging
import os
import time
from collections.abc import AsyncIterator, Sequence

from google import genai
from google.genai import types as genai_types

from config.config_loader import ProviderConfig
from src.models import Message
from src.providers.base import AIProvider, ProviderError, conversation_turns

logger = logging.getLogger(__name__)


class GeminiProvider(AIProvider):
    """Google Gemini provider via google-genai SDK."""

    def __init__(self, config: ProviderConfig) -> None:
        self._config = config
        api_key = os.environ.get(config.api_key_env or "", "").strip()
        if not api_key:
            raise ProviderError(config.name, f"Missing API key: {config.api_key_env}")
        self._client = genai.Client(api_key=api_key)

    def name(self) -> str:
        return self._config.name

    async def stream_response(
        self,
        model_id: str,
        system_prompt: str,
        history: Sequence[Message],
        new_prompt: str,
    ) -> AsyncIterator[str]:
        # Gemini calls the assistant side "model"
        contents = [
            genai_types.Content(
                role="user" if role == "user" else "model",
                parts=[genai_types.Part(text=text)],
            )
            for role, text in conversation_turns(history, new_prompt)
        ]

        start = time.monotonic()
        chars = 0
        try:
            stream = await self._client.aio.models.generate_content_stream(
                model=model_id,
                contents=contents,
                config=genai_types.GenerateContentConfig(
                    system_instruction=system_prompt,
                    max_output_tokens=self._config.max_tokens,
                    http_options=genai_types.HttpOptions(timeout=self._config.timeout_sec * 1000),
                ),
            )
            async for chunk in stream:
                if chunk.text:
                    chars += len(chunk.text)
                    yield chunk.text
        except ProviderError:
            raise
        except Exception as exc:
            raise ProviderError(self._config.name, f"API call failed: {exc}") from exc

        logger.info(
            "Gemini stream (%s): %.2fs, %d chars",
            model_id,
            time.monotonic() - start,
            chars,
        )
