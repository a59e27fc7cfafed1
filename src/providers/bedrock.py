"""Bedrock managed-runtime provider using boto3's converse_stream.

boto3 is synchronous, so the request and every pull from the event
stream run in a worker thread.
"""

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Sequence

import boto3
from botocore.config import Config as BotoConfig

from config.config_loader import ProviderConfig
from src.models import Message
from src.providers.base import AIProvider, ProviderError, conversation_turns

logger = logging.getLogger(__name__)

_DEFAULT_REGION = "eu-west-1"
_DEFAULT_TEMPERATURE = 1.0
# Converse requires the conversation to open with a user turn
_OPENING_USER_TURN = "Continue the discussion."


def _converse_messages(history: Sequence[Message], new_prompt: str) -> list[dict]:
    """Build converse messages: strictly alternating roles, user first."""
    messages: list[dict] = []
    for role, text in conversation_turns(history, new_prompt):
        if messages and messages[-1]["role"] == role:
            messages[-1]["content"].append({"text": text})
        else:
            messages.append({"role": role, "content": [{"text": text}]})
    if messages[0]["role"] != "user":
        messages.insert(0, {"role": "user", "content": [{"text": _OPENING_USER_TURN}]})
    return messages


class BedrockProvider(AIProvider):
    """AWS Bedrock provider. Credentials come from the standard AWS chain."""

    def __init__(self, config: ProviderConfig) -> None:
        self._config = config
        try:
            self._client = boto3.client(
                "bedrock-runtime",
                region_name=config.region or _DEFAULT_REGION,
                config=BotoConfig(read_timeout=config.timeout_sec),
            )
        except Exception as exc:
            raise ProviderError(config.name, f"Failed to create client: {exc}") from exc

    def name(self) -> str:
        return self._config.name

    async def stream_response(
        self,
        model_id: str,
        system_prompt: str,
        history: Sequence[Message],
        new_prompt: str,
    ) -> AsyncIterator[str]:
        temperature = self._config.temperature
        request = {
            "modelId": model_id,
            "messages": _converse_messages(history, new_prompt),
            "system": [{"text": system_prompt}],
            "inferenceConfig": {
                "maxTokens": self._config.max_tokens,
                "temperature": temperature if temperature is not None else _DEFAULT_TEMPERATURE,
            },
        }

        start = time.monotonic()
        chars = 0
        event_stream = None
        try:
            response = await asyncio.to_thread(self._client.converse_stream, **request)
            event_stream = response.get("stream")
            if event_stream is None:
                return
            events = iter(event_stream)
            while True:
                event = await asyncio.to_thread(next, events, None)
                if event is None:
                    break
                text = event.get("contentBlockDelta", {}).get("delta", {}).get("text")
                if text:
                    chars += len(text)
                    yield text
        except ProviderError:
            raise
        except Exception as exc:
            raise ProviderError(self._config.name, f"API call failed: {exc}") from exc
        finally:
            if event_stream is not None and hasattr(event_stream, "close"):
                event_stream.close()

        logger.info(
            "Bedrock stream (%s): %.2fs, %d chars",
            model_id,
            time.monotonic() - start,
            chars,
        )
