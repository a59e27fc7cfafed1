"""Provider health checks: ping each backend before starting a discussion."""

import asyncio
import logging

from src.providers.base import AIProvider

logger = logging.getLogger(__name__)

_PING_SYSTEM = "You are a connectivity check."
_PING_PROMPT = "Reply with the word OK only."
_TIMEOUT_SEC = 15.0


async def _first_fragment(provider: AIProvider, model_id: str) -> None:
    stream = provider.stream_response(model_id, _PING_SYSTEM, [], _PING_PROMPT)
    try:
        async for _ in stream:
            return
    finally:
        aclose = getattr(stream, "aclose", None)
        if aclose is not None:
            await aclose()


async def _check_one(name: str, provider: AIProvider, model_id: str) -> tuple[str, bool, str]:
    """Ping a single provider. Returns (name, ok, error_message)."""
    try:
        await asyncio.wait_for(_first_fragment(provider, model_id), timeout=_TIMEOUT_SEC)
        return name, True, ""
    except TimeoutError:
        return name, False, f"No response within {_TIMEOUT_SEC:.0f}s"
    except Exception as exc:
        return name, False, str(exc)


async def run_health_checks(
    providers: dict[str, AIProvider],
    model_ids: dict[str, str],
) -> dict[str, tuple[bool, str]]:
    """Ping all providers in parallel, each with its own model id.

    Returns:
        Dict mapping provider name -> (ok, error_message).
        error_message is "" when ok is True. Providers without a model id
        are reported as failed without being called.
    """
    results: dict[str, tuple[bool, str]] = {}
    checks = []
    for name, provider in providers.items():
        model_id = model_ids.get(name)
        if model_id is None:
            results[name] = (False, "No model configured for provider")
            continue
        checks.append(_check_one(name, provider, model_id))

    for name, ok, err in await asyncio.gather(*checks):
        results[name] = (ok, err)
        if not ok:
            logger.debug("Health check failed for %s: %s", name, err)
    return results
