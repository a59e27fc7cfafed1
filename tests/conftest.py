"""Shared pytest fixtures."""

import asyncio
from collections.abc import AsyncIterator, Sequence
from pathlib import Path

import pytest

from config.config_loader import AppConfig, DiscussionConfig, ModelOption, ProviderConfig, ServerConfig
from src.discussion import DiscussionOrchestrator
from src.models import CRITIC, PRIMARY, Message, Participant, StreamEvent
from src.providers.base import AIProvider, ProviderError
from src.sinks import EventSinkRegistry, Subscription
from src.store import DiscussionStore

PRIMARY_BACKEND = "primary-backend"
CRITIC_BACKEND = "critic-backend"


class MockProvider(AIProvider):
    """Test double adapter that plays back scripted responses.

    Each script is consumed by one stream_response call. A script is either
    an exception (raised on the first pull) or a list whose items are
    fragments to yield, exceptions to raise mid-stream, or zero-arg
    callables run for their side effect between fragments. Once the scripts
    run out every call fails, which ends the discussion.
    """

    def __init__(self, provider_name: str = "mock", scripts: Sequence | None = None) -> None:
        self._name = provider_name
        self.scripts = list(scripts or [])
        self.calls: list[dict] = []
        self.fragment_delay = 0.0

    def name(self) -> str:
        return self._name

    async def stream_response(
        self,
        model_id: str,
        system_prompt: str,
        history: Sequence[Message],
        new_prompt: str,
    ) -> AsyncIterator[str]:
        self.calls.append(
            {
                "model_id": model_id,
                "system_prompt": system_prompt,
                "history": list(history),
                "new_prompt": new_prompt,
            }
        )
        script = self.scripts.pop(0) if self.scripts else ProviderError(self._name, "no scripted response")
        if isinstance(script, Exception):
            raise script
        for item in script:
            await asyncio.sleep(self.fragment_delay)
            if isinstance(item, Exception):
                raise item
            if callable(item):
                item()
                continue
            yield item


def make_participant(role: str, provider: str, participant_id: str | None = None) -> Participant:
    return Participant(
        id=participant_id or f"{role}-1",
        provider=provider,
        model_id=f"{role}-model",
        display_name=f"{role.title()} Bot",
        system_prompt=f"You are the {role}.",
        role=role,
    )


async def drain(subscription: Subscription) -> list[StreamEvent]:
    """Collect every event already queued for a subscription."""
    events = []
    while subscription.pending:
        events.append(await subscription.get())
    return events


@pytest.fixture
def primary() -> Participant:
    return make_participant(PRIMARY, PRIMARY_BACKEND)


@pytest.fixture
def critic() -> Participant:
    return make_participant(CRITIC, CRITIC_BACKEND)


@pytest.fixture
def participants(primary: Participant, critic: Participant) -> list[Participant]:
    return [primary, critic]


@pytest.fixture
def store() -> DiscussionStore:
    return DiscussionStore()


@pytest.fixture
def sinks() -> EventSinkRegistry:
    return EventSinkRegistry()


@pytest.fixture
def primary_adapter() -> MockProvider:
    return MockProvider(PRIMARY_BACKEND)


@pytest.fixture
def critic_adapter() -> MockProvider:
    return MockProvider(CRITIC_BACKEND)


@pytest.fixture
async def orchestrator(store, sinks, primary_adapter, critic_adapter):
    orch = DiscussionOrchestrator(
        store,
        sinks,
        {PRIMARY_BACKEND: primary_adapter, CRITIC_BACKEND: critic_adapter},
        turn_delay_sec=0.01,
    )
    yield orch
    await orch.shutdown()


@pytest.fixture
def sample_app_config(tmp_path: Path) -> AppConfig:
    providers = {
        name: ProviderConfig(name=name, sdk="mock", timeout_sec=30, max_tokens=1024)
        for name in (PRIMARY_BACKEND, CRITIC_BACKEND, "offline")
    }
    return AppConfig(
        server=ServerConfig(host="127.0.0.1", port=3001, keepalive_sec=15, cors_origins=["*"]),
        discussion=DiscussionConfig(
            turn_delay_sec=0.01,
            default_primary_prompt="Default primary prompt.",
            default_critic_prompt="Default critic prompt.",
            output_dir=tmp_path / "output",
            max_messages=2,
        ),
        providers=providers,
        models=[
            ModelOption(id="primary-model", name="Primary Model", provider=PRIMARY_BACKEND),
            ModelOption(id="critic-model", name="Critic Model", provider=CRITIC_BACKEND),
            ModelOption(id="offline-model", name="Offline Model", provider="offline"),
        ],
        available_providers={PRIMARY_BACKEND, CRITIC_BACKEND},
    )
