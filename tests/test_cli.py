"""Tests for model resolution and the terminal run loop in src/cli.py."""

import click
import pytest
from click.testing import CliRunner

from src.cli import _build_participants, _default_model, _probe_models, _resolve_model, _run_discussion, main
from src.models import CRITIC, PRIMARY
from tests.conftest import CRITIC_BACKEND, PRIMARY_BACKEND, MockProvider


@pytest.fixture
def mock_all_providers() -> dict[str, MockProvider]:
    return {
        PRIMARY_BACKEND: MockProvider(PRIMARY_BACKEND),
        CRITIC_BACKEND: MockProvider(CRITIC_BACKEND),
    }


def test_resolve_catalogued_model(sample_app_config):
    assert _resolve_model(sample_app_config, "critic-model") == (CRITIC_BACKEND, "critic-model", "Critic Model")


def test_resolve_provider_prefixed_model(sample_app_config):
    assert _resolve_model(sample_app_config, f"{PRIMARY_BACKEND}/custom-1") == (PRIMARY_BACKEND, "custom-1", "custom-1")


def test_resolve_unknown_model(sample_app_config):
    with pytest.raises(click.BadParameter):
        _resolve_model(sample_app_config, "nobody/custom-1")
    with pytest.raises(click.BadParameter):
        _resolve_model(sample_app_config, "not-a-model")


def test_default_models_prefer_distinct(sample_app_config, mock_all_providers):
    first = _default_model(sample_app_config, mock_all_providers)
    second = _default_model(sample_app_config, mock_all_providers, skip=first)
    assert first == "primary-model"
    assert second == "critic-model"


def test_default_model_falls_back_to_same(sample_app_config):
    only = {PRIMARY_BACKEND: MockProvider(PRIMARY_BACKEND)}
    assert _default_model(sample_app_config, only, skip="primary-model") == "primary-model"


def test_default_model_none_usable(sample_app_config):
    with pytest.raises(click.UsageError):
        _default_model(sample_app_config, {})


def test_probe_models_first_per_provider(sample_app_config, mock_all_providers):
    assert _probe_models(sample_app_config, mock_all_providers) == {
        PRIMARY_BACKEND: "primary-model",
        CRITIC_BACKEND: "critic-model",
    }


def test_build_participants_uses_default_prompts(sample_app_config):
    primary, critic = _build_participants(sample_app_config, "primary-model", "critic-model", None, "Be harsh.")
    assert primary.role == PRIMARY and critic.role == CRITIC
    assert primary.system_prompt == "Default primary prompt."
    assert critic.system_prompt == "Be harsh."
    assert primary.id != critic.id


async def test_run_discussion_stops_after_max_messages(sample_app_config, mock_all_providers, tmp_path):
    mock_all_providers[PRIMARY_BACKEND].scripts = [["Use ", "YAML."], ["Still YAML."]]
    mock_all_providers[CRITIC_BACKEND].scripts = [["JSON is ", "stricter."]]
    participants = _build_participants(sample_app_config, "primary-model", "critic-model", None, None)

    saved = await _run_discussion(
        config=sample_app_config,
        providers=mock_all_providers,
        topic="YAML or JSON?",
        participants=participants,
        max_messages=2,
        output_dir=tmp_path,
    )

    content = saved.read_text(encoding="utf-8")
    assert "Use YAML." in content
    assert "JSON is stricter." in content
    assert "Still YAML." not in content
    assert "**Status:** stopped" in content


async def test_run_discussion_ends_on_error(sample_app_config, mock_all_providers, tmp_path):
    participants = _build_participants(sample_app_config, "primary-model", "critic-model", None, None)

    saved = await _run_discussion(
        config=sample_app_config,
        providers=mock_all_providers,
        topic="Unscripted",
        participants=participants,
        max_messages=5,
        output_dir=tmp_path,
        slug_override="failed-run",
    )

    assert saved.name.endswith("_failed-run.md")
    assert "**Messages:** 0" in saved.read_text(encoding="utf-8")


def test_run_requires_topic():
    result = CliRunner().invoke(main, ["run", "--skip-health-check"])
    assert result.exit_code == 1
    assert "Provide a TOPIC" in result.output
