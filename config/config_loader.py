"""Load settings.yaml into typed dataclasses. Checks provider credentials at startup."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

_SETTINGS_PATH = Path(__file__).parent / "settings.yaml"


@dataclass
class ProviderConfig:
    name: str
    sdk: str
    timeout_sec: int
    max_tokens: int
    api_key_env: str | None = None
    base_url: str | None = None
    region: str | None = None
    temperature: float | None = None


@dataclass
class ModelOption:
    id: str
    name: str
    provider: str


@dataclass
class ServerConfig:
    host: str
    port: int
    keepalive_sec: float
    cors_origins: list[str] = field(default_factory=list)
    subscriber_queue_size: int = 0


@dataclass
class DiscussionConfig:
    turn_delay_sec: float
    default_primary_prompt: str
    default_critic_prompt: str
    output_dir: Path
    max_messages: int = 6


@dataclass
class AppConfig:
    server: ServerConfig
    discussion: DiscussionConfig
    providers: dict[str, ProviderConfig]
    models: list[ModelOption] = field(default_factory=list)
    available_providers: set[str] = field(default_factory=set)

    def model_option(self, model_id: str) -> ModelOption | None:
        return next((m for m in self.models if m.id == model_id), None)


def _provider_available(cfg: ProviderConfig) -> bool:
    if cfg.api_key_env:
        return bool(os.environ.get(cfg.api_key_env, "").strip())
    # Credential-chain providers (bedrock) only need a region
    return bool(cfg.region)


def load_config(settings_path: Path = _SETTINGS_PATH) -> AppConfig:
    """Load and validate configuration from settings.yaml.

    Raises FileNotFoundError if settings file missing.
    Logs providers without credentials but does not raise; callers check
    available_providers.
    """
    if not settings_path.exists():
        raise FileNotFoundError(f"Settings file not found: {settings_path}")

    with settings_path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    server_raw = raw["server"]
    server = ServerConfig(
        host=str(server_raw["host"]),
        port=int(server_raw["port"]),
        keepalive_sec=float(server_raw["keepalive_sec"]),
        cors_origins=list(server_raw.get("cors_origins", [])),
        subscriber_queue_size=int(server_raw.get("subscriber_queue_size", 0)),
    )

    discussion_raw = raw["discussion"]
    discussion = DiscussionConfig(
        turn_delay_sec=float(discussion_raw["turn_delay_sec"]),
        default_primary_prompt=str(discussion_raw["default_primary_prompt"]).strip(),
        default_critic_prompt=str(discussion_raw["default_critic_prompt"]).strip(),
        output_dir=Path(discussion_raw["output_dir"]),
        max_messages=int(discussion_raw.get("max_messages", 6)),
    )

    providers: dict[str, ProviderConfig] = {}
    available_providers: set[str] = set()

    for provider_name, provider_raw in raw["providers"].items():
        temperature = provider_raw.get("temperature")
        provider_cfg = ProviderConfig(
            name=provider_name,
            sdk=provider_raw["sdk"],
            timeout_sec=int(provider_raw["timeout_sec"]),
            max_tokens=int(provider_raw["max_tokens"]),
            api_key_env=provider_raw.get("api_key_env"),
            base_url=provider_raw.get("base_url"),
            region=provider_raw.get("region"),
            temperature=float(temperature) if temperature is not None else None,
        )
        providers[provider_name] = provider_cfg

        if _provider_available(provider_cfg):
            available_providers.add(provider_name)
            logger.info("Provider available: %s", provider_name)
        else:
            logger.info(
                "Provider skipped (no credentials): %s, set %s in .env",
                provider_name,
                provider_cfg.api_key_env or "region",
            )

    models = [
        ModelOption(id=str(m["id"]), name=str(m["name"]), provider=str(m["provider"]))
        for m in raw.get("models", [])
    ]
    unknown = {m.provider for m in models} - providers.keys()
    if unknown:
        logger.warning("Model catalogue references unknown providers: %s", ", ".join(sorted(unknown)))

    return AppConfig(
        server=server,
        discussion=discussion,
        providers=providers,
        models=models,
        available_providers=available_providers,
    )
