"""Click CLI: config loading, adapter construction, HTTP server and terminal runs."""

import asyncio
import logging
import sys
from pathlib import Path

import click
import uvicorn
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler

from config.config_loader import AppConfig, load_config
from src.api import create_app
from src.discussion import DiscussionOrchestrator
from src.healthcheck import run_health_checks
from src.models import CRITIC, PRIMARY, Participant
from src.output import EventPrinter, save_transcript
from src.providers.anthropic import AnthropicProvider
from src.providers.base import AIProvider
from src.providers.bedrock import BedrockProvider
from src.providers.gemini import GeminiProvider
from src.providers.openai_provider import OpenAIProvider
from src.sinks import EventSinkRegistry
from src.store import DiscussionStore
from src.topic_file import parse_topic_file

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)

# Keyed by the `sdk` field of a provider's settings
PROVIDER_CLASSES: dict[str, type[AIProvider]] = {
    "openai": OpenAIProvider,
    "anthropic": AnthropicProvider,
    "bedrock": BedrockProvider,
    "gemini": GeminiProvider,
}

_POLL_SEC = 0.5


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )


def _load_config_or_exit() -> AppConfig:
    try:
        return load_config()
    except FileNotFoundError as exc:
        console.print(f"[bold red]Config error:[/bold red] {exc}")
        sys.exit(1)


def _build_all_providers(config: AppConfig) -> dict[str, AIProvider]:
    """Build all available providers. Returns dict keyed by provider name."""
    providers: dict[str, AIProvider] = {}
    for name in sorted(config.available_providers):
        provider_cfg = config.providers[name]
        if provider_cfg.sdk not in PROVIDER_CLASSES:
            logging.warning("Provider '%s' uses unknown sdk '%s', skipping", name, provider_cfg.sdk)
            continue
        try:
            providers[name] = PROVIDER_CLASSES[provider_cfg.sdk](provider_cfg)
        except Exception as exc:
            logging.warning("Failed to instantiate provider '%s': %s", name, exc)
    return providers


def _probe_models(config: AppConfig, providers: dict[str, AIProvider]) -> dict[str, str]:
    """First catalogued model of each provider, used for health checks."""
    model_ids: dict[str, str] = {}
    for option in config.models:
        if option.provider in providers:
            model_ids.setdefault(option.provider, option.id)
    return model_ids


def _resolve_model(config: AppConfig, spec: str) -> tuple[str, str, str]:
    """Resolve a model id or "provider/model" to (provider, model_id, display_name).

    Raises:
        click.BadParameter: If the model is neither catalogued nor prefixed
            with a configured provider.
    """
    option = config.model_option(spec)
    if option is not None:
        return option.provider, option.id, option.name
    provider, sep, model_id = spec.partition("/")
    if sep and provider in config.providers and model_id:
        return provider, model_id, model_id
    raise click.BadParameter(f"Unknown model '{spec}'. Use a catalogued id or provider/model.")


def _default_model(config: AppConfig, providers: dict[str, AIProvider], skip: str | None = None) -> str:
    """First catalogued model with a live provider, preferring one other than skip."""
    usable = [m.id for m in config.models if m.provider in providers]
    if not usable:
        raise click.UsageError("No catalogued model has an available provider. Check API keys in .env.")
    others = [m for m in usable if m != skip]
    return others[0] if others else usable[0]


def _check_and_filter_providers(config: AppConfig, all_providers: dict[str, AIProvider]) -> dict[str, AIProvider]:
    """Run health checks, print results, and ask what to do on failures.

    Returns the filtered dict of working providers. Exits if the user
    declines to continue or no providers pass.
    """
    console.print("\n[bold]Checking providers...[/bold]")
    results = asyncio.run(run_health_checks(all_providers, _probe_models(config, all_providers)))

    failed_names: list[str] = []
    for name in sorted(results):
        ok, err = results[name]
        if ok:
            console.print(f"  [green]OK  [/green] {name}")
        else:
            short_err = err.splitlines()[0][:120] if err else "unknown error"
            console.print(f"  [red]FAIL[/red] {name}: {short_err}")
            failed_names.append(name)

    if not failed_names:
        console.print()
        return all_providers

    working = {n: p for n, p in all_providers.items() if n not in failed_names}

    if not working:
        console.print("\n[bold red]Error:[/bold red] No providers passed the health check.")
        sys.exit(1)

    console.print(f"\n[yellow]{len(failed_names)} provider(s) failed:[/yellow] {', '.join(failed_names)}")
    console.print(f"Working providers: {', '.join(sorted(working))}")

    if not click.confirm("Continue with working providers only?", default=True):
        sys.exit(0)

    console.print()
    return working


def _build_participants(
    config: AppConfig,
    primary_model: str,
    critic_model: str,
    primary_prompt: str | None,
    critic_prompt: str | None,
) -> list[Participant]:
    participants = []
    for role, spec, prompt, default_prompt in (
        (PRIMARY, primary_model, primary_prompt, config.discussion.default_primary_prompt),
        (CRITIC, critic_model, critic_prompt, config.discussion.default_critic_prompt),
    ):
        provider, model_id, display_name = _resolve_model(config, spec)
        participants.append(
            Participant(
                id=role,
                provider=provider,
                model_id=model_id,
                display_name=display_name,
                system_prompt=prompt or default_prompt,
                role=role,
            )
        )
    return participants


async def _run_discussion(
    config: AppConfig,
    providers: dict[str, AIProvider],
    topic: str,
    participants: list[Participant],
    max_messages: int,
    output_dir: Path,
    slug_override: str | None = None,
) -> Path:
    """Run one discussion in-process, printing events until it ends."""
    store = DiscussionStore()
    sinks = EventSinkRegistry(config.server.subscriber_queue_size)
    orchestrator = DiscussionOrchestrator(store, sinks, providers, config.discussion.turn_delay_sec)

    discussion_id = store.create(topic, participants)
    discussion = store.get(discussion_id)
    subscription = sinks.attach(discussion_id)
    printer = EventPrinter(discussion, console)

    primary, critic = discussion.participant(PRIMARY), discussion.participant(CRITIC)
    console.print(f"\n[bold cyan]Discussion[/bold cyan], up to {max_messages} messages")
    console.print(f"Primary: {primary.display_name} ({primary.provider})")
    console.print(f"Critic: {critic.display_name} ({critic.provider})")
    console.print(f"Topic: [italic]{topic[:80]}{'...' if len(topic) > 80 else ''}[/italic]\n")

    orchestrator.launch(discussion_id)
    completed = 0
    try:
        while orchestrator.is_running(discussion_id) or subscription.pending:
            event = await subscription.get(timeout=_POLL_SEC)
            if event is None:
                continue
            printer(event)
            if event.type == "complete":
                completed += 1
                if completed >= max_messages:
                    orchestrator.stop(discussion_id)
    finally:
        orchestrator.stop(discussion_id)
        await orchestrator.wait(discussion_id)
        sinks.detach(discussion_id, subscription)

    saved_path = save_transcript(store.get(discussion_id), output_dir, slug_override=slug_override)
    console.print(f"\n[dim]Saved to: {saved_path}[/dim]")
    return saved_path


@click.group()
def main() -> None:
    """AI Dialogue -- two models discuss a topic while you watch and interject."""
    # Reconfigure stdout/stderr to UTF-8 on Windows so streamed Unicode
    # doesn't crash the ANSI render path.
    if sys.platform == "win32":
        if hasattr(sys.stdout, "reconfigure"):
            sys.stdout.reconfigure(encoding="utf-8", errors="replace")
        if hasattr(sys.stderr, "reconfigure"):
            sys.stderr.reconfigure(encoding="utf-8", errors="replace")
    load_dotenv()


@main.command()
@click.option("--host", default=None, help="Bind address (default: from config)")
@click.option("--port", default=None, type=int, help="Port (default: from config)")
@click.option("--verbose", is_flag=True, help="Enable DEBUG-level logging")
def serve(host: str | None, port: int | None, verbose: bool) -> None:
    """Serve the discussion HTTP API."""
    _setup_logging(verbose)
    config = _load_config_or_exit()

    providers = _build_all_providers(config)
    if not providers:
        console.print("[bold red]Error:[/bold red] No providers available. Check API keys in .env.")
        sys.exit(1)

    orchestrator = DiscussionOrchestrator(
        DiscussionStore(),
        EventSinkRegistry(config.server.subscriber_queue_size),
        providers,
        config.discussion.turn_delay_sec,
    )
    app = create_app(orchestrator, config)
    uvicorn.run(
        app,
        host=host or config.server.host,
        port=port or config.server.port,
        log_config=None,
    )


@main.command()
@click.argument("topic", required=False)
@click.option("--file", "topic_file", type=click.Path(exists=True), help="Read topic from .md file")
@click.option("--primary", "primary_model", default=None, help="Primary model id or provider/model")
@click.option("--critic", "critic_model", default=None, help="Critic model id or provider/model")
@click.option("--max-messages", default=None, type=int, help="Stop after this many generated messages")
@click.option("--output", "output_path", default=None, help="Output directory (default: from config)")
@click.option("--skip-health-check", is_flag=True, default=False,
              help="Skip the API connectivity check at startup")
@click.option("--verbose", is_flag=True, help="Enable DEBUG-level logging")
def run(
    topic: str | None,
    topic_file: str | None,
    primary_model: str | None,
    critic_model: str | None,
    max_messages: int | None,
    output_path: str | None,
    skip_health_check: bool,
    verbose: bool,
) -> None:
    """Run one discussion in the terminal and save the transcript.

    \b
    Examples:
      ai-dialogue run "Should we adopt event sourcing?"
      ai-dialogue run "Tabs or spaces?" --primary gpt-4 --critic claude-sonnet-4-5-20250929
      ai-dialogue run --file topic.md --max-messages 4
    """
    _setup_logging(verbose)
    config = _load_config_or_exit()

    # CLI flags win; frontmatter only fills in when a flag is not set
    meta: dict = {}
    slug_override = None
    if topic_file:
        topic_text, meta = parse_topic_file(Path(topic_file))
        slug_override = Path(topic_file).stem
    elif topic:
        topic_text = topic
    else:
        console.print("[bold red]Error:[/bold red] Provide a TOPIC argument or --file.")
        sys.exit(1)

    all_providers = _build_all_providers(config)
    if not all_providers:
        console.print("[bold red]Error:[/bold red] No providers available. Check API keys in .env.")
        sys.exit(1)

    if not skip_health_check:
        all_providers = _check_and_filter_providers(config, all_providers)

    effective_primary = primary_model or meta.get("primary") or _default_model(config, all_providers)
    effective_critic = critic_model or meta.get("critic") or _default_model(config, all_providers, skip=effective_primary)
    effective_max = max_messages if max_messages is not None else meta.get("max_messages", config.discussion.max_messages)
    effective_output = Path(output_path) if output_path else config.discussion.output_dir

    participants = _build_participants(
        config,
        effective_primary,
        effective_critic,
        meta.get("primary_prompt"),
        meta.get("critic_prompt"),
    )
    missing = sorted({p.provider for p in participants} - all_providers.keys())
    if missing:
        console.print(f"[bold red]Error:[/bold red] Provider(s) not available: {', '.join(missing)}")
        sys.exit(1)

    try:
        asyncio.run(
            _run_discussion(
                config=config,
                providers=all_providers,
                topic=topic_text,
                participants=participants,
                max_messages=effective_max,
                output_dir=effective_output,
                slug_override=slug_override,
            )
        )
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted.[/yellow]")


if __name__ == "__main__":
    main()
