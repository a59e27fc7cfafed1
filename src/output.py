"""Rich console rendering of stream events and markdown transcript export."""

import logging
import re
from datetime import datetime
from pathlib import Path

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.rule import Rule
from rich.text import Text

from src.models import HUMAN_SENDER, Discussion, StreamEvent

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)


def _slug(text: str, max_len: int = 40) -> str:
    """Convert text to a filename-safe slug."""
    slug = re.sub(r"[^\w\s-]", "", text.lower())
    slug = re.sub(r"[\s_-]+", "-", slug).strip("-")
    return slug[:max_len]


def _sender_label(discussion: Discussion, sender: str) -> str:
    if sender == HUMAN_SENDER:
        return "Human"
    for p in discussion.participants:
        if p.id == sender:
            return f"{p.display_name} ({p.role})"
    return sender


class EventPrinter:
    """Prints a discussion's events as they stream in."""

    def __init__(self, discussion: Discussion, out: Console = console) -> None:
        self._discussion = discussion
        self._console = out
        self._current_message: str | None = None

    def __call__(self, event: StreamEvent) -> None:
        if event.type == "token":
            if event.message_id != self._current_message:
                self._current_message = event.message_id
                self._console.print(Rule(f"[bold cyan]{escape(_sender_label(self._discussion, event.participant_id or ''))}[/bold cyan]"))
            self._console.print(Text(event.token or ""), end="")
        elif event.type == "complete":
            self._current_message = None
            self._console.print()
        elif event.type == "message_start" and event.message is not None:
            self._current_message = None
            self._console.print()
            self._console.print(Panel(Text(event.message.content), title="[bold]Human[/bold]", border_style="yellow"))
        elif event.type == "error":
            self._current_message = None
            label = _sender_label(self._discussion, event.participant_id or "")
            self._console.print(f"\n[bold red]Error from {escape(label)}:[/bold red] {escape(event.error or '')}")


def save_transcript(discussion: Discussion, output_dir: Path, slug_override: str | None = None) -> Path:
    """Save the discussion transcript as a markdown file.

    Args:
        discussion: The discussion to export.
        output_dir: Directory to save the file in.
        slug_override: If provided, use this as the filename stem instead of
            deriving one from the topic.

    Returns:
        Path to the saved file.
    """
    output_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    slug = slug_override if slug_override is not None else _slug(discussion.topic)
    filepath = output_dir / f"{timestamp}_{slug}.md"

    lines: list[str] = [
        f"# Discussion: {discussion.topic[:80]}",
        "",
        f"**Date:** {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
    ]
    for p in discussion.participants:
        lines.append(f"**{p.role.title()}:** {p.display_name} ({p.provider}/{p.model_id})")
    lines += [
        f"**Messages:** {len(discussion.messages)}",
        f"**Status:** {discussion.status}",
        "",
        "---",
        "",
    ]

    for msg in discussion.messages:
        lines.append(f"## {_sender_label(discussion, msg.sender)}")
        lines.append("")
        lines.append(msg.content)
        lines.append("")
        lines.append(f"*{msg.timestamp.strftime('%H:%M:%S')}*")
        lines.append("")

    filepath.write_text("\n".join(lines), encoding="utf-8")
    logger.info("Transcript saved to: %s", filepath)
    return filepath
