"""Topic files: markdown body is the topic, YAML frontmatter holds run options."""

from pathlib import Path

import frontmatter

# Frontmatter keys understood by `run`
KNOWN_KEYS = ("primary", "critic", "max_messages", "primary_prompt", "critic_prompt")


def parse_topic_file(file_path: Path) -> tuple[str, dict]:
    """Parse a markdown topic file with optional YAML frontmatter.

    Returns:
        (topic, options) where topic is the stripped body text and options
        holds only the known frontmatter keys. If no frontmatter, options is {}.

    Raises:
        ValueError: If the body is empty.
    """
    post = frontmatter.load(str(file_path))
    topic = post.content.strip()
    if not topic:
        raise ValueError(f"Topic file has no body: {file_path}")
    options = {k: v for k, v in post.metadata.items() if k in KNOWN_KEYS}
    if "max_messages" in options:
        options["max_messages"] = int(options["max_messages"])
    return topic, options
