"""In-memory Discussion Store: discussions, transcripts, status and turn flags.

Discussions are never evicted; the store lives as long as the process.
All mutations go through a single lock so a stop request and a running
loop iteration cannot lose each other's updates.
"""

import logging
import threading
import uuid
from collections.abc import Sequence

from src.models import CRITIC, HUMAN_SENDER, PRIMARY, RUNNING, STOPPED, Discussion, Message, Participant

logger = logging.getLogger(__name__)


class DiscussionNotFoundError(KeyError):
    """Raised when a discussion id is unknown."""

    def __init__(self, discussion_id: str) -> None:
        self.discussion_id = discussion_id
        super().__init__(discussion_id)

    def __str__(self) -> str:
        return f"Discussion not found: {self.discussion_id}"


class InvalidDiscussionError(ValueError):
    """Raised when a discussion cannot be created from the given input."""


class DiscussionStoppedError(RuntimeError):
    """Raised when a running discussion is required but it has been stopped."""


class DiscussionStore:
    """Authoritative record of discussions, keyed by opaque id."""

    def __init__(self) -> None:
        self._discussions: dict[str, Discussion] = {}
        self._turn_flags: dict[str, bool] = {}
        self._lock = threading.Lock()

    def create(self, topic: str, participants: Sequence[Participant]) -> str:
        """Register a new running discussion and return its id.

        Raises:
            InvalidDiscussionError: Unless there are exactly two participants,
                one primary and one critic, with distinct ids other than the
                human sender id.
        """
        if len(participants) != 2:
            raise InvalidDiscussionError(
                f"A discussion needs exactly 2 participants, got {len(participants)}"
            )
        if sorted(p.role for p in participants) != sorted((PRIMARY, CRITIC)):
            raise InvalidDiscussionError("Participants must be exactly one primary and one critic")
        if participants[0].id == participants[1].id:
            raise InvalidDiscussionError("Participant ids must be distinct")
        if any(p.id == HUMAN_SENDER for p in participants):
            raise InvalidDiscussionError(f"Participant id '{HUMAN_SENDER}' is reserved for human messages")

        discussion_id = str(uuid.uuid4())
        discussion = Discussion(
            id=discussion_id,
            topic=topic,
            participants=(participants[0], participants[1]),
        )
        with self._lock:
            self._discussions[discussion_id] = discussion
            self._turn_flags[discussion_id] = True
        logger.info("Discussion %s created: %r", discussion_id, topic[:80])
        return discussion_id

    def get(self, discussion_id: str) -> Discussion:
        with self._lock:
            discussion = self._discussions.get(discussion_id)
        if discussion is None:
            raise DiscussionNotFoundError(discussion_id)
        return discussion

    def find(self, discussion_id: str) -> Discussion | None:
        with self._lock:
            return self._discussions.get(discussion_id)

    def messages(self, discussion_id: str) -> tuple[Message, ...]:
        """Snapshot of the transcript. Any later snapshot extends this one."""
        with self._lock:
            discussion = self._discussions.get(discussion_id)
            if discussion is None:
                raise DiscussionNotFoundError(discussion_id)
            return tuple(discussion.messages)

    def append_message(self, discussion_id: str, message: Message) -> None:
        with self._lock:
            discussion = self._discussions.get(discussion_id)
            if discussion is None:
                raise DiscussionNotFoundError(discussion_id)
            discussion.messages.append(message)

    def set_status(self, discussion_id: str, status: str) -> None:
        if status not in (RUNNING, STOPPED):
            raise ValueError(f"Unknown status: {status}")
        with self._lock:
            self._require(discussion_id).status = status

    def set_turn_flag(self, discussion_id: str, value: bool) -> None:
        with self._lock:
            self._require(discussion_id)
            self._turn_flags[discussion_id] = value

    def get_turn_flag(self, discussion_id: str) -> bool:
        with self._lock:
            self._require(discussion_id)
            return self._turn_flags[discussion_id]

    def stop(self, discussion_id: str) -> bool:
        """Flip status and turn flag together. Returns False if already stopped."""
        with self._lock:
            discussion = self._require(discussion_id)
            changed = discussion.status != STOPPED or self._turn_flags[discussion_id]
            discussion.status = STOPPED
            self._turn_flags[discussion_id] = False
        return changed

    def ensure_running(self, discussion_id: str) -> None:
        """Raises DiscussionStoppedError if the discussion has been stopped."""
        with self._lock:
            if self._require(discussion_id).status == STOPPED:
                raise DiscussionStoppedError(f"Discussion has been stopped: {discussion_id}")

    def append_if_running(self, discussion_id: str, message: Message) -> None:
        """Append atomically with the running check, for human interventions.

        Raises:
            DiscussionStoppedError: If the discussion has been stopped.
        """
        with self._lock:
            discussion = self._require(discussion_id)
            if discussion.status == STOPPED:
                raise DiscussionStoppedError(f"Discussion has been stopped: {discussion_id}")
            discussion.messages.append(message)

    def _require(self, discussion_id: str) -> Discussion:
        discussion = self._discussions.get(discussion_id)
        if discussion is None:
            raise DiscussionNotFoundError(discussion_id)
        return discussion

    def __len__(self) -> int:
        with self._lock:
            return len(self._discussions)
