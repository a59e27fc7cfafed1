"""Discussion orchestration: turn scheduling, streaming, interventions, stop.

One asyncio task per discussion drives every turn, so a discussion never
has two adapter calls in flight. Stops and interventions are observed at
the task's suspension points: the pacing wait between turns and each
fragment pulled from an adapter.
"""

import asyncio
import logging
import uuid
from collections import deque
from collections.abc import Mapping, Sequence

from src.models import CRITIC, HUMAN_SENDER, PRIMARY, Discussion, Message, Participant, StreamEvent
from src.providers.base import AIProvider
from src.sinks import EventSinkRegistry
from src.store import DiscussionStore

logger = logging.getLogger(__name__)

# Pacing window between turns, in which a human may intervene or stop
DEFAULT_TURN_DELAY_SEC = 2.0

# Turn outcomes
COMPLETED = "completed"
STOPPED = "stopped"
INTERRUPTED = "interrupted"
FAILED = "failed"


class OrchestrationError(RuntimeError):
    """Raised when a discussion's internal state makes scheduling impossible."""


def next_speaker(discussion: Discussion, messages: Sequence[Message]) -> Participant:
    """The participant who did not author the last message.

    A human message always hands the turn to the primary.

    Raises:
        OrchestrationError: If the transcript is empty or its last sender is
            neither the human nor a participant.
    """
    if not messages:
        raise OrchestrationError(f"Cannot pick a speaker for {discussion.id}: transcript is empty")
    primary = discussion.participant(PRIMARY)
    critic = discussion.participant(CRITIC)
    last_sender = messages[-1].sender
    if last_sender == primary.id:
        return critic
    if last_sender in (critic.id, HUMAN_SENDER):
        return primary
    raise OrchestrationError(f"Unknown sender {last_sender!r} in discussion {discussion.id}")


class _DiscussionRun:
    """Loop-task bookkeeping for one discussion."""

    def __init__(self) -> None:
        self.task: asyncio.Task | None = None
        self.interventions: deque[str] = deque()
        self.wakeup = asyncio.Event()
        # Role of the turn currently streaming, if any
        self.speaking: str | None = None
        # Human messages held back until the primary's in-flight turn ends
        self.held: list[Message] = []


class DiscussionOrchestrator:
    """Runs discussions between two participants against their adapters."""

    def __init__(
        self,
        store: DiscussionStore,
        sinks: EventSinkRegistry,
        adapters: Mapping[str, AIProvider],
        turn_delay_sec: float = DEFAULT_TURN_DELAY_SEC,
    ) -> None:
        self._store = store
        self._sinks = sinks
        self._adapters = adapters
        self._turn_delay_sec = turn_delay_sec
        self._runs: dict[str, _DiscussionRun] = {}

    @property
    def store(self) -> DiscussionStore:
        return self._store

    @property
    def sinks(self) -> EventSinkRegistry:
        return self._sinks

    def providers(self) -> list[str]:
        return sorted(self._adapters)

    def start_discussion(self, topic: str, participants: Sequence[Participant]) -> str:
        """Create a discussion and run its loop in the background.

        Raises:
            InvalidDiscussionError: If the participants are not one primary
                and one critic.
        """
        discussion_id = self._store.create(topic, participants)
        self.launch(discussion_id)
        return discussion_id

    def launch(self, discussion_id: str) -> asyncio.Task:
        run = self._runs.setdefault(discussion_id, _DiscussionRun())
        run.task = asyncio.create_task(self.run(discussion_id), name=f"discussion-{discussion_id}")
        run.task.add_done_callback(self._on_task_done)
        return run.task

    def intervene(self, discussion_id: str, content: str) -> str:
        """Append a human message and hand the next turn to the primary.

        A critic turn streaming at this moment is abandoned at its next
        fragment. A primary turn in flight is allowed to finish; the human
        message is appended right after it, then the primary answers.

        Raises:
            DiscussionNotFoundError: Unknown discussion id.
            DiscussionStoppedError: The discussion has been stopped.
        """
        message = Message(id=str(uuid.uuid4()), sender=HUMAN_SENDER, content=content)
        run = self._runs.setdefault(discussion_id, _DiscussionRun())
        if run.speaking == PRIMARY:
            self._store.ensure_running(discussion_id)
            run.held.append(message)
        else:
            self._store.append_if_running(discussion_id, message)
            self._sinks.publish(discussion_id, StreamEvent.message_start(message))
        logger.info("[%s] Human intervention: %r", discussion_id, content[:80])

        run.interventions.append(content)
        run.wakeup.set()
        if run.task is None or run.task.done():
            self.launch(discussion_id)
        return message.id

    def stop(self, discussion_id: str) -> None:
        """Stop scheduling turns. Idempotent.

        Raises:
            DiscussionNotFoundError: Unknown discussion id.
        """
        if self._store.stop(discussion_id):
            logger.info("[%s] Discussion stopped", discussion_id)
        run = self._runs.get(discussion_id)
        if run is not None:
            run.wakeup.set()

    def is_running(self, discussion_id: str) -> bool:
        run = self._runs.get(discussion_id)
        return run is not None and run.task is not None and not run.task.done()

    async def wait(self, discussion_id: str) -> None:
        """Block until the discussion's loop task has finished."""
        run = self._runs.get(discussion_id)
        if run is not None and run.task is not None:
            await asyncio.gather(run.task, return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel every loop task still running."""
        tasks = [r.task for r in self._runs.values() if r.task is not None and not r.task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("Cancelled %d discussion loop(s)", len(tasks))

    async def run(self, discussion_id: str) -> None:
        """The turn loop: opening turn, then alternation until stopped.

        Raises:
            OrchestrationError: On inconsistent discussion state. The
                discussion is stopped before the error propagates.
        """
        discussion = self._store.get(discussion_id)
        run = self._runs.setdefault(discussion_id, _DiscussionRun())
        if run.task is None:
            run.task = asyncio.current_task()
        primary = discussion.participant(PRIMARY)

        if not self._store.get_turn_flag(discussion_id):
            logger.info("[%s] Stopped before the first turn", discussion_id)
            self._store.stop(discussion_id)
            return

        try:
            speaker, prompt = primary, discussion.topic
            while True:
                if run.interventions:
                    speaker, prompt = primary, run.interventions[-1]
                    run.interventions.clear()

                run.speaking = speaker.role
                try:
                    outcome = await self._execute_turn(discussion, speaker, prompt, run)
                finally:
                    run.speaking = None
                    self._release_held(discussion_id, run)
                if not self._store.get_turn_flag(discussion_id):
                    break
                if outcome == INTERRUPTED or run.interventions:
                    continue

                await self._pace(run)
                if not self._store.get_turn_flag(discussion_id):
                    break
                if run.interventions:
                    continue

                messages = self._store.messages(discussion_id)
                speaker = next_speaker(discussion, messages)
                prompt = messages[-1].content
        finally:
            self._store.stop(discussion_id)

        logger.info(
            "[%s] Loop finished after %d messages",
            discussion_id,
            len(self._store.messages(discussion_id)),
        )

    def _release_held(self, discussion_id: str, run: _DiscussionRun) -> None:
        """Append human messages that arrived during a primary turn."""
        held, run.held = run.held, []
        for message in held:
            self._store.append_message(discussion_id, message)
            self._sinks.publish(discussion_id, StreamEvent.message_start(message))

    async def _pace(self, run: _DiscussionRun) -> None:
        """Wait out the pacing window; interventions and stops cut it short."""
        run.wakeup.clear()
        if run.interventions:
            return
        try:
            await asyncio.wait_for(run.wakeup.wait(), timeout=self._turn_delay_sec)
        except TimeoutError:
            pass

    async def _execute_turn(
        self,
        discussion: Discussion,
        speaker: Participant,
        prompt: str,
        run: _DiscussionRun,
    ) -> str:
        """Stream one participant's response into the transcript.

        Partial content is discarded if the turn is stopped, interrupted or
        fails; only a fully streamed response is appended. Only critic turns
        are interrupted by interventions.
        """
        discussion_id = discussion.id
        message_id = str(uuid.uuid4())
        fragments: list[str] = []
        preemptible = speaker.role == CRITIC

        adapter = self._adapters.get(speaker.provider)
        if adapter is None:
            return self._fail_turn(discussion_id, speaker, f"No adapter configured for provider '{speaker.provider}'")

        logger.info("[%s] Generating response from %s...", discussion_id, speaker.display_name)
        stream = adapter.stream_response(
            speaker.model_id,
            speaker.system_prompt,
            self._store.messages(discussion_id),
            prompt,
        )
        try:
            async for fragment in stream:
                if not self._store.get_turn_flag(discussion_id):
                    logger.info("[%s] Stopped during streaming, dropping %s's turn", discussion_id, speaker.display_name)
                    return STOPPED
                if preemptible and run.interventions:
                    logger.info("[%s] Intervention received, dropping %s's turn", discussion_id, speaker.display_name)
                    return INTERRUPTED
                fragments.append(fragment)
                self._sinks.publish(discussion_id, StreamEvent.token_event(speaker.id, message_id, fragment))
        except Exception as exc:
            logger.error("[%s] Error generating response from %s: %s", discussion_id, speaker.display_name, exc)
            return self._fail_turn(discussion_id, speaker, str(exc) or "Unknown error")
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

        if not self._store.get_turn_flag(discussion_id):
            logger.info("[%s] Stopped at end of stream, dropping %s's turn", discussion_id, speaker.display_name)
            return STOPPED
        if preemptible and run.interventions:
            return INTERRUPTED

        content = "".join(fragments)
        self._store.append_message(discussion_id, Message(id=message_id, sender=speaker.id, content=content))
        self._sinks.publish(discussion_id, StreamEvent.complete(speaker.id, message_id))
        logger.info("[%s] %s completed response (%d chars)", discussion_id, speaker.display_name, len(content))
        return COMPLETED

    def _fail_turn(self, discussion_id: str, speaker: Participant, error: str) -> str:
        self._sinks.publish(discussion_id, StreamEvent.failure(speaker.id, error))
        self._store.stop(discussion_id)
        return FAILED

    def _on_task_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Discussion loop %s aborted", task.get_name(), exc_info=exc)
