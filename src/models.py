"""Pure dataclasses for the discussion engine. No logic beyond JSON shaping, no deps."""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

HUMAN_SENDER = "human"

PRIMARY = "primary"
CRITIC = "critic"
ROLES = (PRIMARY, CRITIC)

RUNNING = "running"
STOPPED = "stopped"


def _now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class Participant:
    id: str
    provider: str          # "openai", "anthropic", "bedrock", ...
    model_id: str
    display_name: str
    system_prompt: str
    role: str              # "primary" or "critic"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "provider": self.provider,
            "modelId": self.model_id,
            "displayName": self.display_name,
            "systemPrompt": self.system_prompt,
            "role": self.role,
        }


@dataclass
class Message:
    id: str
    sender: str            # "human" or a participant id
    content: str
    timestamp: datetime = field(default_factory=_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "sender": self.sender,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class Discussion:
    id: str
    topic: str
    participants: tuple[Participant, Participant]
    messages: list[Message] = field(default_factory=list)
    status: str = RUNNING

    def participant(self, role: str) -> Participant:
        return next(p for p in self.participants if p.role == role)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "topic": self.topic,
            "participants": [p.to_dict() for p in self.participants],
            "messages": [m.to_dict() for m in self.messages],
            "status": self.status,
        }


@dataclass(frozen=True)
class StreamEvent:
    type: str              # "token", "complete", "error", "message_start"
    participant_id: str | None = None
    message_id: str | None = None
    token: str | None = None
    error: str | None = None
    message: Message | None = None

    @classmethod
    def token_event(cls, participant_id: str, message_id: str, token: str) -> "StreamEvent":
        return cls("token", participant_id=participant_id, message_id=message_id, token=token)

    @classmethod
    def complete(cls, participant_id: str, message_id: str) -> "StreamEvent":
        return cls("complete", participant_id=participant_id, message_id=message_id)

    @classmethod
    def failure(cls, participant_id: str, error: str) -> "StreamEvent":
        return cls("error", participant_id=participant_id, error=error)

    @classmethod
    def message_start(cls, message: Message) -> "StreamEvent":
        return cls("message_start", message=message)

    def to_dict(self) -> dict[str, Any]:
        """Wire shape: only the fields set for this variant, camelCase keys."""
        data: dict[str, Any] = {"type": self.type}
        if self.participant_id is not None:
            data["participantId"] = self.participant_id
        if self.message_id is not None:
            data["messageId"] = self.message_id
        if self.token is not None:
            data["token"] = self.token
        if self.error is not None:
            data["error"] = self.error
        if self.message is not None:
            data["message"] = self.message.to_dict()
        return data
