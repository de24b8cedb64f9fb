import datetime as dt
from enum import StrEnum
from typing import Iterable, List
from pydantic import BaseModel, ConfigDict, Field
from src.models.base import utc_now


class MessageRole(StrEnum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class ConversationTurn(BaseModel):
    """
    The Atomic Interaction Model.
    Immutable once appended; the caller's message log owns the sequence.
    """
    model_config = ConfigDict(frozen=True)

    role: MessageRole
    content: str
    timestamp: dt.datetime = Field(
        default_factory=utc_now,
        description="The exact moment the turn was sent or received."
    )


def user_turns(messages: Iterable[ConversationTurn]) -> List[ConversationTurn]:
    """Filters a transcript down to the user's turns, preserving order."""
    return [m for m in messages if m.role == MessageRole.USER]


def format_transcript(messages: Iterable[ConversationTurn], max_chars: int | None = None) -> str:
    """Renders turns as 'ROLE: content' lines for prompt inclusion."""
    lines = []
    for msg in messages:
        content = msg.content if max_chars is None else msg.content[:max_chars]
        lines.append(f"{msg.role.upper()}: {content}")
    return "\n".join(lines)
