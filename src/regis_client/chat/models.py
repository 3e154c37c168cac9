"""Data models for the chat client."""

import time
import uuid
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

# Search results are passed through as the backend returns them
SearchResult = Dict[str, Any]


class Role(str, Enum):
    """Author of a conversation message."""
    USER = "user"
    ASSISTANT = "assistant"

    def __str__(self) -> str:
        """Return the string value of the enum."""
        return self.value


def generate_message_id() -> str:
    """Time-ordered id, unique within a session."""
    return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:7]}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Message:
    """
    A single conversation message.

    Messages are immutable so that undo/redo snapshots can share them;
    edits produce a new instance via ``with_content``.
    """
    role: Role
    content: str
    id: str = field(default_factory=generate_message_id)
    sources: Optional[List[SearchResult]] = None
    model_used: Optional[str] = None
    timestamp: datetime = field(default_factory=_utcnow)
    pending: bool = False

    def with_content(self, content: str, **changes: Any) -> "Message":
        return replace(self, content=content, **changes)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["role"] = self.role.value
        data["timestamp"] = self.timestamp.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        timestamp = data.get("timestamp")
        return cls(
            id=data["id"],
            role=Role(data["role"]),
            content=data.get("content", ""),
            sources=data.get("sources"),
            model_used=data.get("model_used"),
            timestamp=datetime.fromisoformat(timestamp) if timestamp else _utcnow(),
            pending=data.get("pending", False),
        )


# Whole-conversation snapshot used as an undo/redo stack element
ConversationSnapshot = Tuple[Message, ...]


@dataclass
class ExecuteResult:
    """Final result of a buffered or streamed prompt execution."""
    text: str
    sources: List[SearchResult] = field(default_factory=list)
    model_used: str = "unknown"
    grounding_performed: bool = False


@dataclass
class StreamUpdate:
    """
    Represents a single update during the streaming response.

    Attributes:
        content: The text content chunk
        result: Final result, set on the last update only
    """
    content: str = ""
    result: Optional[ExecuteResult] = None


@dataclass
class QueuedRequest:
    """A prompt deferred while the client was offline."""
    prompt: str
    model: Optional[str] = None
    id: str = field(default_factory=lambda: f"q-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}")
    enqueued_at: float = field(default_factory=time.time)
    retry_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QueuedRequest":
        return cls(
            id=data["id"],
            prompt=data["prompt"],
            model=data.get("model"),
            enqueued_at=float(data.get("enqueued_at", time.time())),
            retry_count=int(data.get("retry_count", 0)),
        )
