"""
Conversation Memory Module

Per-user message log. Inbound messages are stored with the intent and
confidence they were classified with; outbound replies are stored as
assistant turns. The most recent turns feed the intent classifier.

Usage:
    manager = ConversationManager(default_max_turns=20)
    memory = manager.get_memory("user_123")
    memory.add_user_message("hola", intent="greeting", confidence=0.8)
    memory.add_assistant_message("¡Hola! ¿En qué puedo ayudarte?")

    context = memory.get_messages_for_llm(limit=5)
"""

import logging
import threading
from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Message:
    """
    Represents a single message in the conversation.

    Attributes:
        role: "user" or "assistant"
        content: The message text
        intent: Classified intent (user messages only)
        confidence: Classifier confidence (user messages only)
        timestamp: When the message was stored
        metadata: Additional info
    """
    role: str
    content: str
    intent: Optional[str] = None
    confidence: Optional[float] = None
    timestamp: datetime = field(default_factory=_utcnow)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "role": self.role,
            "content": self.content,
            "intent": self.intent,
            "confidence": self.confidence,
            "timestamp": self.timestamp.isoformat(),
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        """Create from dictionary."""
        timestamp = data.get("timestamp")
        return cls(
            role=data["role"],
            content=data["content"],
            intent=data.get("intent"),
            confidence=data.get("confidence"),
            timestamp=datetime.fromisoformat(timestamp) if timestamp else _utcnow(),
            metadata=data.get("metadata", {}),
        )

    def __str__(self) -> str:
        return f"{self.role}: {self.content}"


class ConversationMemory:
    """
    Sliding-window message history for one user.

    Only the last ``max_turns`` user/assistant pairs are kept.
    """

    def __init__(self, conversation_id: str, max_turns: int = 20):
        """
        Args:
            conversation_id: User id the history belongs to
            max_turns: Maximum number of conversation turns to keep
        """
        self.conversation_id = conversation_id
        self.max_turns = max_turns

        self._messages: deque = deque(maxlen=max_turns * 2)
        self._lock = threading.Lock()

    def add_user_message(
        self,
        content: str,
        intent: Optional[str] = None,
        confidence: Optional[float] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Message:
        """Store an inbound message with its classification."""
        message = Message(
            role="user",
            content=content,
            intent=intent,
            confidence=confidence,
            metadata=metadata or {},
        )
        with self._lock:
            self._messages.append(message)
        return message

    def add_assistant_message(
        self,
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Message:
        """Store an outbound reply."""
        message = Message(role="assistant", content=content, metadata=metadata or {})
        with self._lock:
            self._messages.append(message)
        return message

    def get_messages(self, limit: Optional[int] = None) -> List[Message]:
        """Messages oldest first, optionally only the last ``limit``."""
        with self._lock:
            messages = list(self._messages)
        if limit is not None:
            messages = messages[-limit:] if limit > 0 else []
        return messages

    def get_messages_for_llm(self, limit: Optional[int] = None) -> List[Dict[str, str]]:
        """
        Messages in chat API format, oldest first:
        [{"role": "user", "content": "..."}, {"role": "assistant", "content": "..."}]
        """
        return [
            {"role": m.role, "content": m.content}
            for m in self.get_messages(limit)
        ]

    def get_last_user_message(self) -> Optional[str]:
        """Get the most recent user message."""
        with self._lock:
            for msg in reversed(self._messages):
                if msg.role == "user":
                    return msg.content
            return None

    @property
    def last_activity(self) -> Optional[datetime]:
        with self._lock:
            return self._messages[-1].timestamp if self._messages else None

    def clear(self) -> None:
        """Clear all messages from memory."""
        with self._lock:
            self._messages.clear()

    def __len__(self) -> int:
        return len(self._messages)


class ConversationManager:
    """
    Message histories for every user.

    Example:
        manager = ConversationManager()
        memory = manager.get_memory("user_123")
        memory.add_user_message("Hola")

        manager.cleanup_old_conversations(max_age_hours=24 * 30)
    """

    def __init__(self, default_max_turns: int = 20):
        """
        Args:
            default_max_turns: Default max turns for new conversations
        """
        self._memories: Dict[str, ConversationMemory] = {}
        self._lock = threading.Lock()
        self.default_max_turns = default_max_turns

    def get_memory(self, conversation_id: str) -> ConversationMemory:
        """Get or create the history for a user."""
        with self._lock:
            if conversation_id not in self._memories:
                self._memories[conversation_id] = ConversationMemory(
                    conversation_id=conversation_id,
                    max_turns=self.default_max_turns,
                )
            return self._memories[conversation_id]

    def delete_memory(self, conversation_id: str) -> bool:
        """
        Delete a user's history.

        Returns:
            True if deleted, False if not found
        """
        with self._lock:
            return self._memories.pop(conversation_id, None) is not None

    def cleanup_old_conversations(self, max_age_hours: float = 24 * 30) -> int:
        """
        Remove histories with no activity in the last max_age_hours.

        Returns:
            Number of conversations removed
        """
        cutoff = _utcnow() - timedelta(hours=max_age_hours)

        with self._lock:
            stale = [
                conv_id
                for conv_id, memory in self._memories.items()
                if memory.last_activity is None or memory.last_activity < cutoff
            ]
            for conv_id in stale:
                del self._memories[conv_id]

        if stale:
            logger.info(f"Cleaned up {len(stale)} old conversations")
        return len(stale)

    def intent_stats(self) -> Dict[str, int]:
        """Count classified user messages per intent across all users."""
        with self._lock:
            memories = list(self._memories.values())

        counts: Counter = Counter()
        for memory in memories:
            counts.update(
                m.intent for m in memory.get_messages()
                if m.role == "user" and m.intent
            )
        return dict(counts.most_common())

    def __len__(self) -> int:
        return len(self._memories)
