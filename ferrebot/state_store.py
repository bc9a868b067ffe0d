"""
Conversation State Store

Durable per-user {current_state, context, last_interaction} record.

Semantics:
- get() of an unknown user returns state "initial" with an empty context
- set() is an upsert; concurrent writers for the same user resolve by
  last write wins
- merge_context() is read-modify-write with a shallow merge
- clear() resets to "initial" with an empty context and is idempotent
- expire_inactive() clears every record idle for longer than the timeout

Backends:
- memory: dict guarded by a lock (single process, default)
- mongodb: one document per user, upserted on user_id
"""

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from config.settings import get_settings, StateStoreConfig
from ferrebot.states import DialogueState

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class StoredState:
    """
    A user's conversation record.

    Attributes:
        current_state: Stored state name
        context: Free-form mapping (see DialogueContext for its typed view)
        last_interaction: Time of the last write
    """
    current_state: str = DialogueState.INITIAL.value
    context: Dict[str, Any] = field(default_factory=dict)
    last_interaction: Optional[datetime] = None

    @property
    def state(self) -> DialogueState:
        return DialogueState.parse(self.current_state)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "current_state": self.current_state,
            "context": dict(self.context),
            "last_interaction": self.last_interaction.isoformat() if self.last_interaction else None,
        }


class BaseStateBackend(ABC):
    """Storage primitive behind ConversationStateStore."""

    @abstractmethod
    def read(self, user_id: str) -> Optional[StoredState]:
        pass

    @abstractmethod
    def write(self, user_id: str, record: StoredState) -> None:
        pass

    @abstractmethod
    def reset_inactive(self, cutoff: datetime, now: datetime) -> int:
        """Reset every record last touched before cutoff; return how many."""
        pass

    @abstractmethod
    def count(self) -> int:
        pass


class InMemoryStateBackend(BaseStateBackend):
    """
    Thread-safe in-process backend.
    """

    def __init__(self):
        self._records: Dict[str, StoredState] = {}
        self._lock = threading.Lock()

    def read(self, user_id: str) -> Optional[StoredState]:
        with self._lock:
            record = self._records.get(user_id)
            if record is None:
                return None
            return StoredState(
                current_state=record.current_state,
                context=dict(record.context),
                last_interaction=record.last_interaction,
            )

    def write(self, user_id: str, record: StoredState) -> None:
        with self._lock:
            self._records[user_id] = StoredState(
                current_state=record.current_state,
                context=dict(record.context),
                last_interaction=record.last_interaction,
            )

    def reset_inactive(self, cutoff: datetime, now: datetime) -> int:
        reset = 0
        with self._lock:
            for user_id, record in self._records.items():
                if record.last_interaction is None or record.last_interaction >= cutoff:
                    continue
                if record.current_state == DialogueState.INITIAL.value and not record.context:
                    continue
                self._records[user_id] = StoredState(last_interaction=now)
                reset += 1
        return reset

    def count(self) -> int:
        with self._lock:
            return len(self._records)


class MongoStateBackend(BaseStateBackend):
    """
    MongoDB backend, one document per user:
        {user_id, current_state, context, last_interaction}
    """

    def __init__(
        self,
        uri: Optional[str] = None,
        database: Optional[str] = None,
        collection: Optional[str] = None,
    ):
        """
        Args:
            uri: MongoDB connection URI (or from env)
            database: Database name
            collection: Collection name
        """
        config = get_settings().state_store

        self.uri = uri or config.mongodb_uri
        self.database_name = database or config.mongodb_database
        self.collection_name = collection or config.mongodb_collection

        self._client = None
        self._collection = None

        logger.info(
            f"MongoStateBackend initialized: db={self.database_name}, "
            f"collection={self.collection_name}"
        )

    def _connect(self):
        """Establish connection to MongoDB."""
        if self._collection is not None:
            return

        if not self.uri:
            raise ValueError(
                "MongoDB URI not configured. Set MONGODB_URI environment variable."
            )

        from pymongo import ASCENDING, MongoClient

        self._client = MongoClient(self.uri, serverSelectionTimeoutMS=5000, tz_aware=True)
        self._collection = self._client[self.database_name][self.collection_name]
        self._collection.create_index([("user_id", ASCENDING)], unique=True)
        self._collection.create_index([("last_interaction", ASCENDING)])

        logger.info("Connected to MongoDB state store")

    def read(self, user_id: str) -> Optional[StoredState]:
        self._connect()
        doc = self._collection.find_one({"user_id": user_id})
        if doc is None:
            return None
        return StoredState(
            current_state=doc.get("current_state", DialogueState.INITIAL.value),
            context=doc.get("context") or {},
            last_interaction=doc.get("last_interaction"),
        )

    def write(self, user_id: str, record: StoredState) -> None:
        self._connect()
        self._collection.update_one(
            {"user_id": user_id},
            {
                "$set": {
                    "current_state": record.current_state,
                    "context": record.context,
                    "last_interaction": record.last_interaction,
                }
            },
            upsert=True,
        )

    def reset_inactive(self, cutoff: datetime, now: datetime) -> int:
        self._connect()
        result = self._collection.update_many(
            {
                "last_interaction": {"$lt": cutoff},
                "$or": [
                    {"current_state": {"$ne": DialogueState.INITIAL.value}},
                    {"context": {"$ne": {}}},
                ],
            },
            {
                "$set": {
                    "current_state": DialogueState.INITIAL.value,
                    "context": {},
                    "last_interaction": now,
                }
            },
        )
        return result.modified_count

    def count(self) -> int:
        self._connect()
        return self._collection.count_documents({})


class ConversationStateStore:
    """
    Per-user conversation state with last-write-wins semantics.

    Example:
        store = ConversationStateStore()
        record = store.get("user_123")
        store.set("user_123", "awaiting_products", {"action": "quote"})
        store.merge_context("user_123", {"selectedProducts": [{"id": 1, "quantity": 2}]})
        store.clear("user_123")
    """

    def __init__(
        self,
        backend: Optional[BaseStateBackend] = None,
        config: Optional[StateStoreConfig] = None,
    ):
        """
        Args:
            backend: Explicit backend (default chosen from config.provider)
            config: Optional StateStoreConfig
        """
        self.config = config or get_settings().state_store

        if backend is not None:
            self._backend = backend
        elif self.config.provider == "memory":
            self._backend = InMemoryStateBackend()
        elif self.config.provider == "mongodb":
            self._backend = MongoStateBackend(
                uri=self.config.mongodb_uri,
                database=self.config.mongodb_database,
                collection=self.config.mongodb_collection,
            )
        else:
            raise ValueError(f"Unknown state store provider: {self.config.provider}")

        logger.info(f"ConversationStateStore initialized with {type(self._backend).__name__}")

    def get(self, user_id: str) -> StoredState:
        """Return the user's record, or a fresh initial one."""
        record = self._backend.read(user_id)
        if record is None:
            return StoredState()
        return record

    def set(self, user_id: str, state, context: Optional[Dict[str, Any]] = None) -> StoredState:
        """
        Replace the user's state and context.

        Args:
            user_id: Channel user id
            state: DialogueState or its string value
            context: New context mapping (replaces the old one entirely)
        """
        state_value = state.value if isinstance(state, DialogueState) else str(state)
        record = StoredState(
            current_state=state_value,
            context=dict(context or {}),
            last_interaction=_utcnow(),
        )
        self._backend.write(user_id, record)
        logger.debug(f"State for {user_id} -> {state_value}")
        return record

    def merge_context(self, user_id: str, partial: Dict[str, Any]) -> StoredState:
        """Shallow-merge keys into the context, keeping the current state."""
        current = self.get(user_id)
        merged = dict(current.context)
        merged.update(partial)
        return self.set(user_id, current.current_state, merged)

    def clear(self, user_id: str) -> StoredState:
        """Reset to initial with an empty context."""
        return self.set(user_id, DialogueState.INITIAL, {})

    def expire_inactive(self, timeout_minutes: Optional[int] = None) -> int:
        """
        Clear every conversation idle for longer than timeout_minutes.

        Returns:
            Number of conversations reset
        """
        minutes = timeout_minutes if timeout_minutes is not None else self.config.session_timeout_minutes
        now = _utcnow()
        cleared = self._backend.reset_inactive(now - timedelta(minutes=minutes), now)

        if cleared:
            logger.info(f"Expired {cleared} inactive conversations")
        return cleared

    def count(self) -> int:
        return self._backend.count()

    def get_stats(self) -> Dict[str, Any]:
        return {
            "backend": type(self._backend).__name__,
            "conversations": self.count(),
        }
