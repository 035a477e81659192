"""
Per-user conversation bookkeeping.

The full transcript arrives with every request, so this store is advisory: it
tracks how many turns a user has had and the last model response id. Losing
it (restart, eviction) is equivalent to the user starting a new conversation.
"""

import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterator, Optional, Protocol, Tuple

from ..utils.logger import logger


@dataclass
class ConversationState:
    user_id: str
    message_count: int = 0
    last_response_id: Optional[str] = None
    last_updated: float = field(default_factory=time.time)

    def to_dict(self) -> Dict:
        return {
            "user_id": self.user_id,
            "message_count": self.message_count,
            "last_response_id": self.last_response_id,
            "last_updated": self.last_updated,
        }


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[ConversationState]:
        ...

    def set(self, key: str, value: ConversationState) -> None:
        ...

    def delete(self, key: str) -> None:
        ...

    def items(self) -> Iterator[Tuple[str, ConversationState]]:
        ...


class InMemoryKeyValueStore:
    def __init__(self):
        self._data: Dict[str, ConversationState] = {}

    def get(self, key: str) -> Optional[ConversationState]:
        return self._data.get(key)

    def set(self, key: str, value: ConversationState) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def items(self) -> Iterator[Tuple[str, ConversationState]]:
        # Snapshot so callers may delete while iterating
        return iter(list(self._data.items()))

    def __len__(self) -> int:
        return len(self._data)


class ConversationStateStore:
    def __init__(
        self,
        backend: Optional[KeyValueStore] = None,
        idle_seconds: int = 3600,
        clock: Callable[[], float] = time.time
    ):
        self.backend = backend if backend is not None else InMemoryKeyValueStore()
        self.idle_seconds = idle_seconds
        self.clock = clock

    def get(self, user_id: str) -> Optional[ConversationState]:
        return self.backend.get(user_id)

    def get_or_create(self, user_id: str) -> ConversationState:
        state = self.backend.get(user_id)
        if state is None:
            state = ConversationState(user_id=user_id, last_updated=self.clock())
            self.backend.set(user_id, state)
            logger.debug(f"New conversation state for user {user_id}")
        return state

    def touch(self, user_id: str, response_id: Optional[str] = None) -> ConversationState:
        state = self.get_or_create(user_id)
        state.message_count += 1
        state.last_updated = self.clock()
        if response_id:
            state.last_response_id = response_id
        self.backend.set(user_id, state)
        return state

    def reset(self, user_id: str) -> None:
        self.backend.delete(user_id)
        logger.info(f"🔄 Conversation reset for user {user_id}")

    def sweep(self, max_age: Optional[float] = None) -> int:
        """Drop conversations idle for longer than ``max_age`` seconds (default: the idle window)."""
        cutoff = self.clock() - (self.idle_seconds if max_age is None else max_age)
        stale = [user_id for user_id, state in self.backend.items() if state.last_updated < cutoff]
        for user_id in stale:
            self.backend.delete(user_id)
        if stale:
            logger.info(f"🧹 Swept {len(stale)} idle conversation(s)")
        return len(stale)

    def reconcile(self, user_id: str, inbound_message_count: int) -> Tuple[ConversationState, bool]:
        """
        Detect a client that started over and return the state for this turn.

        A request carrying at most two messages for a user with more than two
        recorded turns means the client began a fresh session.

        Returns:
            (state, was_reset)
        """
        existing = self.backend.get(user_id)
        if existing is not None and inbound_message_count <= 2 and existing.message_count > 2:
            logger.info(
                f"Client restarted conversation for {user_id} "
                f"({inbound_message_count} inbound vs {existing.message_count} tracked)"
            )
            self.reset(user_id)
            return self.get_or_create(user_id), True
        return self.get_or_create(user_id), False
