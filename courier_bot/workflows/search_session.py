from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Hashable, Sequence, TypeVar

from ..config import SESSION_SWEEP_INTERVAL_SECONDS, SESSION_TTL_SECONDS, logger
from ..errors import InvalidSelection
from ..services.link_data import ResolvedLink, SearchCandidate

T = TypeVar("T")


class ConversationStage(str, Enum):
    """State machine steps of the search-to-delivery flow."""

    AWAITING_TITLE_SELECTION = "awaiting_title_selection"
    AWAITING_LINK_SELECTION = "awaiting_link_selection"
    AWAITING_DELIVERY_CHOICE = "awaiting_delivery_choice"


def _pick(items: Sequence[T], selection: int) -> T:
    if selection < 1 or selection > len(items):
        raise InvalidSelection(selection, len(items))
    return items[selection - 1]


@dataclass
class ConversationSession:
    """In-flight flow for one conversation. Absence means no active flow."""

    stage: ConversationStage
    candidates: list[SearchCandidate] = field(default_factory=list)
    resolved_links: list[ResolvedLink] = field(default_factory=list)
    selected_candidate: SearchCandidate | None = None
    selected_link: ResolvedLink | None = None
    last_activity_at: float = 0.0

    @classmethod
    def from_search(
        cls, candidates: Sequence[SearchCandidate], now: float
    ) -> "ConversationSession":
        return cls(
            stage=ConversationStage.AWAITING_TITLE_SELECTION,
            candidates=list(candidates),
            last_activity_at=now,
        )

    def advance(self, stage: ConversationStage, now: float) -> None:
        self.stage = stage
        self.last_activity_at = now

    def pick_candidate(self, selection: int) -> SearchCandidate:
        """Returns the 1-based ``selection`` from the title menu without mutating."""
        return _pick(self.candidates, selection)

    def pick_link(self, selection: int) -> ResolvedLink:
        """Returns the 1-based ``selection`` from the link menu without mutating."""
        return _pick(self.resolved_links, selection)

    def is_expired(self, now: float, ttl: float) -> bool:
        return now - self.last_activity_at > ttl


class SessionStore:
    """
    Conversation sessions keyed by conversation id, with an inactivity TTL.

    ``get`` hides and evicts sessions that have been idle longer than the TTL,
    so a stale flow behaves exactly like no flow. ``sweep_expired`` does the
    same eagerly for every key and is run periodically by the application.
    Callers serialize read-modify-write on one conversation through
    ``lock_for``.
    """

    def __init__(
        self,
        *,
        ttl: float = SESSION_TTL_SECONDS,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.ttl = ttl
        self._clock = clock or time.monotonic
        self._sessions: dict[Hashable, ConversationSession] = {}
        self._locks: dict[Hashable, asyncio.Lock] = {}

    def now(self) -> float:
        return self._clock()

    def get(self, key: Hashable) -> ConversationSession | None:
        session = self._sessions.get(key)
        if session is None:
            return None
        if session.is_expired(self._clock(), self.ttl):
            logger.info(f"[SESSION] Session for {key} expired; discarding.")
            del self._sessions[key]
            return None
        return session

    def put(self, key: Hashable, session: ConversationSession) -> None:
        self._sessions[key] = session

    def delete(self, key: Hashable) -> bool:
        return self._sessions.pop(key, None) is not None

    def lock_for(self, key: Hashable) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def sweep_expired(self) -> int:
        """Removes every expired session and returns how many were dropped."""
        now = self._clock()
        expired = [
            key
            for key, session in self._sessions.items()
            if session.is_expired(now, self.ttl)
        ]
        for key in expired:
            del self._sessions[key]

        idle_locks = [
            key
            for key, lock in self._locks.items()
            if key not in self._sessions and not lock.locked()
        ]
        for key in idle_locks:
            del self._locks[key]

        if expired:
            logger.info(f"[SESSION] Swept {len(expired)} expired session(s).")
        return len(expired)

    async def run_sweeper(
        self, interval: float = SESSION_SWEEP_INTERVAL_SECONDS
    ) -> None:
        """Sweeps forever every ``interval`` seconds; cancel the task to stop it."""
        while True:
            await asyncio.sleep(interval)
            self.sweep_expired()

    def __contains__(self, key: Hashable) -> bool:
        return self.get(key) is not None

    def __len__(self) -> int:
        return len(self._sessions)
