"""
DOCRELAY Confirmation — pending issue proposals

A proposal waits here, per user, until a yes/no reply arrives or
its validity window closes. The store is an interface so a durable
backend can replace the in-memory one without touching the relay.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from enum import Enum
from typing import Protocol

from loguru import logger
from pydantic import BaseModel


class PendingProposal(BaseModel):
    target_name: str
    repository: str
    title: str
    body: str
    auxiliary_instruction: str
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

class ProposalStore(ABC):
    """At most one proposal per user. Expiry is checked on read."""

    @abstractmethod
    def get(self, user_id: str, now: datetime) -> PendingProposal | None:
        """Return the live proposal, deleting it first if it has expired."""
        ...

    @abstractmethod
    def put(self, user_id: str, proposal: PendingProposal) -> None:
        """Store a proposal, replacing any previous one for the user."""
        ...

    @abstractmethod
    def delete(self, user_id: str) -> None:
        ...


class InMemoryProposalStore(ProposalStore):
    """Process-local store. Everything is lost on restart."""

    def __init__(self):
        self._proposals: dict[str, PendingProposal] = {}
        self._lock = threading.Lock()

    def get(self, user_id: str, now: datetime) -> PendingProposal | None:
        with self._lock:
            proposal = self._proposals.get(user_id)
            if proposal is not None and proposal.is_expired(now):
                del self._proposals[user_id]
                logger.info(f"[CONFIRM] Proposal for {user_id} expired at {proposal.expires_at.isoformat()}")
                return None
            return proposal

    def put(self, user_id: str, proposal: PendingProposal) -> None:
        with self._lock:
            self._proposals[user_id] = proposal

    def delete(self, user_id: str) -> None:
        with self._lock:
            self._proposals.pop(user_id, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._proposals)


# ---------------------------------------------------------------------------
# Reply matching
# ---------------------------------------------------------------------------

class ReplyIntent(str, Enum):
    AFFIRMATIVE = "affirmative"
    NEGATIVE = "negative"
    NEITHER = "neither"


class ReplyMatcher(Protocol):
    def classify(self, text: str) -> ReplyIntent: ...


class PhraseMatcher:
    """Case-sensitive substring match against phrase lists. Affirmative wins ties."""

    def __init__(self, affirmative: list[str], negative: list[str]):
        self.affirmative = list(affirmative)
        self.negative = list(negative)

    @classmethod
    def from_config(cls, replies) -> "PhraseMatcher":
        return cls(replies.affirmative, replies.negative)

    def classify(self, text: str) -> ReplyIntent:
        if any(phrase in text for phrase in self.affirmative):
            return ReplyIntent.AFFIRMATIVE
        if any(phrase in text for phrase in self.negative):
            return ReplyIntent.NEGATIVE
        return ReplyIntent.NEITHER


# ---------------------------------------------------------------------------
# Per-user serialization
# ---------------------------------------------------------------------------

class KeyedLock:
    """One reentrant lock per key, dropped once nobody holds or waits on it."""

    def __init__(self):
        self._locks: dict[str, threading.RLock] = {}
        self._holders: dict[str, int] = {}
        self._guard = threading.Lock()

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(key, threading.RLock())
            self._holders[key] = self._holders.get(key, 0) + 1
        try:
            with lock:
                yield
        finally:
            with self._guard:
                self._holders[key] -= 1
                if not self._holders[key]:
                    del self._holders[key]
                    del self._locks[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
