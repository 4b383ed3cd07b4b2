"""Conversation store — in-memory per-user tutoring sessions.

Records are keyed by ``{user_id}_{subject}_{year_level}``. A user's most
recent conversation is continued for up to ``continuity_window_seconds``
even when the topic changes; in that case the record is migrated to the new
key with its history intact.

Usage:
    store = ConversationStore()
    with store.user_lock(user_id):
        record = store.resolve(user_id, topic, year_level)
        store.append(record, "user", message)
        store.put(record)

Thread safety: every map operation holds ``self._lock``. Whole chat turns
are serialized per user via ``user_lock`` so two overlapping requests from
the same user cannot overwrite each other's messages or token counts. The
periodic sweep takes only the map lock; a record it evicts while a turn is
in flight is re-inserted when that turn stores it. Sweeping also drops the
lock entries of users left with no records while no turn holds or awaits them.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta

logger = logging.getLogger(__name__)

ROLES = ("user", "assistant", "system")


def conversation_key(user_id: str, subject: str, year_level) -> str:
    return f"{user_id}_{subject}_{year_level}"


@dataclass
class Message:
    role: str
    content: str
    timestamp: datetime
    # Kept in the history but never sent to the provider.
    rejected: bool = False

    def to_dict(self) -> dict:
        return {"role": self.role, "content": self.content, "timestamp": self.timestamp.isoformat()}


@dataclass
class ConversationRecord:
    user_id: str
    subject: str
    year_level: int | str = 7
    curriculum: str = "NSW"
    messages: list[Message] = field(default_factory=list)
    total_tokens: int = 0
    created_at: datetime = field(default_factory=datetime.now)
    last_active: datetime = field(default_factory=datetime.now)
    curriculum_loaded: bool = False
    last_curriculum_topic: str | None = None

    @property
    def key(self) -> str:
        return conversation_key(self.user_id, self.subject, self.year_level)

    def add_tokens(self, count: int) -> None:
        if count > 0:
            self.total_tokens += count

    def age_minutes(self, now: datetime | None = None) -> int:
        now = now or datetime.now()
        return round((now - self.created_at).total_seconds() / 60)

    def summary(self, now: datetime | None = None) -> dict:
        """Status view used by the introspection endpoint."""
        return {
            "id": self.key,
            "subject": self.subject,
            "yearLevel": self.year_level,
            "curriculum": self.curriculum,
            "messageCount": len(self.messages),
            "totalTokens": self.total_tokens,
            "createdAt": self.created_at.isoformat(),
            "lastActive": self.last_active.isoformat(),
            "ageInMinutes": self.age_minutes(now),
            "curriculumLoaded": self.curriculum_loaded,
            "lastCurriculumTopic": self.last_curriculum_topic,
        }


@dataclass
class _UserLock:
    lock: threading.Lock = field(default_factory=threading.Lock)
    holders: int = 0


# ── Store ─────────────────────────────────────────────────

class ConversationStore:
    """Dict of conversation key -> ConversationRecord with continuity policy."""

    def __init__(
        self,
        continuity_window_seconds: int = 300,
        retention_days: int = 7,
        max_per_user: int = 50,
    ) -> None:
        self.continuity_window = timedelta(seconds=continuity_window_seconds)
        self.retention = timedelta(days=retention_days)
        self.max_per_user = max_per_user
        self._records: dict[str, ConversationRecord] = {}
        self._lock = threading.RLock()
        self._user_locks: dict[str, _UserLock] = {}
        self._user_locks_guard = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._records

    # ── Basic map operations ────────────────────────────────

    def get(self, key: str) -> ConversationRecord | None:
        with self._lock:
            return self._records.get(key)

    def put(self, record: ConversationRecord) -> None:
        with self._lock:
            self._records[record.key] = record

    def delete(self, key: str) -> bool:
        """Remove the record at ``key``. Returns whether one existed."""
        with self._lock:
            return self._records.pop(key, None) is not None

    def migrate(self, old_key: str, new_key: str, record: ConversationRecord) -> None:
        """Move ``record`` from ``old_key`` to ``new_key`` (overwrites the target)."""
        with self._lock:
            if old_key != new_key:
                self._records.pop(old_key, None)
            self._records[new_key] = record
        logger.info("Migrated conversation %s -> %s", old_key, new_key)

    def clear(self) -> None:
        with self._lock:
            self._records.clear()

    def list_for_user(self, user_id: str) -> list[ConversationRecord]:
        """User's records, most recently active first."""
        with self._lock:
            records = [r for r in self._records.values() if r.user_id == user_id]
        return sorted(records, key=lambda r: r.last_active, reverse=True)

    def find_most_recent(self, user_id: str) -> ConversationRecord | None:
        records = self.list_for_user(user_id)
        return records[0] if records else None

    @contextmanager
    def user_lock(self, user_id: str):
        """Serialize chat turns for ``user_id`` for the duration of the block.

        Entries are counted while held or awaited; ``sweep`` drops idle
        entries of users with no remaining records.
        """
        with self._user_locks_guard:
            entry = self._user_locks.get(user_id)
            if entry is None:
                entry = self._user_locks[user_id] = _UserLock()
            entry.holders += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._user_locks_guard:
                entry.holders -= 1

    def _prune_user_locks(self) -> None:
        with self._lock:
            live_users = {r.user_id for r in self._records.values()}
        with self._user_locks_guard:
            for user_id in [u for u, e in self._user_locks.items() if e.holders == 0 and u not in live_users]:
                del self._user_locks[user_id]

    # ── Continuity policy ───────────────────────────────────

    def resolve(
        self,
        user_id: str,
        topic: str,
        year_level,
        reset_requested: bool = False,
        curriculum: str = "NSW",
        now: datetime | None = None,
    ) -> ConversationRecord:
        """Return the conversation a new message for ``topic`` belongs to.

        Exact key hit, else the user's most recent record if it is inside the
        continuity window (migrated on topic change), else a new record
        stored under the exact key.
        """
        now = now or datetime.now()
        key = conversation_key(user_id, topic, year_level)

        with self._lock:
            if reset_requested and self.delete(key):
                logger.info("Reset conversation context for %s", key)

            record = self._records.get(key)
            if record is not None:
                return record

            recent = self.find_most_recent(user_id)
            if recent is not None and now - recent.last_active < self.continuity_window:
                old_key = recent.key
                if recent.subject != topic:
                    logger.info("Topic changed: %s -> %s", recent.subject, topic)
                    recent.curriculum_loaded = False
                    recent.last_curriculum_topic = None
                    recent.subject = topic
                recent.year_level = year_level
                recent.last_active = max(recent.last_active, now)
                if old_key != key:
                    self.migrate(old_key, key, recent)
                return recent

            record = ConversationRecord(
                user_id=user_id,
                subject=topic,
                year_level=year_level,
                curriculum=curriculum,
                created_at=now,
                last_active=now,
            )
            self._records[key] = record
            logger.info("Created conversation %s", key)
            return record

    def append(
        self,
        record: ConversationRecord,
        role: str,
        content: str,
        now: datetime | None = None,
        rejected: bool = False,
    ) -> Message:
        """Append a timestamped message and bump ``last_active``.

        Timestamps never decrease within a record.
        """
        if role not in ROLES:
            raise ValueError(f"Unknown message role: {role}")
        now = now or datetime.now()
        with self._lock:
            if record.messages and now < record.messages[-1].timestamp:
                now = record.messages[-1].timestamp
            message = Message(role=role, content=content or "", timestamp=now, rejected=rejected)
            record.messages.append(message)
            record.last_active = max(record.last_active, now)
        return message

    # ── Eviction ────────────────────────────────────────────

    def sweep(self, now: datetime | None = None, user_id: str | None = None) -> int:
        """Evict records idle past retention and beyond the per-user cap.

        With ``user_id`` only that user's records are considered. Returns
        the number of records removed.
        """
        now = now or datetime.now()
        cutoff = now - self.retention

        with self._lock:
            by_user: dict[str, list[tuple[str, ConversationRecord]]] = {}
            for key, record in self._records.items():
                if user_id is not None and record.user_id != user_id:
                    continue
                by_user.setdefault(record.user_id, []).append((key, record))

            doomed: list[str] = []
            for entries in by_user.values():
                entries.sort(key=lambda kv: kv[1].last_active, reverse=True)
                for index, (key, record) in enumerate(entries):
                    if index >= self.max_per_user or record.last_active < cutoff:
                        doomed.append(key)

            for key in doomed:
                del self._records[key]

        self._prune_user_locks()

        if doomed:
            logger.info("Swept %d conversations%s", len(doomed), f" for {user_id}" if user_id else "")
        return len(doomed)

    def stats(self) -> dict:
        with self._lock:
            records = list(self._records.values())
        subjects: dict[str, int] = {}
        for r in records:
            subjects[r.subject] = subjects.get(r.subject, 0) + 1
        return {
            "active": len(records),
            "totalMessages": sum(len(r.messages) for r in records),
            "totalTokens": sum(r.total_tokens for r in records),
            "subjects": subjects,
        }
