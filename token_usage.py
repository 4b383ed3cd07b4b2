"""Per-user token accounting.

Tracks how many LLM tokens each user has consumed against a soft limit. The
limit is reported to the client, not enforced.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass


@dataclass
class TokenUsage:
    used: int = 0
    limit: int = 5000

    @property
    def percentage(self) -> int:
        if self.limit <= 0:
            return 0
        return round(self.used / self.limit * 100)


class TokenLedger:
    """In-memory user_id -> TokenUsage map."""

    def __init__(self, default_limit: int = 5000) -> None:
        self.default_limit = default_limit
        self._usage: dict[str, TokenUsage] = {}
        self._lock = threading.Lock()

    def get(self, user_id: str) -> TokenUsage:
        """Current usage (a copy); unknown users report zero."""
        with self._lock:
            usage = self._usage.get(user_id)
            if usage is None:
                return TokenUsage(used=0, limit=self.default_limit)
            return TokenUsage(used=usage.used, limit=usage.limit)

    def record(self, user_id: str, tokens: int) -> TokenUsage:
        """Add ``tokens`` to the user's total and return the new usage."""
        with self._lock:
            usage = self._usage.setdefault(user_id, TokenUsage(limit=self.default_limit))
            usage.used += max(0, int(tokens))
            return TokenUsage(used=usage.used, limit=usage.limit)

    def clear(self) -> None:
        with self._lock:
            self._usage.clear()
