"""
In-memory rate limiter for prompt enqueue requests.
Sliding window per user id, limit taken from settings.
User ids are hashed before storage.
"""
import hashlib
import threading
import time
from dataclasses import dataclass, field
from typing import Dict

from app.core.config import get_settings


WINDOW_SECONDS = 3600  # 1 hour


@dataclass
class RateLimitEntry:
    """Track request timestamps for a single user."""
    timestamps: list[float] = field(default_factory=list)


class RateLimiter:
    """
    Sliding window rate limiter by user id.

    Uses the user id hash (not the raw id) as key.
    """
    _instance: "RateLimiter | None" = None
    _lock = threading.Lock()

    def __new__(cls) -> "RateLimiter":
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    instance = super().__new__(cls)
                    instance._entries: Dict[str, RateLimitEntry] = {}
                    instance._data_lock = threading.Lock()
                    instance._requests_per_hour = get_settings().rate_limit_requests_per_hour
                    cls._instance = instance
        return cls._instance

    @staticmethod
    def _hash_uid(uid: str) -> str:
        return hashlib.sha256(uid.encode()).hexdigest()[:16]

    def _cleanup_old_entries(self, entry: RateLimitEntry, now: float) -> None:
        """Remove timestamps older than the window."""
        cutoff = now - WINDOW_SECONDS
        entry.timestamps = [ts for ts in entry.timestamps if ts > cutoff]

    def check_and_record(self, uid: str) -> tuple[bool, int]:
        """
        Check if request is allowed and record it.

        Returns:
            Tuple of (allowed, remaining requests in the window)
        """
        uid_hash = self._hash_uid(uid)
        now = time.time()

        with self._data_lock:
            entry = self._entries.setdefault(uid_hash, RateLimitEntry())
            self._cleanup_old_entries(entry, now)

            current_count = len(entry.timestamps)
            if current_count >= self._requests_per_hour:
                return False, 0

            entry.timestamps.append(now)
            return True, self._requests_per_hour - current_count - 1

    def get_remaining(self, uid: str) -> int:
        """Get remaining requests for a user without recording."""
        uid_hash = self._hash_uid(uid)
        now = time.time()

        with self._data_lock:
            if uid_hash not in self._entries:
                return self._requests_per_hour

            entry = self._entries[uid_hash]
            self._cleanup_old_entries(entry, now)
            return max(0, self._requests_per_hour - len(entry.timestamps))

    def reset(self) -> None:
        """Reset all rate limit entries (for testing)."""
        with self._data_lock:
            self._entries.clear()

    def set_limit(self, requests_per_hour: int) -> None:
        """Update the requests per hour limit (for testing)."""
        with self._data_lock:
            self._requests_per_hour = requests_per_hour


def get_rate_limiter() -> RateLimiter:
    """Get the singleton rate limiter instance."""
    return RateLimiter()
