"""Online/offline tracking for users with at least one live connection."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta


class Presence:
    """In-process presence registry.

    Holds the set of online user ids and a last-seen stamp per user. It is
    owned by the application state and never persisted.
    """

    def __init__(self) -> None:
        self._online: set[str] = set()
        self._last_seen: dict[str, datetime] = {}

    def set_online(self, user_id: str) -> None:
        self._online.add(user_id)
        self._last_seen[user_id] = datetime.now(UTC)

    def set_offline(self, user_id: str) -> None:
        self._online.discard(user_id)
        self._last_seen[user_id] = datetime.now(UTC)

    def is_online(self, user_id: str) -> bool:
        return user_id in self._online

    def list_online(self) -> list[str]:
        return sorted(self._online)

    def online_count(self) -> int:
        return len(self._online)

    def last_seen(self, user_id: str) -> datetime | None:
        return self._last_seen.get(user_id)

    def status_of(self, user_ids: list[str]) -> dict[str, dict]:
        return {
            uid: {"is_online": self.is_online(uid), "last_seen": self._last_seen.get(uid)}
            for uid in user_ids
        }

    def prune(self, older_than: timedelta) -> int:
        """Forget last-seen stamps of offline users not seen within ``older_than``."""
        cutoff = datetime.now(UTC) - older_than
        stale = [
            uid
            for uid, seen in self._last_seen.items()
            if seen < cutoff and uid not in self._online
        ]
        for uid in stale:
            del self._last_seen[uid]
        return len(stale)
