# apps/api/coursegen/services/connection_registry.py
from __future__ import annotations

import threading
from typing import Optional


class ConnectionRegistry:
    """
    Live realtime connections.

    Two maps kept consistent under one lock:
      connection_id -> user_id
      user_id -> {connection_id, ...}
    """

    def __init__(self) -> None:
        self._user_by_conn: dict[str, str] = {}
        self._conns_by_user: dict[str, set[str]] = {}
        self._lock = threading.Lock()

    def register(self, connection_id: str, user_id: str) -> None:
        with self._lock:
            prev = self._user_by_conn.get(connection_id)
            if prev is not None and prev != user_id:
                self._drop(connection_id, prev)
            self._user_by_conn[connection_id] = user_id
            self._conns_by_user.setdefault(user_id, set()).add(connection_id)

    def unregister(self, connection_id: str) -> Optional[str]:
        with self._lock:
            user_id = self._user_by_conn.pop(connection_id, None)
            if user_id is not None:
                self._drop(connection_id, user_id)
            return user_id

    def _drop(self, connection_id: str, user_id: str) -> None:
        conns = self._conns_by_user.get(user_id)
        if conns is None:
            return
        conns.discard(connection_id)
        if not conns:
            del self._conns_by_user[user_id]

    def user_for(self, connection_id: str) -> Optional[str]:
        with self._lock:
            return self._user_by_conn.get(connection_id)

    def connections_for(self, user_id: str) -> set[str]:
        with self._lock:
            return set(self._conns_by_user.get(user_id, ()))

    def is_online(self, user_id: str) -> bool:
        with self._lock:
            return user_id in self._conns_by_user

    def __len__(self) -> int:
        with self._lock:
            return len(self._user_by_conn)
