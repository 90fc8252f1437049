"""Client-side login session with a pluggable backing store."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Protocol


class SessionStore(Protocol):
    def load(self) -> Optional[Dict[str, Any]]: ...

    def save(self, payload: Dict[str, Any]) -> None: ...

    def clear(self) -> None: ...


class MemorySessionStore:

    def __init__(self, payload: Optional[Dict[str, Any]] = None) -> None:
        self._payload = dict(payload) if payload else None

    def load(self) -> Optional[Dict[str, Any]]:
        return dict(self._payload) if self._payload else None

    def save(self, payload: Dict[str, Any]) -> None:
        self._payload = dict(payload)

    def clear(self) -> None:
        self._payload = None


class FileSessionStore:
    """Keeps the session in a small JSON file readable only by its owner."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def load(self) -> Optional[Dict[str, Any]]:
        if not self.path.exists():
            return None
        try:
            data = json.loads(self.path.read_text() or "{}")
        except (OSError, json.JSONDecodeError):
            return None
        return data if isinstance(data, dict) and data else None

    def save(self, payload: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(payload, indent=2, sort_keys=True))
        self.path.chmod(0o600)

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionManager:

    def __init__(
        self,
        store: SessionStore,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.clock = clock

    def save_login(self, payload: Dict[str, Any]) -> None:
        """Persist the body of a successful login response."""
        self.store.save(
            {
                "token": payload["token"],
                "user": payload.get("user") or {},
                "expires_at": payload.get("expires_at"),
            }
        )

    def get_token(self) -> Optional[str]:
        data = self.store.load()
        return data.get("token") if data else None

    def get_user(self) -> Optional[Dict[str, Any]]:
        data = self.store.load()
        return data.get("user") if data else None

    def clear_session(self) -> None:
        self.store.clear()

    def is_valid(self) -> bool:
        data = self.store.load()
        if not data or not data.get("token"):
            return False
        expires_at = data.get("expires_at")
        if not expires_at:
            return True
        try:
            expiry = datetime.fromisoformat(str(expires_at).replace("Z", "+00:00"))
        except ValueError:
            self.clear_session()
            return False
        if expiry.tzinfo is None:
            expiry = expiry.replace(tzinfo=timezone.utc)
        if expiry <= self.clock():
            self.clear_session()
            return False
        return True
