"""Username/password login with opaque, expiring session tokens."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from secrets import token_urlsafe
from threading import Lock
from typing import Callable, Dict, Optional

import bcrypt

from app.schemas import UserInfo, UserRecord
from datastore.tables import KeyedTable, build_users_table
from models.records import Session
from settings import get_settings

logger = logging.getLogger(__name__)

ROLES = ("admin", "operator", "viewer")


@dataclass(frozen=True)
class LoginResult:
    session: Session
    user: UserInfo


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, stored_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), stored_hash.encode("utf-8"))
    except ValueError:
        logger.warning("Stored password hash is not a bcrypt hash")
        return False


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_user_info(user: UserRecord) -> UserInfo:
    return UserInfo(
        username=user.username,
        name=user.name,
        email=user.email,
        role=user.role,
        last_login_at=user.last_login_at,
        created_at=user.created_at,
    )


class AuthService:
    """Checks credentials against the users table and tracks live sessions."""

    def __init__(
        self,
        users: KeyedTable[UserRecord],
        session_ttl: timedelta = timedelta(hours=8),
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.users = users
        self.session_ttl = session_ttl
        self.clock = clock
        self._sessions: Dict[str, Session] = {}
        self._sessions_lock = Lock()

    def create_user(
        self,
        username: str,
        password: str,
        name: str,
        email: str,
        role: str = "viewer",
    ) -> UserInfo:
        username = username.strip().lower()
        email = email.strip().lower()
        if len(username) < 3:
            raise ValueError("Username must have at least 3 characters.")
        if len(password) < 6:
            raise ValueError("Password must have at least 6 characters.")
        if role not in ROLES:
            raise ValueError(f"Role {role!r} is not valid.")
        for existing in self.users.scan():
            if existing.username == username or existing.email == email:
                raise ValueError(f"User {username!r} or email {email!r} already exists.")

        record = UserRecord(
            username=username,
            name=name.strip(),
            email=email,
            password_hash=hash_password(password),
            role=role,
            created_at=self.clock(),
        )
        self.users.put_item(record)
        logger.info("User created", extra={"username": username})
        return to_user_info(record)

    def login(self, username: str, password: str) -> Optional[LoginResult]:
        """Return a new session, or ``None`` for any kind of failure."""

        if not username or not password:
            return None

        user = self.users.get_item(username.strip().lower())
        if user is None or not user.is_active or not verify_password(password, user.password_hash):
            logger.info("Login rejected", extra={"username": username})
            return None

        now = self.clock()
        user = user.model_copy(update={"last_login_at": now})
        self.users.put_item(user)

        session = Session(
            token=token_urlsafe(32),
            username=user.username,
            role=user.role,
            issued_at=now,
            expires_at=now + self.session_ttl,
        )
        with self._sessions_lock:
            self._sessions = {
                token: live for token, live in self._sessions.items() if live.expires_at > now
            }
            self._sessions[session.token] = session
        logger.info("Login accepted", extra={"username": user.username})
        return LoginResult(session=session, user=to_user_info(user))

    def verify(self, token: Optional[str]) -> Optional[Session]:
        if not token:
            return None
        with self._sessions_lock:
            session = self._sessions.get(token)
            if session is None:
                return None
            if session.expires_at <= self.clock():
                del self._sessions[token]
                return None
            return session

    def logout(self, token: str) -> bool:
        with self._sessions_lock:
            return self._sessions.pop(token, None) is not None


@lru_cache
def build_default_auth_service() -> AuthService:
    settings = get_settings()
    return AuthService(
        users=build_users_table(),
        session_ttl=timedelta(hours=settings.session_ttl_hours),
    )
