from __future__ import annotations

import json
import threading
import uuid
from dataclasses import asdict, replace
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from estategate.logging import get_logger
from estategate.storage.errors import DuplicateRecord, MissingReference
from estategate.storage.models import (
    Community,
    SecurityToken,
    SecurityTokenType,
    User,
)


class MemoryStore:
    """In-memory backing store for development and tests.

    Records are copied on the way in and out, so callers never hold a
    reference into the store's state. Optionally snapshots state to
    ``<fs_root>/state/memory_store.json``.
    """

    def __init__(self, fs_root: str | None = None) -> None:
        self.logger = get_logger(__name__)
        self.users: Dict[str, User] = {}
        self.tokens: Dict[str, SecurityToken] = {}
        self.communities: Dict[str, Community] = {}
        # RLock so helpers can be called while a public method holds it
        self._data_lock = threading.RLock()
        self.fs_root = Path(fs_root) if fs_root else None
        if self.fs_root:
            self.fs_root.mkdir(parents=True, exist_ok=True)
            self._load_state()

    # -- persistence -----------------------------------------------------

    def _state_path(self) -> Path:
        assert self.fs_root is not None
        state_dir = self.fs_root / "state"
        state_dir.mkdir(parents=True, exist_ok=True)
        return state_dir / "memory_store.json"

    @staticmethod
    def _serialize_datetime(dt: datetime) -> str:
        return dt.isoformat()

    @staticmethod
    def _deserialize_datetime(raw: str) -> datetime:
        return datetime.fromisoformat(raw)

    def _persist_state(self) -> None:
        if not self.fs_root:
            return
        with self._data_lock:
            state = {
                "users": [
                    {**asdict(u), "created_at": self._serialize_datetime(u.created_at)}
                    for u in self.users.values()
                ],
                "tokens": [
                    {
                        **asdict(t),
                        "token_type": t.token_type.value,
                        "created_at": self._serialize_datetime(t.created_at),
                        "expires_at": self._serialize_datetime(t.expires_at),
                    }
                    for t in self.tokens.values()
                ],
                "communities": [
                    {**asdict(c), "created_at": self._serialize_datetime(c.created_at)}
                    for c in self.communities.values()
                ],
            }
            path = self._state_path()
            tmp_path = path.with_suffix(".tmp")
            tmp_path.write_text(json.dumps(state))
            tmp_path.replace(path)

    def _load_state(self) -> bool:
        path = self._state_path()
        if not path.exists():
            return False
        try:
            state = json.loads(path.read_text())
        except (OSError, json.JSONDecodeError) as exc:
            self.logger.error("memory_store_load_failed", path=str(path), error=str(exc))
            return False
        with self._data_lock:
            for raw in state.get("users", []):
                raw["created_at"] = self._deserialize_datetime(raw["created_at"])
                user = User(**raw)
                self.users[user.id] = user
            for raw in state.get("tokens", []):
                raw["token_type"] = SecurityTokenType(raw["token_type"])
                raw["created_at"] = self._deserialize_datetime(raw["created_at"])
                raw["expires_at"] = self._deserialize_datetime(raw["expires_at"])
                token = SecurityToken(**raw)
                self.tokens[token.id] = token
            for raw in state.get("communities", []):
                raw["created_at"] = self._deserialize_datetime(raw["created_at"])
                community = Community(**raw)
                self.communities[community.id] = community
        return True

    # -- users -----------------------------------------------------------

    def create_user(
        self,
        email: str,
        *,
        name: Optional[str] = None,
        password_hash: Optional[str] = None,
    ) -> User:
        normalized = email.strip().lower()
        with self._data_lock:
            if any(u.email == normalized for u in self.users.values()):
                raise DuplicateRecord("email already exists", {"field": "email"})
            user = User(
                id=str(uuid.uuid4()),
                email=normalized,
                name=name,
                password_hash=password_hash,
            )
            self.users[user.id] = user
            self._persist_state()
            return replace(user)

    def get_user(self, user_id: str) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            return replace(user) if user else None

    def get_user_by_email(self, email: str) -> Optional[User]:
        normalized = email.strip().lower()
        with self._data_lock:
            for user in self.users.values():
                if user.email == normalized:
                    return replace(user)
        return None

    def save_password(self, user_id: str, password_hash: str) -> None:
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                raise MissingReference("user not found", {"user_id": user_id})
            user.password_hash = password_hash
            self._persist_state()

    def mark_email_confirmed(self, user_id: str) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                return None
            user.email_confirmed = True
            self._persist_state()
            return replace(user)

    # -- security tokens -------------------------------------------------

    def save_token(self, token: SecurityToken) -> SecurityToken:
        with self._data_lock:
            if token.owner_id not in self.users:
                raise MissingReference(
                    "token owner not found", {"owner_id": token.owner_id}
                )
            for existing in self.tokens.values():
                if existing.value == token.value and existing.id != token.id:
                    raise DuplicateRecord(
                        "token value already exists", {"field": "value"}
                    )
            self.tokens[token.id] = replace(token)
            self._persist_state()
            return replace(token)

    def find_token_by_value(self, value: str) -> Optional[SecurityToken]:
        with self._data_lock:
            for token in self.tokens.values():
                if token.value == value:
                    return replace(token)
        return None

    def list_user_tokens(
        self, user_id: str, token_type: Optional[SecurityTokenType] = None
    ) -> List[SecurityToken]:
        with self._data_lock:
            return [
                replace(t)
                for t in self.tokens.values()
                if t.owner_id == user_id
                and (token_type is None or t.token_type == token_type)
            ]

    def delete_unused_tokens(self, user_id: str, token_type: SecurityTokenType) -> int:
        with self._data_lock:
            doomed = [
                t.id
                for t in self.tokens.values()
                if t.owner_id == user_id and t.token_type == token_type and not t.used
            ]
            for token_id in doomed:
                del self.tokens[token_id]
            if doomed:
                self._persist_state()
            return len(doomed)

    def mark_token_used(self, token_id: str) -> Optional[SecurityToken]:
        """Flip ``used`` from False to True; return None if it was not False."""
        with self._data_lock:
            token = self.tokens.get(token_id)
            if token is None or token.used:
                return None
            token.used = True
            self._persist_state()
            return replace(token)

    # -- communities -----------------------------------------------------

    def create_community(self, name: str, *, district: Optional[str] = None) -> Community:
        with self._data_lock:
            community = Community(id=str(uuid.uuid4()), name=name, district=district)
            self.communities[community.id] = community
            self._persist_state()
            return replace(community, admin_ids=list(community.admin_ids))

    def get_community(self, community_id: str) -> Optional[Community]:
        with self._data_lock:
            community = self.communities.get(community_id)
            if not community:
                return None
            return replace(community, admin_ids=list(community.admin_ids))

    def add_community_admin(self, community_id: str, user_id: str) -> bool:
        with self._data_lock:
            community = self.communities.get(community_id)
            if not community or user_id not in self.users:
                return False
            if user_id not in community.admin_ids:
                community.admin_ids.append(user_id)
                self._persist_state()
            return True

    def add_community_admins(self, community_id: str, user_ids: List[str]) -> Community:
        """Grant admin to every user id, or to none of them.

        Raises ``MissingReference`` when the community or any user is unknown.
        """
        with self._data_lock:
            community = self.communities.get(community_id)
            if community is None:
                raise MissingReference(
                    "community not found", {"community_id": community_id}
                )
            missing = [uid for uid in user_ids if uid not in self.users]
            if missing:
                raise MissingReference("user not found", {"user_ids": missing})
            for uid in user_ids:
                if uid not in community.admin_ids:
                    community.admin_ids.append(uid)
            self._persist_state()
            return replace(community, admin_ids=list(community.admin_ids))

    def find_community_admins(self, community_id: str) -> Optional[List[User]]:
        """Admins of a community, or None when the community does not exist."""
        with self._data_lock:
            community = self.communities.get(community_id)
            if community is None:
                return None
            return [
                replace(self.users[uid]) for uid in community.admin_ids if uid in self.users
            ]


__all__ = ["MemoryStore"]
