from __future__ import annotations

import json
import os
import tempfile
import threading
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional

from authkernel.logging import get_logger
from authkernel.storage.errors import ConstraintViolation, StoreUnavailable
from authkernel.storage.models import Principal


class MemoryStore:
    """In-process principal store persisted to a JSON file under ``fs_root``.

    All reads and writes go through ``_data_lock``; the refresh-token
    compare-and-swap is therefore atomic with respect to every other
    operation on this instance. Callers receive copies, so a stale
    ``Principal`` they hold can never be mutated behind their back.
    """

    def __init__(self, fs_root: str = "/tmp/authkernel") -> None:
        self.logger = get_logger(__name__)
        self.principals: Dict[str, Principal] = {}
        # RLock so helpers can re-enter while a mutation holds the lock
        self._data_lock = threading.RLock()
        self.fs_root = Path(fs_root)
        self.fs_root.mkdir(parents=True, exist_ok=True)
        self._load_state()

    def _state_path(self) -> Path:
        state_dir = self.fs_root / "state"
        state_dir.mkdir(parents=True, exist_ok=True)
        return state_dir / "principals.json"

    # -- principals -------------------------------------------------------

    def create_principal(self, username: str, password_hash: str, role: str) -> Principal:
        with self._data_lock:
            if any(existing.username == username for existing in self.principals.values()):
                raise ConstraintViolation("username already exists", {"field": "username"})
            principal = Principal(
                id=str(uuid.uuid4()),
                username=username,
                password_hash=password_hash,
                role=role,
            )
            self.principals[principal.id] = principal
            try:
                self._persist_state()
            except StoreUnavailable:
                self.principals.pop(principal.id, None)
                raise
            return replace(principal)

    def get_principal(self, principal_id: str) -> Optional[Principal]:
        with self._data_lock:
            principal = self.principals.get(principal_id)
            return replace(principal) if principal else None

    def get_principal_by_username(self, username: str) -> Optional[Principal]:
        with self._data_lock:
            principal = next(
                (p for p in self.principals.values() if p.username == username), None
            )
            return replace(principal) if principal else None

    def list_principals(self, limit: int = 100) -> List[Principal]:
        with self._data_lock:
            ordered = sorted(self.principals.values(), key=lambda p: p.created_at)
            return [replace(p) for p in ordered[:limit]]

    def update_principal_role(self, principal_id: str, role: str) -> Optional[Principal]:
        return self._mutate(principal_id, lambda p: setattr(p, "role", role))

    # -- refresh token slot -----------------------------------------------

    def set_refresh_token(self, principal_id: str, token_hash: Optional[str]) -> None:
        self._mutate(principal_id, lambda p: setattr(p, "refresh_token_hash", token_hash))

    def clear_refresh_token(self, principal_id: str) -> None:
        self.set_refresh_token(principal_id, None)

    def swap_refresh_token(
        self, principal_id: str, expected_hash: str, new_hash: Optional[str]
    ) -> bool:
        """Replace the stored digest only if it still equals ``expected_hash``."""
        with self._data_lock:
            principal = self.principals.get(principal_id)
            if not principal or principal.refresh_token_hash is None:
                return False
            if principal.refresh_token_hash != expected_hash:
                return False
            self._mutate(
                principal_id, lambda p: setattr(p, "refresh_token_hash", new_hash)
            )
            return True

    def _mutate(
        self, principal_id: str, change: Callable[[Principal], None]
    ) -> Optional[Principal]:
        with self._data_lock:
            principal = self.principals.get(principal_id)
            if not principal:
                return None
            previous = replace(principal)
            change(principal)
            principal.updated_at = datetime.now(timezone.utc)
            try:
                self._persist_state()
            except StoreUnavailable:
                self.principals[principal_id] = previous
                raise
            return replace(principal)

    # -- persistence ------------------------------------------------------

    def _persist_state(self) -> None:
        state = {
            "principals": [self._serialize_principal(p) for p in self.principals.values()],
        }
        path = self._state_path()
        tmp_path = None
        try:
            fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), prefix=".principals_", suffix=".tmp")
            with os.fdopen(fd, "w") as handle:
                handle.write(json.dumps(state, indent=2))
            os.replace(tmp_path, path)
        except OSError as exc:
            if tmp_path:
                try:
                    os.unlink(tmp_path)
                except FileNotFoundError:
                    pass
            self.logger.error("memory_store_persist_failed", error=str(exc), path=str(path))
            raise StoreUnavailable("failed to persist principal state") from exc

    def _load_state(self) -> bool:
        path = self._state_path()
        try:
            data = json.loads(path.read_text())
        except FileNotFoundError:
            return False
        self.principals = {
            p["id"]: self._deserialize_principal(p) for p in data.get("principals", [])
        }
        self.logger.info("memory_store_loaded", principals=len(self.principals))
        return True

    def _serialize_principal(self, principal: Principal) -> dict:
        return {
            "id": principal.id,
            "username": principal.username,
            "password_hash": principal.password_hash,
            "role": principal.role,
            "refresh_token_hash": principal.refresh_token_hash,
            "created_at": principal.created_at.isoformat(),
            "updated_at": principal.updated_at.isoformat(),
        }

    def _deserialize_principal(self, data: dict) -> Principal:
        created_at = datetime.fromisoformat(data["created_at"])
        return Principal(
            id=str(data["id"]),
            username=data["username"],
            password_hash=data["password_hash"],
            role=data.get("role", "USER"),
            refresh_token_hash=data.get("refresh_token_hash"),
            created_at=created_at,
            updated_at=datetime.fromisoformat(data["updated_at"]) if data.get("updated_at") else created_at,
        )

    def verify_connection(self) -> bool:
        return True
