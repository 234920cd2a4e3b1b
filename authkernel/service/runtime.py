from __future__ import annotations

import threading
from typing import Optional, Union
from urllib.parse import urlparse, urlunparse

from authkernel.config import get_settings, reset_settings_cache
from authkernel.logging import get_logger
from authkernel.service.auth import AuthService
from authkernel.service.guard import RoleGuard
from authkernel.service.passwords import Argon2PasswordVerifier
from authkernel.service.tokens import CredentialIssuer, CredentialVerifier, TokenSecrets
from authkernel.storage.memory import MemoryStore
from authkernel.storage.postgres import PostgresStore

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Mask the password component of a DSN for logging."""
    if not url:
        return url
    parsed = urlparse(url)
    if not parsed.password:
        return url
    netloc = parsed.hostname or ""
    if parsed.port:
        netloc = f"{netloc}:{parsed.port}"
    netloc = f"{parsed.username or ''}:***@{netloc}"
    return urlunparse(
        (parsed.scheme, netloc, parsed.path, parsed.params, parsed.query, parsed.fragment)
    )


class Runtime:
    """Holds singleton service instances for the FastAPI app."""

    def __init__(self):
        self.settings = get_settings()
        logger.info(
            "runtime_init_started",
            use_memory_store=self.settings.use_memory_store,
            test_mode=self.settings.test_mode,
            environment=self.settings.environment.value,
        )

        store_type = "memory" if self.settings.use_memory_store else "postgres"
        try:
            self.store: Union[MemoryStore, PostgresStore] = (
                MemoryStore(fs_root=self.settings.shared_fs_root)
                if self.settings.use_memory_store
                else PostgresStore(
                    self.settings.database_url,
                    statement_timeout_ms=self.settings.store_timeout_ms,
                )
            )
        except Exception as exc:
            logger.error(
                "runtime_store_init_failed",
                store_type=store_type,
                database_url=_mask_url_password(self.settings.database_url),
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise
        logger.info("runtime_store_initialized", store_type=store_type)

        self.token_secrets = TokenSecrets.from_settings(self.settings)
        self.issuer = CredentialIssuer(self.token_secrets)
        self.verifier = CredentialVerifier(self.token_secrets)
        self.guard = RoleGuard(self.settings.roles)
        self.passwords = Argon2PasswordVerifier()
        self.auth = AuthService(
            self.store,
            self.settings,
            issuer=self.issuer,
            verifier=self.verifier,
            guard=self.guard,
            passwords=self.passwords,
        )

    def close(self) -> None:
        if isinstance(self.store, PostgresStore):
            self.store.close()


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton in a thread-safe manner.

    Double-checked locking: the unlocked read is the fast path once the
    runtime exists.
    """
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> Runtime:
    """Reinitialize the runtime singleton for isolated test runs."""
    global runtime

    with _runtime_lock:
        if runtime is not None:
            runtime.close()
        reset_settings_cache()
        settings = get_settings()
        if not settings.test_mode:
            raise RuntimeError("runtime reset is only allowed in TEST_MODE")
        runtime = Runtime()
        return runtime
