import asyncio
import inspect
import os
import sys
import tempfile
from pathlib import Path

# Create temp directory for tests before any imports that might initialize runtime
_test_tmp_dir = tempfile.mkdtemp(prefix="authkernel_test_")
os.environ.setdefault("SHARED_FS_ROOT", _test_tmp_dir)
os.environ.setdefault("TEST_MODE", "true")
os.environ.setdefault("USE_MEMORY_STORE", "true")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault(
    "ACCESS_TOKEN_SECRET", "test-access-secret-for-testing-only-do-not-use-in-production"
)
os.environ.setdefault(
    "REFRESH_TOKEN_SECRET", "test-refresh-secret-for-testing-only-do-not-use-in-production"
)

import pytest  # noqa: E402
from argon2 import PasswordHasher, Type  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from authkernel.config import Settings  # noqa: E402
from authkernel.service.auth import AuthService  # noqa: E402
from authkernel.service.guard import RoleGuard  # noqa: E402
from authkernel.service.passwords import Argon2PasswordVerifier  # noqa: E402
from authkernel.service.runtime import reset_runtime_for_tests  # noqa: E402
from authkernel.service.tokens import (  # noqa: E402
    CredentialIssuer,
    CredentialVerifier,
    TokenSecrets,
)
from authkernel.storage.memory import MemoryStore  # noqa: E402

ACCESS_SECRET = "unit-access-secret-0123456789-abcdefghijklmnop"
REFRESH_SECRET = "unit-refresh-secret-0123456789-abcdefghijklmnop"


class FakeClock:
    """Manually advanced clock for expiry tests."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def reset_runtime_state(tmp_path, monkeypatch):
    # Each test gets its own store directory so principals never leak across tests
    monkeypatch.setenv("SHARED_FS_ROOT", str(tmp_path / "shared"))
    reset_runtime_for_tests()
    yield
    reset_runtime_for_tests()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        shared_fs_root=str(tmp_path),
        access_token_secret=ACCESS_SECRET,
        refresh_token_secret=REFRESH_SECRET,
    )


@pytest.fixture
def token_secrets(settings):
    return TokenSecrets.from_settings(settings)


@pytest.fixture
def issuer(token_secrets, clock):
    return CredentialIssuer(token_secrets, clock=clock)


@pytest.fixture
def verifier(token_secrets, clock):
    return CredentialVerifier(token_secrets, clock=clock)


@pytest.fixture
def memory_store(tmp_path):
    return MemoryStore(fs_root=str(tmp_path / "store"))


@pytest.fixture
def passwords():
    # Minimal argon2 cost keeps the suite fast
    return Argon2PasswordVerifier(
        PasswordHasher(time_cost=1, memory_cost=8, parallelism=1, type=Type.ID)
    )


@pytest.fixture
def auth_service(memory_store, settings, issuer, verifier, passwords):
    return AuthService(
        memory_store,
        settings,
        issuer=issuer,
        verifier=verifier,
        guard=RoleGuard(settings.roles),
        passwords=passwords,
    )


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")
