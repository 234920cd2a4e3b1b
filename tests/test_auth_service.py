"""Unit tests for the auth service flows.

Tests for:
- Signup validation and duplicate handling
- Login and credential checks
- Access-token authentication
- Bootstrap helper
"""

import pytest

from authkernel.service.auth import AuthService
from authkernel.service.codec import ClaimSet
from authkernel.service.errors import (
    AuthenticationError,
    DuplicatePrincipalError,
    ForbiddenError,
    InvalidCredentialError,
    MissingCredentialError,
    ReuseDetectedError,
    ValidationError,
)
from authkernel.service.guard import RoleGuard
from authkernel.storage.models import refresh_token_digest


class TestPasswords:
    """Tests for password hashing."""

    def test_hash_is_not_plaintext(self, passwords):
        digest = passwords.hash("secret123")

        assert digest != "secret123"
        assert digest.startswith("$argon2id$")

    def test_compare(self, passwords):
        digest = passwords.hash("secret123")

        assert passwords.compare("secret123", digest)
        assert not passwords.compare("wrong-password", digest)

    def test_compare_with_garbage_hash(self, passwords):
        assert not passwords.compare("secret123", "not-a-hash")


class TestSignup:
    async def test_signup_creates_principal(self, auth_service, memory_store):
        principal = await auth_service.signup("alice", "secret123", "USER")

        stored = memory_store.get_principal_by_username("alice")
        assert stored.id == principal.id
        assert stored.role == "USER"
        assert stored.password_hash != "secret123"
        assert stored.refresh_token_hash is None

    async def test_role_defaults_to_user(self, auth_service):
        principal = await auth_service.signup("bob", "secret123")
        assert principal.role == "USER"

    async def test_role_is_explicit_and_exact(self, auth_service):
        principal = await auth_service.signup("carol", "secret123", "ADMIN")
        assert principal.role == "ADMIN"

    @pytest.mark.parametrize("role", ["admin", "Admin", " ADMIN"])
    async def test_role_case_variants_rejected(self, auth_service, memory_store, role):
        with pytest.raises(ValidationError):
            await auth_service.signup("carol", "secret123", role)
        assert memory_store.get_principal_by_username("carol") is None

    async def test_unknown_role_rejected(self, auth_service):
        with pytest.raises(ValidationError):
            await auth_service.signup("dave", "secret123", "OVERLORD")

    async def test_duplicate_username_rejected(self, auth_service):
        await auth_service.signup("alice", "secret123")

        with pytest.raises(DuplicatePrincipalError) as exc_info:
            await auth_service.signup("alice", "another-password")
        assert exc_info.value.status_code == 409

    async def test_signup_disabled(self, memory_store, settings, issuer, verifier, passwords):
        service = AuthService(
            memory_store,
            settings.model_copy(update={"allow_signup": False}),
            issuer=issuer,
            verifier=verifier,
            guard=RoleGuard(settings.roles),
            passwords=passwords,
        )
        with pytest.raises(ForbiddenError):
            await service.signup("alice", "secret123")


class TestLogin:
    async def test_login_issues_pair_and_stores_digest(self, auth_service, memory_store):
        await auth_service.signup("alice", "secret123")

        principal, tokens = await auth_service.login("alice", "secret123")

        stored = memory_store.get_principal(principal.id)
        assert stored.refresh_token_hash == refresh_token_digest(tokens.refresh_token)
        assert tokens.refresh_token not in stored.refresh_token_hash

    async def test_wrong_password(self, auth_service):
        await auth_service.signup("alice", "secret123")

        with pytest.raises(AuthenticationError) as exc_info:
            await auth_service.login("alice", "wrong-password")
        assert exc_info.value.message == "invalid credentials"

    async def test_unknown_user_gets_same_error(self, auth_service):
        with pytest.raises(AuthenticationError) as exc_info:
            await auth_service.login("nobody", "secret123")
        assert exc_info.value.message == "invalid credentials"

    async def test_relogin_invalidates_previous_refresh_token(self, auth_service):
        await auth_service.signup("alice", "secret123")
        _, first = await auth_service.login("alice", "secret123")
        _, second = await auth_service.login("alice", "secret123")

        with pytest.raises(ReuseDetectedError):
            await auth_service.refresh(first.refresh_token)
        _, rotated = await auth_service.refresh(second.refresh_token)
        assert rotated.refresh_token != second.refresh_token


class TestAuthenticate:
    async def test_access_token_round_trip(self, auth_service):
        await auth_service.signup("alice", "secret123", "MODERATOR")
        principal, tokens = await auth_service.login("alice", "secret123")

        claims = auth_service.authenticate(tokens.access_token)

        assert isinstance(claims, ClaimSet)
        assert claims.principal_id == principal.id
        assert claims.role == "MODERATOR"

    def test_missing_access_token(self, auth_service):
        with pytest.raises(MissingCredentialError):
            auth_service.authenticate(None)

    def test_invalid_access_token(self, auth_service):
        with pytest.raises(InvalidCredentialError):
            auth_service.authenticate("abc.def.ghi")

    async def test_refresh_token_is_not_accepted_as_access(self, auth_service):
        await auth_service.signup("alice", "secret123")
        _, tokens = await auth_service.login("alice", "secret123")

        with pytest.raises(InvalidCredentialError):
            auth_service.authenticate(tokens.refresh_token)


class TestEnsurePrincipal:
    def test_creates_then_promotes(self, auth_service):
        created, was_created = auth_service.ensure_principal("root", "long-password-1", "ADMIN")
        assert was_created
        assert created.role == "ADMIN"

        promoted, was_created = auth_service.ensure_principal("root", "ignored", "SUPERADMIN")
        assert not was_created
        assert promoted.id == created.id
        assert promoted.role == "SUPERADMIN"

    def test_unknown_role(self, auth_service):
        with pytest.raises(ValidationError):
            auth_service.ensure_principal("root", "long-password-1", "GOD")
