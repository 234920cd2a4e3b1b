import os

import pytest
from pydantic import ValidationError

from authkernel.config import Environment, Settings, get_settings, reset_settings_cache

ACCESS = "config-access-secret-0123456789-abcdefghijkl"
REFRESH = "config-refresh-secret-0123456789-abcdefghijk"


def test_defaults(tmp_path):
    settings = Settings(
        shared_fs_root=str(tmp_path), access_token_secret=ACCESS, refresh_token_secret=REFRESH
    )

    assert settings.access_token_ttl_minutes == 15
    assert settings.refresh_token_ttl_minutes == 7 * 24 * 60
    assert settings.roles == ["USER", "ADMIN", "MODERATOR", "SUPERADMIN"]
    assert settings.default_role == "USER"
    assert settings.revoke_on_reuse is False
    assert settings.cookie_secure is False


def test_production_enables_secure_cookies(tmp_path):
    settings = Settings(
        shared_fs_root=str(tmp_path),
        access_token_secret=ACCESS,
        refresh_token_secret=REFRESH,
        environment="production",
    )

    assert settings.environment is Environment.PRODUCTION
    assert settings.cookie_secure is True


def test_identical_secrets_rejected(tmp_path):
    with pytest.raises(ValidationError):
        Settings(shared_fs_root=str(tmp_path), access_token_secret=ACCESS, refresh_token_secret=ACCESS)


def test_short_secret_rejected(tmp_path):
    with pytest.raises(ValidationError):
        Settings(shared_fs_root=str(tmp_path), access_token_secret="short", refresh_token_secret=REFRESH)


def test_missing_secrets_are_generated_and_persisted(tmp_path):
    first = Settings(shared_fs_root=str(tmp_path))
    second = Settings(shared_fs_root=str(tmp_path))

    assert first.access_token_secret != first.refresh_token_secret
    assert first.access_token_secret == second.access_token_secret
    assert first.refresh_token_secret == second.refresh_token_secret
    secret_file = tmp_path / ".access_token_secret"
    assert secret_file.read_text() == first.access_token_secret
    assert oct(secret_file.stat().st_mode & 0o777) == "0o600"


def test_roles_parsed_from_comma_separated_string(tmp_path):
    settings = Settings(
        shared_fs_root=str(tmp_path),
        access_token_secret=ACCESS,
        refresh_token_secret=REFRESH,
        roles="reader, writer ,reader",
        default_role="reader",
    )

    assert settings.roles == ["READER", "WRITER"]
    assert settings.default_role == "READER"


def test_default_role_must_be_configured(tmp_path):
    with pytest.raises(ValidationError):
        Settings(
            shared_fs_root=str(tmp_path),
            access_token_secret=ACCESS,
            refresh_token_secret=REFRESH,
            roles="READER",
        )


def test_from_env_reads_environment(monkeypatch, tmp_path):
    monkeypatch.setenv("SHARED_FS_ROOT", str(tmp_path))
    monkeypatch.setenv("ACCESS_TOKEN_SECRET", ACCESS)
    monkeypatch.setenv("REFRESH_TOKEN_SECRET", REFRESH)
    monkeypatch.setenv("ACCESS_TOKEN_TTL_MINUTES", "5")
    monkeypatch.setenv("REVOKE_ON_REUSE", "true")

    settings = Settings.from_env()

    assert settings.access_token_ttl_minutes == 5
    assert settings.revoke_on_reuse is True
    assert settings.shared_fs_root == str(tmp_path)


def test_get_settings_is_cached_until_reset(monkeypatch):
    reset_settings_cache()
    first = get_settings()
    assert get_settings() is first

    monkeypatch.setenv("ALLOW_SIGNUP", "false")
    reset_settings_cache()
    assert get_settings().allow_signup is False
    assert os.environ["ALLOW_SIGNUP"] == "false"
