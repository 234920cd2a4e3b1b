import importlib.util
from pathlib import Path

import pytest

from authkernel.service.runtime import get_runtime

SCRIPT = Path(__file__).resolve().parent.parent / "scripts" / "bootstrap_admin.py"


@pytest.fixture
def bootstrap():
    spec = importlib.util.spec_from_file_location("bootstrap_admin", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_creates_superadmin(bootstrap):
    result = bootstrap.bootstrap_principal("root", "very-long-password")

    assert result["status"] == "created"
    assert result["role"] == "SUPERADMIN"
    stored = get_runtime().store.get_principal_by_username("root")
    assert stored.role == "SUPERADMIN"


def test_promotes_existing_principal(bootstrap):
    bootstrap.bootstrap_principal("root", "very-long-password", role="USER")

    result = bootstrap.bootstrap_principal("root", "very-long-password", role="ADMIN")

    assert result["status"] == "promoted"
    assert get_runtime().store.get_principal_by_username("root").role == "ADMIN"


def test_unchanged_when_role_matches(bootstrap):
    bootstrap.bootstrap_principal("root", "very-long-password")
    assert bootstrap.bootstrap_principal("root", "very-long-password")["status"] == "unchanged"


def test_dry_run_makes_no_changes(bootstrap):
    result = bootstrap.bootstrap_principal("root", "very-long-password", dry_run=True)

    assert result["status"] == "dry_run"
    assert get_runtime().store.get_principal_by_username("root") is None


def test_main_rejects_short_password(bootstrap, capsys):
    assert bootstrap.main(["--username", "root", "--password", "short"]) == 1
    assert "at least" in capsys.readouterr().out


def test_main_reports_unknown_role(bootstrap, capsys):
    code = bootstrap.main(["--username", "root", "--password", "very-long-password", "--role", "GOD"])

    assert code == 1
    assert "unknown role" in capsys.readouterr().out


def test_role_must_match_exactly(bootstrap, capsys):
    code = bootstrap.main(["--username", "root", "--password", "very-long-password", "--role", "admin"])

    assert code == 1
    assert "unknown role" in capsys.readouterr().out
    assert get_runtime().store.get_principal_by_username("root") is None


def test_list_shows_principals_oldest_first(bootstrap, capsys):
    bootstrap.bootstrap_principal("root", "very-long-password")
    bootstrap.bootstrap_principal("ops", "very-long-password", role="ADMIN")

    listed = bootstrap.list_principals()
    assert [(p["username"], p["role"]) for p in listed] == [("root", "SUPERADMIN"), ("ops", "ADMIN")]

    assert bootstrap.main(["--list"]) == 0
    out = capsys.readouterr().out
    assert "root  SUPERADMIN" in out
    assert "ops  ADMIN" in out
    assert "very-long-password" not in out
