"""Tests for the administration CLI in main.py."""

import re

import pytest

from auth.store import CredentialStore
from auth.tokens import verify_password
from main import build_parser, main


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite:///{tmp_path / 'cli.db'}"


def _open(db_url):
    return CredentialStore(db_url)


class TestCreateAdmin:
    def test_creates_admin(self, db_url):
        assert main(["--database-url", db_url, "create-admin", "root", "root@example.com", "--password", "s3cret!"]) == 0
        store = _open(db_url)
        try:
            account = store.get_account_by_username("root")
            assert account.is_admin is True
            assert verify_password("s3cret!", account.hashed_password)
        finally:
            store.close()

    def test_promotes_existing_account(self, db_url, capsys):
        main(["--database-url", db_url, "create-admin", "root", "root@example.com", "--password", "s3cret!"])
        store = _open(db_url)
        try:
            account = store.get_account_by_username("root")
            store.update_account(account.id, is_admin=False)
        finally:
            store.close()

        assert main(["--database-url", db_url, "create-admin", "root", "root@example.com"]) == 0
        assert "promoted" in capsys.readouterr().out
        store = _open(db_url)
        try:
            assert store.get_account_by_username("root").is_admin is True
        finally:
            store.close()

    def test_short_password_rejected(self, db_url):
        assert main(["--database-url", db_url, "create-admin", "root", "root@example.com", "--password", "abc"]) == 1

    def test_password_over_bcrypt_limit_rejected(self, db_url, capsys):
        assert main(["--database-url", db_url, "create-admin", "root", "root@example.com", "--password", "é" * 40]) == 1
        assert "bytes" in capsys.readouterr().out
        store = _open(db_url)
        try:
            assert store.get_account_by_username("root") is None
        finally:
            store.close()

    def test_prompted_passwords_must_match(self, db_url, monkeypatch):
        answers = iter(["first-pass", "second-pass"])
        monkeypatch.setattr("getpass.getpass", lambda prompt="": next(answers))
        assert main(["--database-url", db_url, "create-admin", "root", "root@example.com"]) == 1


class TestGenerateKeys:
    def test_prints_one_key_per_line(self, db_url, capsys):
        assert main(["--database-url", db_url, "generate-keys", "--quantity", "3", "--days", "7", "--prefix", "CLI"]) == 0
        lines = capsys.readouterr().out.split()
        assert len(lines) == 3
        assert all(re.match(r"^CLI-[0-9A-F]{16}-[0-9A-F]{16}$", line) for line in lines)

    def test_out_of_range_quantity(self, db_url, capsys):
        assert main(["--database-url", db_url, "generate-keys", "--quantity", "0"]) == 1
        assert "quantity" in capsys.readouterr().out


def test_stats(db_url, capsys):
    main(["--database-url", db_url, "generate-keys", "--quantity", "2"])
    capsys.readouterr()
    assert main(["--database-url", db_url, "stats"]) == 0
    out = capsys.readouterr().out
    assert "Users:    0" in out
    assert "Keys:     2" in out


def test_no_command_prints_help(capsys):
    assert main([]) == 0
    assert "create-admin" in capsys.readouterr().out


def test_parser_defaults():
    args = build_parser().parse_args(["generate-keys"])
    assert (args.quantity, args.days, args.prefix, args.notes) == (1, 0, None, None)
