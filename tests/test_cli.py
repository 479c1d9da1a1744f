"""Tests for CLI commands and argument parsing."""

import argparse
import os
from types import SimpleNamespace
from unittest.mock import patch

import pytest

from passbox.config import Settings
from passbox.main import (
    MASK,
    format_table,
    get_master_password,
    get_settings,
    main,
    report_audit,
)

from conftest import FAST_MEMLIMIT, FAST_OPSLIMIT, MASTER_PASSWORD


@pytest.fixture
def cli(vault_path, monkeypatch):
    """Run the CLI against a temp vault with a cheap KDF."""
    def fast_get_settings(args):
        return Settings(
            vault_path=getattr(args, "file", None) or vault_path,
            lock_timeout=0.2,
            audit_log=None,
            opslimit=FAST_OPSLIMIT,
            memlimit=FAST_MEMLIMIT,
        )

    monkeypatch.setattr("passbox.main.get_settings", fast_get_settings)
    monkeypatch.setenv("PASSWORD_MASTER", MASTER_PASSWORD)

    def run(*argv):
        main(list(argv))

    return run


class TestGetMasterPassword:
    """Tests for get_master_password helper function."""

    def test_flag_wins(self):
        args = argparse.Namespace(master="from-flag")
        with patch.dict(os.environ, {"PASSWORD_MASTER": "from-env"}):
            assert get_master_password(args) == "from-flag"

    def test_from_env(self):
        args = argparse.Namespace(master=None)
        with patch.dict(os.environ, {"PASSWORD_MASTER": "from-env"}):
            assert get_master_password(args) == "from-env"

    @patch("passbox.main.getpass.getpass")
    def test_fallback_to_getpass(self, mock_getpass):
        mock_getpass.return_value = "typed"
        args = argparse.Namespace(master=None)
        with patch.dict(os.environ, {}, clear=True):
            assert get_master_password(args, "Prompt: ") == "typed"
        mock_getpass.assert_called_once_with("Prompt: ")

    @patch("passbox.main.getpass.getpass")
    def test_empty_env_uses_getpass(self, mock_getpass):
        mock_getpass.return_value = "typed"
        args = argparse.Namespace(master=None)
        with patch.dict(os.environ, {"PASSWORD_MASTER": ""}):
            assert get_master_password(args) == "typed"


class TestGetSettings:
    """Tests for get_settings."""

    def test_file_flag(self):
        args = argparse.Namespace(file="/custom/path.data")
        with patch.dict(os.environ, {}, clear=True):
            assert str(get_settings(args).vault_path) == "/custom/path.data"

    def test_env_file(self):
        args = argparse.Namespace(file=None)
        with patch.dict(os.environ, {"PASSBOX_FILE": "/env/path.data"}, clear=True):
            assert str(get_settings(args).vault_path) == "/env/path.data"


class TestFormatTable:
    """Tests for format_table."""

    def test_aligned_columns(self):
        table = format_table([["ID", "ACCOUNT"], ["abc", "x"], ["a", "longer"]])
        lines = table.splitlines()
        assert lines[0] == "ID   ACCOUNT"
        assert lines[1] == "abc  x"
        assert lines[2] == "a    longer"


class TestCmdInit:
    """Tests for init."""

    def test_init_creates_vault(self, cli, vault_path, capsys):
        cli("init")
        assert vault_path.exists()
        assert "Vault created" in capsys.readouterr().out

    def test_init_existing_vault_is_left_alone(self, cli, vault_path, capsys):
        cli("init")
        before = vault_path.read_bytes()
        capsys.readouterr()

        cli("init")

        captured = capsys.readouterr()
        assert "already exists" in captured.err
        assert "Vault created" not in captured.out
        assert vault_path.read_bytes() == before

    @patch("passbox.main.getpass.getpass")
    def test_init_prompts_twice(self, mock_getpass, cli, vault_path, monkeypatch):
        monkeypatch.delenv("PASSWORD_MASTER")
        mock_getpass.side_effect = ["new master pw", "new master pw"]
        cli("init")
        assert mock_getpass.call_count == 2
        assert vault_path.exists()

    @patch("passbox.main.getpass.getpass")
    def test_init_password_mismatch(self, mock_getpass, cli, vault_path, monkeypatch, capsys):
        monkeypatch.delenv("PASSWORD_MASTER")
        mock_getpass.side_effect = ["password1", "password2"]
        with pytest.raises(SystemExit):
            cli("init")
        assert not vault_path.exists()
        assert "do not match" in capsys.readouterr().err


class TestCmdAdd:
    """Tests for add."""

    def test_add_then_update(self, cli, capsys):
        cli("add", "-c", "email", "-u", "user@example.com", "--pw", "first-secret")
        out = capsys.readouterr().out
        assert out.startswith("add password ")
        entry_id = out.split()[2]

        cli("add", "-c", "email", "-u", "user@example.com", "--pw", "second-secret")
        assert capsys.readouterr().out.strip() == f"password {entry_id} updated"

    @patch("passbox.main.getpass.getpass")
    def test_add_prompts_for_secret(self, mock_getpass, cli, capsys):
        mock_getpass.side_effect = ["prompted-secret", "prompted-secret"]
        cli("add", "-c", "email", "-u", "user@example.com")
        assert "success" in capsys.readouterr().out

    def test_add_mismatch(self, cli, capsys):
        with pytest.raises(SystemExit) as exc_info:
            cli("add", "-c", "email", "--pw", "first-secret", "--cpw", "other-secret")
        assert exc_info.value.code == 1
        assert "password mismatch" in capsys.readouterr().err

    def test_add_weak_password(self, cli, capsys):
        with pytest.raises(SystemExit):
            cli("add", "-c", "email", "--pw", "short")
        assert "too short" in capsys.readouterr().err

    def test_wrong_master_password(self, cli, capsys):
        cli("init")
        with pytest.raises(SystemExit):
            cli("add", "--master", "wrong master", "-c", "email", "--pw", "first-secret")
        assert "Cannot unlock" in capsys.readouterr().err


class TestCmdRemove:
    """Tests for remove."""

    def add(self, cli, capsys, label, account):
        cli("add", "-c", label, "-u", account, "--pw", "some-secret")
        return capsys.readouterr().out.split()[2]

    def test_remove_by_id(self, cli, capsys):
        entry_id = self.add(cli, capsys, "email", "a@b.com")
        cli("remove", "--id", entry_id[:6])
        out = capsys.readouterr().out
        assert out.splitlines() == ["deleted passwords:", entry_id]

    def test_remove_by_category_ambiguous(self, cli, capsys):
        self.add(cli, capsys, "work", "a@b.com")
        self.add(cli, capsys, "work", "c@d.com")
        with pytest.raises(SystemExit):
            cli("remove", "-c", "work")
        err = capsys.readouterr().err
        assert "2 entries matched" in err
        assert "use --all" in err

        cli("remove", "-c", "work", "--all")
        assert len(capsys.readouterr().out.splitlines()) == 3

    def test_remove_all_clears(self, cli, capsys):
        first = self.add(cli, capsys, "work", "a@b.com")
        second = self.add(cli, capsys, "home", "c@d.com")
        cli("remove", "-a")
        assert capsys.readouterr().out.splitlines() == ["deleted passwords:", first, second]

    def test_remove_nothing_given(self, cli, capsys):
        with pytest.raises(SystemExit):
            cli("remove")
        assert "Nothing to remove" in capsys.readouterr().err

    def test_remove_not_found(self, cli, capsys):
        with pytest.raises(SystemExit):
            cli("remove", "--id", "ffff")
        assert "Error:" in capsys.readouterr().err


class TestCmdList:
    """Tests for list."""

    def test_list_empty(self, cli, capsys):
        cli("list")
        assert "No passwords." in capsys.readouterr().out

    def test_list_masks_secrets(self, cli, capsys):
        cli("add", "-c", "email", "-u", "a@b.com", "--pw", "visible-secret", "--site", "mail.example")
        capsys.readouterr()

        cli("list")
        out = capsys.readouterr().out
        assert "visible-secret" not in out
        assert MASK in out
        assert "mail.example" in out

    def test_list_show(self, cli, capsys):
        cli("add", "-c", "email", "-u", "a@b.com", "--pw", "visible-secret")
        capsys.readouterr()

        cli("list", "--show")
        assert "visible-secret" in capsys.readouterr().out


class TestMain:
    """Tests for argument parsing."""

    def test_no_command(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main([])
        assert exc_info.value.code == 1

    def test_version_command(self, capsys):
        main(["version"])
        assert capsys.readouterr().out.strip()

    def test_version_flag(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(["--version"])
        assert exc_info.value.code == 0
        assert "passbox" in capsys.readouterr().out

    def test_file_flag(self, cli, temp_vault_dir):
        other = temp_vault_dir / "other.data"
        cli("init", "--file", str(other))
        assert other.exists()


class TestAuditFailures:
    """Audit log problems reach the user as messages, not tracebacks."""

    def test_unusable_audit_log(self, vault_path, temp_vault_dir, monkeypatch, capsys):
        blocker = temp_vault_dir / "blocker"
        blocker.write_text("not a directory")
        monkeypatch.setattr("passbox.main.get_settings", lambda args: Settings(
            vault_path=vault_path,
            lock_timeout=0.2,
            audit_log=blocker / "access.log",
            opslimit=FAST_OPSLIMIT,
            memlimit=FAST_MEMLIMIT,
        ))
        monkeypatch.setenv("PASSWORD_MASTER", MASTER_PASSWORD)

        with pytest.raises(SystemExit) as exc_info:
            main(["list"])
        assert exc_info.value.code == 1
        assert "cannot open audit log" in capsys.readouterr().err

    def test_report_audit_warns(self, capsys):
        vault = SimpleNamespace(audit_failed=True,
                                audit=SimpleNamespace(log_path="/var/log/access.log"))
        report_audit(vault)
        assert "could not write audit log /var/log/access.log" in capsys.readouterr().err

    def test_report_audit_quiet(self, capsys):
        report_audit(SimpleNamespace(audit_failed=False, audit=None))
        assert capsys.readouterr().err == ""
