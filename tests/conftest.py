"""Pytest fixtures and utilities for passbox tests."""

import tempfile
from pathlib import Path

import pytest
import nacl.pwhash

# Add src to path for imports
import sys
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from passbox.audit import AuditLogger
from passbox.config import Settings
from passbox.vault import Vault

MASTER_PASSWORD = "correct horse battery"

# Cheapest Argon2id parameters so tests don't spend seconds in the KDF
FAST_OPSLIMIT = nacl.pwhash.argon2id.OPSLIMIT_MIN
FAST_MEMLIMIT = nacl.pwhash.argon2id.MEMLIMIT_MIN


@pytest.fixture
def temp_vault_dir():
    """Create a temporary directory for vault files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def vault_path(temp_vault_dir):
    return temp_vault_dir / "password.data"


@pytest.fixture
def fast_settings(vault_path):
    """Settings with a cheap KDF, short lock timeout and no audit log."""
    return Settings(
        vault_path=vault_path,
        lock_timeout=0.2,
        audit_log=None,
        opslimit=FAST_OPSLIMIT,
        memlimit=FAST_MEMLIMIT,
    )


@pytest.fixture
def audit_logger(temp_vault_dir):
    """Create an audit logger with temp log path."""
    log_path = temp_vault_dir / "logs" / "access.log"
    yield AuditLogger(log_path, command="pytest")


@pytest.fixture
def unlocked_vault(fast_settings):
    """A freshly bootstrapped, unlocked vault."""
    vault = Vault.open(settings=fast_settings)
    vault.unlock_or_bootstrap(MASTER_PASSWORD)
    yield vault
    vault.close()


@pytest.fixture
def populated_vault(unlocked_vault):
    """Unlocked vault with a few entries."""
    entries = [
        ("work", "alice@example.com", "work-secret-1"),
        ("work", "bob@example.com", "work-secret-2"),
        ("email", "alice@example.com", "mail-secret-3"),
        ("", "root", "uncategorized-4"),
    ]
    ids = {}
    for label, account, secret in entries:
        entry_id, _ = unlocked_vault.add(label, account, secret)
        ids[(label, account)] = entry_id
    unlocked_vault.test_ids = ids
    return unlocked_vault


def reopen(settings, password=MASTER_PASSWORD):
    """Open the vault file from scratch, as a new process would."""
    vault = Vault.open(settings=settings)
    vault.unlock_or_bootstrap(password)
    return vault


def assert_log_entry(audit_logger, result, action, target=None):
    """Helper to verify a log entry exists."""
    for line in audit_logger.read_recent(100):
        parts = line.strip().split()
        if len(parts) >= 5 and parts[2] == result and parts[3] == action:
            if target is None or parts[4] == target:
                return True
    return False
