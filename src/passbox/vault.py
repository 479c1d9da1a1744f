#!/usr/bin/env python3
"""Vault - Unlock/bootstrap state machine and record operations.

A Vault is opened per invocation. ``unlock_or_bootstrap`` either creates
a fresh container (empty file) or derives the key and decrypts the
existing one. Every mutation runs under the exclusive file lock:
reload, apply to a copy, encrypt with a fresh nonce, save atomically,
and only then swap the copy in. A failure at any step leaves both the
in-memory collection and the file at their last good state.
"""

from contextlib import contextmanager
from enum import Enum
from pathlib import Path
from typing import Callable, Iterator, List, Optional, Tuple

from .audit import AuditLogger
from .config import Settings
from .crypto import decrypt, derive_key, encrypt, generate_nonce, generate_salt, wipe
from .entry import Entry, check_password, find_by_account, find_by_id, is_valid_text
from .errors import (
    AmbiguousMatch,
    AuthenticationFailed,
    CorruptVault,
    IdCollision,
    InvalidQuery,
    MalformedData,
    NotFound,
    PassboxError,
    VaultIOError,
    VaultLocked,
    WeakPassword,
    WrongMasterPassword,
)
from .locking import VaultLock
from .repository import FileRepository, VaultContainer
from .serializer import decode, encode

# Failures caused by the request rather than the vault
DENIED_CODES = {"INVALID_PASSWORD", "VAULT_LOCKED", "NOT_FOUND", "AMBIGUOUS_MATCH",
                "INVALID_QUERY", "WEAK_PASSWORD"}


class VaultState(Enum):
    UNINITIALIZED = "uninitialized"
    LOCKED = "locked"
    UNLOCKED = "unlocked"


class EntryView:
    """Read-only, restartable view over a snapshot of the entries."""

    def __init__(self, entries: Tuple[Entry, ...]):
        self._entries = entries

    def __iter__(self) -> Iterator[Entry]:
        for entry in self._entries:
            yield entry

    def __len__(self) -> int:
        return len(self._entries)

    def __bool__(self) -> bool:
        return bool(self._entries)


def _select(matches: List[Entry], remove_all: bool, query: str) -> List[str]:
    """Apply the ambiguity policy to a list of matches."""
    if not matches:
        raise NotFound(f"no entry matches {query}")
    ids = [e.id for e in matches]
    if len(ids) > 1 and not remove_all:
        raise AmbiguousMatch(ids)
    return ids


class Vault:
    """Encrypted credential collection backed by a single file."""

    def __init__(self, path, settings: Optional[Settings] = None,
                 audit_logger: Optional[AuditLogger] = None):
        self.settings = settings or Settings()
        self.path = Path(path)
        self.repository = FileRepository(self.path)
        self.lock = VaultLock(self.path, timeout=self.settings.lock_timeout)
        if audit_logger is None and self.settings.audit_log is not None:
            audit_logger = AuditLogger(self.settings.audit_log)
        self.audit = audit_logger
        self.audit_failed = False

        self.state = VaultState.UNINITIALIZED
        self._container: Optional[VaultContainer] = None
        self._key: Optional[bytearray] = None
        self._entries: List[Entry] = []

    @classmethod
    def open(cls, path=None, settings: Optional[Settings] = None,
             audit_logger: Optional[AuditLogger] = None) -> "Vault":
        """Open a vault file and classify it as UNINITIALIZED or LOCKED.

        Args:
            path: Vault file; defaults to settings.vault_path
            settings: Engine settings
            audit_logger: Logger to use instead of one built from settings

        Raises:
            CorruptFormat: If the file exists but is not a vault
            VaultIOError: On filesystem errors, or if the audit log cannot be opened
            LockTimeout: If a writer holds the lock too long

        """
        settings = settings or Settings()
        vault = cls(path if path is not None else settings.vault_path, settings, audit_logger)
        with vault.lock.shared():
            vault._container = vault.repository.load()
        if vault._container is not None:
            vault.state = VaultState.LOCKED
        return vault

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    @property
    def is_unlocked(self) -> bool:
        return self.state is VaultState.UNLOCKED

    def _record(self, action: str, result: str, target=None, reason: Optional[str] = None) -> None:
        if self.audit is not None and not self.audit.record(action, result, target, reason):
            self.audit_failed = True

    @contextmanager
    def _audited(self, action: str, target=None):
        try:
            yield
        except PassboxError as e:
            result = "DENIED" if e.code in DENIED_CODES else "ERROR"
            self._record(action, result, target, e.code)
            raise

    # ------------------------------------------------------------------
    # Unlock / bootstrap
    # ------------------------------------------------------------------

    def unlock_or_bootstrap(self, master_password: str) -> None:
        """Unlock the vault, creating it first if the file is empty.

        Calling this on an unlocked vault does nothing.

        Raises:
            WeakPassword: If the master password for a new vault is empty or
                not valid UTF-8 text
            WrongMasterPassword: If the password is wrong or the ciphertext
                was modified (the two cannot be told apart)
            CorruptVault: If decryption succeeded but the contents do not
                decode
            VaultIOError, LockTimeout: On storage failures

        """
        if self.state is VaultState.UNLOCKED:
            return

        if self.state is VaultState.UNINITIALIZED:
            with self._audited("BOOTSTRAP"):
                if not master_password:
                    raise WeakPassword("master password is empty")
                if not is_valid_text(master_password):
                    raise WeakPassword("master password is not valid UTF-8 text")
                self._bootstrap(master_password)
            return

        with self._audited("UNLOCK"):
            if not is_valid_text(master_password):
                raise WrongMasterPassword()
            self._unlock(master_password, self._container)

    def _bootstrap(self, master_password: str) -> None:
        with self.lock.exclusive():
            container = self.repository.load()
            if container is None:
                salt = generate_salt()
                opslimit, memlimit = self.settings.opslimit, self.settings.memlimit
                key = bytearray(derive_key(master_password, salt, opslimit, memlimit))
                try:
                    container = self._seal(key, [], salt, opslimit, memlimit)
                    self.repository.save(container)
                except PassboxError:
                    wipe(key)
                    raise
                self._set_unlocked(key, container, [])
                self._record("BOOTSTRAP", "OK", str(self.path))
                return

        # Another process created the vault while we waited for the lock
        self._container = container
        self.state = VaultState.LOCKED
        self._unlock(master_password, container)

    def _unlock(self, master_password: str, container: VaultContainer) -> None:
        key = bytearray(derive_key(master_password, container.salt,
                                   container.opslimit, container.memlimit))
        try:
            entries = self._open_container(key, container)
        except PassboxError:
            wipe(key)
            raise
        self._set_unlocked(key, container, entries)
        self._record("UNLOCK", "OK", f"{len(entries)} entries")

    def _open_container(self, key, container: VaultContainer) -> List[Entry]:
        try:
            plaintext = decrypt(key, container.nonce, container.ciphertext)
        except AuthenticationFailed:
            raise WrongMasterPassword() from None
        try:
            return decode(plaintext)
        except MalformedData as e:
            raise CorruptVault(f"vault contents cannot be decoded: {e}") from e

    def _seal(self, key, entries: List[Entry], salt: bytes,
              opslimit: int, memlimit: int) -> VaultContainer:
        nonce = generate_nonce()
        return VaultContainer(
            salt=salt,
            nonce=nonce,
            ciphertext=encrypt(key, nonce, encode(entries)),
            opslimit=opslimit,
            memlimit=memlimit,
        )

    def _set_unlocked(self, key: bytearray, container: VaultContainer, entries: List[Entry]) -> None:
        self._key = key
        self._container = container
        self._entries = entries
        self.state = VaultState.UNLOCKED

    def close(self) -> None:
        """Wipe the key and drop decrypted entries."""
        if self._key is not None:
            wipe(self._key)
            self._key = None
        self._entries = []
        if self.state is VaultState.UNLOCKED:
            self.state = VaultState.LOCKED

    # ------------------------------------------------------------------
    # Record operations
    # ------------------------------------------------------------------

    def _require_unlocked(self) -> None:
        if self.state is not VaultState.UNLOCKED:
            raise VaultLocked("vault is locked; unlock it first")

    def _refresh(self) -> List[Entry]:
        """Pick up changes another process saved since we last read the file."""
        container = self.repository.load()
        if container is None:
            raise VaultIOError(f"vault file {self.path} is missing or empty")
        if container == self._container:
            return self._entries
        if container.salt != self._container.salt:
            raise CorruptVault(f"vault {self.path} was re-initialized by another process; reopen it")
        entries = self._open_container(self._key, container)
        self._container = container
        self._entries = entries
        return entries

    def _mutate(self, apply: Callable[[List[Entry]], Tuple[object, bool]]):
        """Run ``apply`` on a copy of the entries and persist the copy.

        ``apply`` returns ``(result, changed)``; nothing is written when
        ``changed`` is false.
        """
        self._require_unlocked()
        with self.lock.exclusive():
            working = list(self._refresh())
            result, changed = apply(working)
            if changed:
                container = self._seal(self._key, working, self._container.salt,
                                       self._container.opslimit, self._container.memlimit)
                self.repository.save(container)
                self._container = container
                self._entries = working
        return result

    def add(self, label: str, account: str, secret: str, site: str = "",
            tips: str = "", confirm: Optional[str] = None) -> Tuple[str, bool]:
        """Add a credential, or replace the secret of an existing one.

        An entry with exactly the same label and account is the same
        credential: its secret is replaced and its id kept.

        Args:
            label: Category; empty means uncategorized
            account: Account name; may be empty
            secret: Password to store
            site: Optional site, kept on update when empty
            tips: Optional hint, kept on update when empty
            confirm: Repeated password; checked against secret when given

        Returns:
            Tuple of (id, updated)

        Raises:
            VaultLocked: If the vault is not unlocked
            InvalidQuery: If a text field is not valid UTF-8 text
            WeakPassword: If the secret fails the password policy
            IdCollision: If a new id clashes with an existing one

        """
        target = f"{label}/{account}"
        with self._audited("ADD", target):
            self._require_unlocked()
            for name, value in (("label", label), ("account", account),
                                ("site", site), ("tips", tips)):
                if not is_valid_text(value):
                    raise InvalidQuery(f"{name} is not valid UTF-8 text")
            check_password(secret, confirm, self.settings.min_password_length)

            def apply(entries: List[Entry]):
                for i, entry in enumerate(entries):
                    if entry.is_same_credential(label, account):
                        entries[i] = entry.with_secret(secret, site, tips)
                        return (entry.id, True), True

                new = Entry.create(label, account, secret, site, tips)
                if any(entry.id == new.id for entry in entries):
                    raise IdCollision(f"generated id {new.id} already exists")
                entries.append(new)
                return (new.id, False), True

            entry_id, updated = self._mutate(apply)

        self._record("UPDATE" if updated else "ADD", "OK", entry_id)
        return entry_id, updated

    def _remove_matching(self, action: str, target: str,
                         match: Callable[[List[Entry]], List[Entry]],
                         remove_all: bool) -> List[str]:
        with self._audited(action, target):
            def apply(entries: List[Entry]):
                ids = _select(match(entries), remove_all, target)
                doomed = set(ids)
                entries[:] = [e for e in entries if e.id not in doomed]
                return ids, True

            removed = self._mutate(apply)

        self._record(action, "OK", removed)
        return removed

    def remove(self, id_or_prefix: str, remove_all: bool = False) -> List[str]:
        """Remove entries by id or id prefix.

        An exact id match is removed on its own; otherwise every id
        starting with ``id_or_prefix`` is a candidate.

        Returns:
            Removed ids in stored order

        Raises:
            InvalidQuery: If id_or_prefix is empty
            NotFound: If nothing matches
            AmbiguousMatch: If several match and remove_all is False

        """
        if not id_or_prefix:
            with self._audited("REMOVE"):
                raise InvalidQuery("entry id must not be empty")
        return self._remove_matching(
            "REMOVE", id_or_prefix,
            lambda entries: find_by_id(entries, id_or_prefix),
            remove_all,
        )

    def remove_by_account(self, label: str, account: str, remove_all: bool = False) -> List[str]:
        """Remove entries by label and/or account; empty fields match anything."""
        if not label and not account:
            with self._audited("REMOVE"):
                raise InvalidQuery("label or account must be given")
        return self._remove_matching(
            "REMOVE", f"{label or '*'}/{account or '*'}",
            lambda entries: find_by_account(entries, label, account),
            remove_all,
        )

    def clear(self) -> List[str]:
        """Remove every entry.

        Returns:
            The removed ids in their prior order (empty for an empty vault)

        """
        with self._audited("CLEAR"):
            def apply(entries: List[Entry]):
                ids = [e.id for e in entries]
                entries.clear()
                return ids, bool(ids)

            removed = self._mutate(apply)

        self._record("CLEAR", "OK", removed)
        return removed

    def list(self) -> EntryView:
        """Entries in insertion order. Read-only; nothing is persisted."""
        self._require_unlocked()
        return EntryView(tuple(self._entries))

    def list_to(self, sink: Callable[[Entry], None]) -> int:
        """Feed every entry to ``sink``; returns the number written."""
        count = 0
        for entry in self.list():
            sink(entry)
            count += 1
        return count
