#!/usr/bin/env python3
"""Entry - A single credential record and the rules for matching it.

Entries are identified by a short hex id derived from the label, the
account and a random per-entry nonce. Lookups by id try an exact match
first and fall back to a prefix scan.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Iterable, List, Optional

import nacl.encoding
import nacl.hash
import nacl.utils

from .errors import WeakPassword

ID_LENGTH = 16          # hex characters kept from the digest
ID_NONCE_SIZE = 16
MIN_PASSWORD_LENGTH = 8


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def is_valid_text(value: str) -> bool:
    """True if value encodes as UTF-8 (no lone surrogates)."""
    try:
        value.encode('utf-8')
    except UnicodeEncodeError:
        return False
    return True


def make_id(label: str, account: str, nonce: Optional[bytes] = None) -> str:
    """Derive an entry id.

    Args:
        label: Entry label
        account: Entry account
        nonce: Per-entry random bytes; a fresh one is drawn when omitted

    Returns:
        Lowercase hex string of ID_LENGTH characters

    """
    if nonce is None:
        nonce = nacl.utils.random(ID_NONCE_SIZE)
    data = b"\x00".join([label.encode('utf-8'), account.encode('utf-8'), nonce])
    digest = nacl.hash.blake2b(data, digest_size=nacl.hash.BLAKE2B_BYTES_MIN,
                              encoder=nacl.encoding.HexEncoder)
    return digest.decode("ascii")[:ID_LENGTH]


@dataclass
class Entry:
    """One credential record."""

    id: str
    label: str
    account: str
    secret: str = field(repr=False)
    site: str = ""
    tips: str = ""
    created_at: str = field(default_factory=utc_now)
    updated_at: str = ""

    def __post_init__(self):
        if not self.updated_at:
            self.updated_at = self.created_at

    @classmethod
    def create(cls, label: str, account: str, secret: str,
               site: str = "", tips: str = "") -> "Entry":
        return cls(id=make_id(label, account), label=label, account=account,
                   secret=secret, site=site, tips=tips)

    def is_same_credential(self, label: str, account: str) -> bool:
        """Exact (label, account) match used by add's update rule."""
        return self.label == label and self.account == account

    def matches_account(self, label: str, account: str) -> bool:
        """Match on label and/or account; an empty field matches anything."""
        if label and self.label != label:
            return False
        if account and self.account != account:
            return False
        return True

    def with_secret(self, secret: str, site: str = "", tips: str = "") -> "Entry":
        return replace(
            self,
            secret=secret,
            site=site or self.site,
            tips=tips or self.tips,
            updated_at=utc_now(),
        )


def find_by_id(entries: Iterable[Entry], id_or_prefix: str) -> List[Entry]:
    """Look up entries by id.

    Exact match wins outright; only if no id equals ``id_or_prefix`` are
    ids starting with it collected, in stored order.
    """
    entries = list(entries)
    exact = [e for e in entries if e.id == id_or_prefix]
    if exact:
        return exact
    return [e for e in entries if e.id.startswith(id_or_prefix)]


def find_by_account(entries: Iterable[Entry], label: str, account: str) -> List[Entry]:
    return [e for e in entries if e.matches_account(label, account)]


def check_password(secret: str, confirm: Optional[str] = None,
                   min_length: int = MIN_PASSWORD_LENGTH) -> None:
    """Validate a secret against the password policy.

    Policy: confirmation (when given) must match, the secret must not be
    empty or whitespace only, must be valid UTF-8 text, and must be at
    least ``min_length`` characters long.

    Raises:
        WeakPassword: If any rule fails

    """
    if confirm is not None and secret != confirm:
        raise WeakPassword("password mismatch")
    if not secret or not secret.strip():
        raise WeakPassword("password is empty")
    if not is_valid_text(secret):
        raise WeakPassword("password is not valid UTF-8 text")
    if len(secret) < min_length:
        raise WeakPassword(f"password too short (minimum {min_length} characters)")
