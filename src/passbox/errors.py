#!/usr/bin/env python3
"""Errors - Typed failures raised by the passbox vault engine.

Every error carries a stable ``code`` so callers can classify a failure
without string matching.
"""

from typing import List, Optional


# Error codes
ERROR_CODES = {
    "IO_ERROR": "Vault file could not be read or written",
    "CORRUPT_VAULT": "Vault contents are corrupted",
    "CORRUPT_FORMAT": "Vault file header is malformed",
    "INVALID_PASSWORD": "Cannot unlock vault: wrong master password or corrupted file",
    "VAULT_LOCKED": "Vault is locked",
    "NOT_FOUND": "Entry not found",
    "AMBIGUOUS_MATCH": "More than one entry matched",
    "INVALID_QUERY": "Invalid query",
    "WEAK_PASSWORD": "Password does not meet policy",
    "LOCK_TIMEOUT": "Timed out waiting for vault lock",
    "CONFIG_ERROR": "Invalid configuration",
}


class PassboxError(Exception):
    """Base class for all vault engine errors."""

    code = "IO_ERROR"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or ERROR_CODES[self.code])


class VaultIOError(PassboxError):
    """Filesystem-level failure (permissions, disk, missing directory)."""

    code = "IO_ERROR"


class IdCollision(VaultIOError):
    """A freshly generated entry id already exists in the vault."""


class CorruptVault(PassboxError):
    """Ciphertext authenticated but the plaintext could not be decoded."""

    code = "CORRUPT_VAULT"


class CorruptFormat(CorruptVault):
    """File is present but its header is malformed or truncated."""

    code = "CORRUPT_FORMAT"


class WrongMasterPassword(PassboxError):
    code = "INVALID_PASSWORD"


class VaultLocked(PassboxError):
    code = "VAULT_LOCKED"


class NotFound(PassboxError):
    code = "NOT_FOUND"


class AmbiguousMatch(PassboxError):
    """A lookup matched several entries and ``remove_all`` was not set."""

    code = "AMBIGUOUS_MATCH"

    def __init__(self, candidates: List[str], message: Optional[str] = None):
        self.candidates = list(candidates)
        super().__init__(
            message or f"{len(self.candidates)} entries matched: " + ", ".join(self.candidates)
        )


class InvalidQuery(PassboxError):
    code = "INVALID_QUERY"


class WeakPassword(PassboxError):
    code = "WEAK_PASSWORD"


class LockTimeout(PassboxError):
    code = "LOCK_TIMEOUT"


class ConfigError(PassboxError):
    code = "CONFIG_ERROR"


class AuthenticationFailed(Exception):
    """Decryption tag mismatch. Wrong key and tampered bytes look the same."""


class MalformedData(Exception):
    """Decrypted payload is not a valid entry collection."""
