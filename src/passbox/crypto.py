#!/usr/bin/env python3
"""Crypto - Key derivation and authenticated encryption for vault blobs.

Argon2id turns the master password into a 32-byte key and libsodium's
SecretBox (XSalsa20-Poly1305) seals the serialized entry collection.
Nothing here knows about entries or files.
"""

import nacl.exceptions
import nacl.pwhash
import nacl.secret
import nacl.utils

from .errors import AuthenticationFailed

# Constants
SALT_SIZE = nacl.pwhash.argon2id.SALTBYTES
NONCE_SIZE = nacl.secret.SecretBox.NONCE_SIZE
KEY_SIZE = nacl.secret.SecretBox.KEY_SIZE
MAC_SIZE = nacl.secret.SecretBox.MACBYTES
OPS_LIMIT = nacl.pwhash.argon2id.OPSLIMIT_INTERACTIVE
MEM_LIMIT = nacl.pwhash.argon2id.MEMLIMIT_INTERACTIVE


def derive_key(password: str, salt: bytes, opslimit: int = OPS_LIMIT,
               memlimit: int = MEM_LIMIT) -> bytes:
    """Derive encryption key from password using Argon2id.

    Args:
        password: Master password
        salt: SALT_SIZE random bytes stored in the vault header
        opslimit: Argon2id CPU cost
        memlimit: Argon2id memory cost in bytes

    Returns:
        KEY_SIZE byte key

    """
    return nacl.pwhash.argon2id.kdf(
        KEY_SIZE,
        password.encode('utf-8'),
        salt,
        opslimit=opslimit,
        memlimit=memlimit
    )


def generate_salt() -> bytes:
    return nacl.utils.random(SALT_SIZE)


def generate_nonce() -> bytes:
    return nacl.utils.random(NONCE_SIZE)


def encrypt(key, nonce: bytes, plaintext: bytes) -> bytes:
    """Seal plaintext with SecretBox.

    Returns the mac + ciphertext part only; the nonce is stored separately
    in the container header.
    """
    box = nacl.secret.SecretBox(bytes(key))
    sealed = box.encrypt(plaintext, nonce)
    return sealed.ciphertext


def decrypt(key, nonce: bytes, ciphertext: bytes) -> bytes:
    """Open a SecretBox ciphertext.

    Raises:
        AuthenticationFailed: If the tag does not verify (wrong key or
            modified bytes) or the ciphertext is too short to hold a tag

    """
    box = nacl.secret.SecretBox(bytes(key))
    try:
        return box.decrypt(ciphertext, nonce)
    except nacl.exceptions.CryptoError as e:
        raise AuthenticationFailed(str(e)) from e


def wipe(buffer) -> None:
    """Overwrite a mutable buffer with zeros (best effort)."""
    if isinstance(buffer, bytearray):
        for i in range(len(buffer)):
            buffer[i] = 0


def valid_kdf_limits(opslimit: int, memlimit: int) -> bool:
    """Check Argon2id limits read back from a vault header."""
    return (nacl.pwhash.argon2id.OPSLIMIT_MIN <= opslimit <= nacl.pwhash.argon2id.OPSLIMIT_MAX
            and nacl.pwhash.argon2id.MEMLIMIT_MIN <= memlimit <= nacl.pwhash.argon2id.MEMLIMIT_MAX)
