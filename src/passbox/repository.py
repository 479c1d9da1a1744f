#!/usr/bin/env python3
"""Repository - Binary vault container and crash-safe file storage.

On-disk layout (all fields fixed width, integers big-endian):

    [magic:4][version:1][opslimit:4][memlimit:8][salt:16][nonce:24][length:4][ciphertext+tag]

``length`` is the size of the ciphertext that follows, so a file cut short
or padded anywhere after the header is rejected before decryption.

Saves go to a temp file in the same directory which is fsynced and then
renamed over the target, so the vault file is either the old container
or the new one, never a mix.
"""

import os
import struct
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .crypto import MAC_SIZE, NONCE_SIZE, SALT_SIZE, valid_kdf_limits
from .errors import CorruptFormat, VaultIOError

MAGIC = b"PWBX"
VERSION = 2
HEADER = struct.Struct(f">4sBIQ{SALT_SIZE}s{NONCE_SIZE}sI")
HEADER_SIZE = HEADER.size
FILE_MODE = 0o600


@dataclass(frozen=True)
class VaultContainer:
    """Raw vault file contents; opaque to everything but the vault."""

    salt: bytes
    nonce: bytes
    ciphertext: bytes
    opslimit: int
    memlimit: int
    version: int = VERSION

    def pack(self) -> bytes:
        header = HEADER.pack(MAGIC, self.version, self.opslimit, self.memlimit,
                             self.salt, self.nonce, len(self.ciphertext))
        return header + self.ciphertext

    @classmethod
    def unpack(cls, data: bytes) -> "VaultContainer":
        """Parse container bytes.

        Raises:
            CorruptFormat: If the data is truncated, has the wrong magic,
                an unsupported version, out-of-range KDF limits
                or a ciphertext length that does not match the header

        """
        if len(data) < HEADER_SIZE + MAC_SIZE:
            raise CorruptFormat(f"vault file truncated ({len(data)} bytes)")

        magic, version, opslimit, memlimit, salt, nonce, length = HEADER.unpack_from(data)
        if magic != MAGIC:
            raise CorruptFormat("not a passbox vault file (bad magic)")
        if version != VERSION:
            raise CorruptFormat(f"unsupported vault format version: {version}")
        if not valid_kdf_limits(opslimit, memlimit):
            raise CorruptFormat("invalid key derivation parameters in header")
        if len(data) - HEADER_SIZE != length:
            raise CorruptFormat(
                f"vault file truncated or padded: expected {length} bytes of "
                f"ciphertext, found {len(data) - HEADER_SIZE}"
            )

        return cls(
            salt=salt,
            nonce=nonce,
            ciphertext=data[HEADER_SIZE:],
            opslimit=opslimit,
            memlimit=memlimit,
            version=version,
        )


class FileRepository:
    """Loads and atomically saves a VaultContainer at a fixed path."""

    def __init__(self, path):
        self.path = Path(path)

    def load(self) -> Optional[VaultContainer]:
        """Read the container.

        Returns:
            VaultContainer, or None if the file does not exist or is empty

        Raises:
            CorruptFormat: If the file is present but not a valid container
            VaultIOError: On filesystem errors

        """
        try:
            data = self.path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise VaultIOError(f"cannot read {self.path}: {e.strerror or e}") from e

        if not data:
            return None
        return VaultContainer.unpack(data)

    def save(self, container: VaultContainer) -> None:
        """Write the container atomically.

        Raises:
            VaultIOError: If any step fails; the previous file is untouched

        """
        data = container.pack()
        dirpath = self.path.parent
        tmp_path = None
        try:
            fd, tmp_path = tempfile.mkstemp(prefix=f".{self.path.name}.", suffix=".tmp", dir=dirpath)
            with os.fdopen(fd, "wb") as tmp:
                tmp.write(data)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.chmod(tmp_path, FILE_MODE)
            os.replace(tmp_path, self.path)
            tmp_path = None
            self._sync_dir(dirpath)
        except OSError as e:
            raise VaultIOError(f"cannot write {self.path}: {e.strerror or e}") from e
        finally:
            if tmp_path is not None and os.path.exists(tmp_path):
                os.remove(tmp_path)

    @staticmethod
    def _sync_dir(dirpath: Path) -> None:
        """Flush the rename to disk where the platform allows it."""
        try:
            fd = os.open(str(dirpath), os.O_RDONLY)
        except OSError:
            return
        try:
            os.fsync(fd)
        except OSError:
            pass
        finally:
            os.close(fd)
