#!/usr/bin/env python3
"""Vault Lock - Cross-process advisory locking for the vault file.

A sibling ``<vault>.lock`` file is flock()ed exclusively for every
read-modify-write cycle and shared for plain reads. The holder's PID is
written into the lock file so a timed-out waiter can say who is blocking
it.
"""

import fcntl
import os
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

import psutil

from .errors import LockTimeout, VaultIOError

DEFAULT_TIMEOUT = 10.0
POLL_INTERVAL = 0.05


def lock_path_for(vault_path) -> Path:
    vault_path = Path(vault_path)
    return vault_path.with_name(vault_path.name + ".lock")


def describe_holder(pid: Optional[int]) -> str:
    """Describe the process recorded as lock holder.

    Args:
        pid: PID read from the lock file, or None

    Returns:
        Human readable description for error messages

    """
    if not pid:
        return "unknown process"

    try:
        proc = psutil.Process(pid)
        return f"PID {pid} ({proc.name()})"
    except psutil.NoSuchProcess:
        return f"PID {pid} (no longer running)"
    except psutil.AccessDenied:
        return f"PID {pid}"


class VaultLock:
    """Advisory lock guarding one vault file."""

    def __init__(self, vault_path, timeout: float = DEFAULT_TIMEOUT):
        self.path = lock_path_for(vault_path)
        self.timeout = timeout

    def _open(self) -> int:
        try:
            return os.open(str(self.path), os.O_RDWR | os.O_CREAT, 0o600)
        except OSError as e:
            raise VaultIOError(f"cannot open lock file {self.path}: {e.strerror or e}") from e

    def _read_holder(self, fd: int) -> Optional[int]:
        try:
            os.lseek(fd, 0, os.SEEK_SET)
            return int(os.read(fd, 32).decode('ascii').strip())
        except (ValueError, UnicodeDecodeError, OSError):
            return None

    def _write_holder(self, fd: int) -> None:
        os.ftruncate(fd, 0)
        os.lseek(fd, 0, os.SEEK_SET)
        os.write(fd, str(os.getpid()).encode('ascii'))

    def _acquire(self, fd: int, operation: int, kind: str) -> None:
        deadline = time.monotonic() + self.timeout
        while True:
            try:
                fcntl.flock(fd, operation | fcntl.LOCK_NB)
                return
            except BlockingIOError:
                if time.monotonic() >= deadline:
                    holder = describe_holder(self._read_holder(fd))
                    raise LockTimeout(
                        f"timed out after {self.timeout:g}s waiting for {kind} lock "
                        f"on {self.path} (held by {holder})"
                    )
                time.sleep(POLL_INTERVAL)
            except OSError as e:
                raise VaultIOError(f"cannot lock {self.path}: {e.strerror or e}") from e

    @contextmanager
    def _hold(self, operation: int, kind: str):
        fd = self._open()
        try:
            self._acquire(fd, operation, kind)
            try:
                if operation == fcntl.LOCK_EX:
                    self._write_holder(fd)
                yield self
            finally:
                fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)

    def exclusive(self):
        """Hold the lock exclusively for a read-modify-write cycle."""
        return self._hold(fcntl.LOCK_EX, "exclusive")

    def shared(self):
        """Hold the lock shared for a read."""
        return self._hold(fcntl.LOCK_SH, "shared")
