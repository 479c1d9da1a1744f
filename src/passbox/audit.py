#!/usr/bin/env python3
"""Audit Logger - Append-only record of vault operations.

One line per operation, never containing secrets or master passwords.
Logs rotate daily and rotated files past the retention period are
removed.
"""

import os
import sys
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterable, List, Optional, Union

from .errors import VaultIOError

ROTATED_PREFIX = "access.log."


def _format_target(target: Union[str, Iterable[str], None]) -> str:
    if target is None:
        return "-"
    if isinstance(target, str):
        return target or "-"
    joined = ",".join(target)
    return joined or "-"


class AuditLogger:
    """Append-only audit logger with rotation and retention."""

    def __init__(self, log_path: Path, retention_days: int = 30,
                 command: Optional[str] = None):
        """Initialize audit logger.

        Args:
            log_path: Path to the log file (e.g., ~/.passbox/access.log)
            retention_days: Number of days to keep rotated logs
            command: Name recorded next to the PID; defaults to argv[0]

        Raises:
            VaultIOError: If the log directory or file cannot be created

        """
        self.log_path = Path(log_path)
        self.retention_days = retention_days
        self.command = command or Path(sys.argv[0]).name or "passbox"
        self.lock = threading.Lock()

        try:
            self.log_path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
            fd = os.open(
                str(self.log_path),
                os.O_CREAT | os.O_APPEND | os.O_WRONLY,
                0o600
            )
            os.close(fd)
        except OSError as e:
            raise VaultIOError(f"cannot open audit log {self.log_path}: {e.strerror or e}") from e

    def record(
        self,
        action: str,
        result: str,
        target: Union[str, Iterable[str], None] = None,
        reason: Optional[str] = None
    ) -> bool:
        """Append one operation record.

        Format: ISO8601Z [PID/command] RESULT ACTION target [reason]

        Recording never fails the operation being recorded; a write error
        is reported through the return value instead.

        Args:
            action: BOOTSTRAP | UNLOCK | ADD | UPDATE | REMOVE | CLEAR
            result: OK | DENIED | ERROR
            target: Entry id(s), "label/account", or None
            reason: Error code for DENIED/ERROR

        Returns:
            True if the line was written

        """
        self._rotate_if_stale()

        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")
        parts = [
            timestamp,
            f"[{os.getpid()}/{self.command}]",
            result,
            action,
            _format_target(target),
        ]
        if reason:
            parts.append(reason)

        try:
            with self.lock, open(self.log_path, "a", encoding="utf-8",
                                 errors="backslashreplace") as f:
                f.write(" ".join(parts) + "\n")
        except OSError:
            return False
        return True

    def _rotate_if_stale(self) -> None:
        """Move yesterday's log aside the first time we write today."""
        try:
            mtime = datetime.fromtimestamp(self.log_path.stat().st_mtime, tz=timezone.utc)
        except OSError:
            return

        if mtime.date() >= datetime.now(timezone.utc).date():
            return

        rotated = self.log_path.with_name(ROTATED_PREFIX + mtime.strftime("%Y%m%d"))
        if not rotated.exists():
            try:
                self.log_path.rename(rotated)
            except OSError:
                pass
        self._remove_expired()

    def _remove_expired(self) -> None:
        cutoff = datetime.now(timezone.utc) - timedelta(days=self.retention_days)

        for log_file in self.log_path.parent.glob(ROTATED_PREFIX + "*"):
            try:
                log_date = datetime.strptime(log_file.name[len(ROTATED_PREFIX):], "%Y%m%d")
            except ValueError:
                continue
            if log_date.replace(tzinfo=timezone.utc) < cutoff:
                try:
                    log_file.unlink()
                except OSError:
                    pass

    def read_recent(self, lines: int = 100) -> List[str]:
        """Read recent log lines (most recent last)."""
        try:
            with open(self.log_path, encoding="utf-8") as f:
                return f.readlines()[-lines:]
        except OSError:
            return []
