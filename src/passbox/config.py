#!/usr/bin/env python3
"""Settings - Runtime configuration resolved from the environment.

    PASSBOX_FILE           vault file path (default: password.data)
    PASSBOX_LOCK_TIMEOUT   seconds to wait for the vault lock (default: 10)
    PASSBOX_MIN_LENGTH     minimum secret length (default: 8)
    PASSBOX_AUDIT_LOG      access log path, or "off" (default: ~/.passbox/access.log)
"""

import math
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

from .crypto import MEM_LIMIT, OPS_LIMIT
from .entry import MIN_PASSWORD_LENGTH
from .errors import ConfigError
from .locking import DEFAULT_TIMEOUT

DEFAULT_VAULT = Path("password.data")
DEFAULT_AUDIT_LOG = Path.home() / ".passbox" / "access.log"
MASTER_PASSWORD_ENV = "PASSWORD_MASTER"


@dataclass
class Settings:
    """Vault engine settings with documented defaults."""

    vault_path: Path = DEFAULT_VAULT
    lock_timeout: float = DEFAULT_TIMEOUT
    min_password_length: int = MIN_PASSWORD_LENGTH
    audit_log: Optional[Path] = field(default=DEFAULT_AUDIT_LOG)
    opslimit: int = OPS_LIMIT
    memlimit: int = MEM_LIMIT

    def __post_init__(self):
        self.vault_path = Path(self.vault_path)
        if self.audit_log is not None:
            self.audit_log = Path(self.audit_log)
        if not math.isfinite(self.lock_timeout) or self.lock_timeout < 0:
            raise ConfigError(f"lock timeout must be a finite, non-negative number: {self.lock_timeout}")
        if self.min_password_length < 1:
            raise ConfigError(f"minimum password length must be positive: {self.min_password_length}")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides) -> "Settings":
        """Build settings from environment variables.

        Args:
            environ: Mapping to read instead of os.environ
            **overrides: Explicit values (e.g. from CLI flags) that win over
                the environment; None values are ignored

        Raises:
            ConfigError: If a variable does not parse

        """
        env = os.environ if environ is None else environ
        values = {}

        if env.get("PASSBOX_FILE"):
            values["vault_path"] = Path(env["PASSBOX_FILE"]).expanduser()

        if env.get("PASSBOX_LOCK_TIMEOUT"):
            try:
                values["lock_timeout"] = float(env["PASSBOX_LOCK_TIMEOUT"])
            except ValueError:
                raise ConfigError(f"PASSBOX_LOCK_TIMEOUT is not a number: {env['PASSBOX_LOCK_TIMEOUT']!r}")

        if env.get("PASSBOX_MIN_LENGTH"):
            try:
                values["min_password_length"] = int(env["PASSBOX_MIN_LENGTH"])
            except ValueError:
                raise ConfigError(f"PASSBOX_MIN_LENGTH is not an integer: {env['PASSBOX_MIN_LENGTH']!r}")

        audit = env.get("PASSBOX_AUDIT_LOG")
        if audit:
            values["audit_log"] = None if audit.lower() == "off" else Path(audit).expanduser()

        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


def get_master_password_default(environ: Optional[Mapping[str, str]] = None) -> Optional[str]:
    env = os.environ if environ is None else environ
    return env.get(MASTER_PASSWORD_ENV) or None
