"""Runtime settings for the ctvault command line."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional
import getpass
import logging
import os

DEFAULT_VAULT_PATH = Path.home() / ".ctvault" / "vault.bin"

_TRUE = ("1", "true", "yes", "on")
_FALSE = ("0", "false", "no", "off")


@dataclass
class VaultSettings:
    """Settings the CLI needs, read from ``CTVAULT_*`` environment variables."""

    vault_path: Path = DEFAULT_VAULT_PATH
    compress: bool = True
    session_ttl: int = 300
    log_level: int = logging.WARNING
    master_password: Optional[str] = None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "VaultSettings":
        """
        Build settings from the environment.

        - ``CTVAULT_PATH``: vault file (default ``~/.ctvault/vault.bin``)
        - ``CTVAULT_COMPRESS``: ``1``/``0`` for new vaults (default on)
        - ``CTVAULT_SESSION_TTL``: seconds an unlocked session stays open
        - ``CTVAULT_LOG_LEVEL``: logging level name (default ``WARNING``)
        - ``CTVAULT_MASTER_PASSWORD``: skip the interactive password prompt

        Raises ValueError for values that cannot be parsed.
        """
        env = os.environ if environ is None else environ

        path = env.get("CTVAULT_PATH")
        vault_path = Path(path).expanduser() if path else DEFAULT_VAULT_PATH

        raw_compress = env.get("CTVAULT_COMPRESS", "1").strip().lower()
        if raw_compress in _TRUE:
            compress = True
        elif raw_compress in _FALSE:
            compress = False
        else:
            raise ValueError(f"CTVAULT_COMPRESS must be a boolean, got {raw_compress!r}")

        session_ttl = int(env.get("CTVAULT_SESSION_TTL", "300"))
        if session_ttl <= 0:
            raise ValueError("CTVAULT_SESSION_TTL must be positive")

        level_name = env.get("CTVAULT_LOG_LEVEL", "WARNING").strip().upper()
        log_level = logging.getLevelName(level_name)
        if not isinstance(log_level, int):
            raise ValueError(f"unknown log level: {level_name}")

        return cls(
            vault_path=vault_path,
            compress=compress,
            session_ttl=session_ttl,
            log_level=log_level,
            master_password=env.get("CTVAULT_MASTER_PASSWORD") or None,
        )

    def read_password(self, prompt: str = "Master password: ") -> str:
        # Non-interactive password from the environment wins over the prompt.
        if self.master_password:
            return self.master_password
        return getpass.getpass(prompt)
