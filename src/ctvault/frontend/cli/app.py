"""
Command line front end for ctvault.

The vault lives in a single file holding the envelope bytes. A small JSON
file next to it (``vault.bin.json``) records whether the payload was
compressed when the vault was created; the envelope itself does not say.
Usage:

    ctvault init --from records.json
    ctvault show
    ctvault put records.json
    ctvault passwd
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import tempfile
from pathlib import Path
from typing import List, Optional

from ctvault.core.exceptions import CtVaultError, FormatError, IntegrityError
from ctvault.frontend.cli.context import VaultSettings
from ctvault.frontend.cli.logging_config import configure_logging
from ctvault.security.session import VaultSession

logger = logging.getLogger(__name__)

UNLOCK_FAILED = "could not unlock vault"


class CliError(Exception):
    # message shown to the user, exit status 1
    pass


def _read_vault(path: Path) -> bytes:
    if not path.exists():
        raise CliError(f"no vault at {path}; run 'ctvault init' first")
    return path.read_bytes()


def _write_vault(path: Path, envelope: bytes) -> None:
    # write next to the target then rename, so a crash never leaves half a vault
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=".vault-", dir=str(path.parent))
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(envelope)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
    logger.info("wrote %d bytes to %s", len(envelope), path)


def _read_new_password(settings: VaultSettings) -> str:
    if settings.master_password:
        return settings.master_password
    first = settings.read_password("New master password: ")
    second = settings.read_password("Repeat new master password: ")
    if first != second:
        raise CliError("passwords do not match")
    if not first:
        raise CliError("master password must not be empty")
    return first


def _meta_path(path: Path) -> Path:
    return path.with_name(path.name + ".json")


def _read_compressed(path: Path) -> bool:
    """Return the compression mode recorded for the vault at ``path``.

    Vaults without a metadata file were written compressed.
    """
    meta_path = _meta_path(path)
    if not meta_path.exists():
        return True
    try:
        with open(meta_path, "r", encoding="utf-8") as f:
            meta = json.load(f)
        return bool(meta["compressed"])
    except (ValueError, KeyError, TypeError) as e:
        raise CliError(f"unreadable vault metadata at {meta_path}") from e


def _write_meta(path: Path, compressed: bool) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(_meta_path(path), "w", encoding="utf-8") as f:
        json.dump({"compressed": compressed}, f)


def _unlock(session: VaultSession, settings: VaultSettings, envelope: bytes, compressed: bool) -> bytes:
    password = settings.read_password()
    return session.unlock(
        password, envelope, uncompress=compressed, ttl_seconds=settings.session_ttl
    )


def cmd_init(args, settings: VaultSettings, session: VaultSession) -> None:
    if settings.vault_path.exists():
        raise CliError(f"vault already exists at {settings.vault_path}")
    payload = Path(args.source).read_bytes() if args.source else b""
    session.create(_read_new_password(settings), ttl_seconds=settings.session_ttl)
    envelope = session.seal(payload, compress=settings.compress)
    # the mode is fixed for the life of the vault
    _write_meta(settings.vault_path, settings.compress)
    _write_vault(settings.vault_path, envelope)
    print(f"Created vault at {settings.vault_path}", file=sys.stderr)


def cmd_show(args, settings: VaultSettings, session: VaultSession) -> None:
    envelope = _read_vault(settings.vault_path)
    payload = _unlock(session, settings, envelope, _read_compressed(settings.vault_path))
    sys.stdout.buffer.write(payload)
    sys.stdout.flush()


def cmd_put(args, settings: VaultSettings, session: VaultSession) -> None:
    envelope = _read_vault(settings.vault_path)
    compressed = _read_compressed(settings.vault_path)
    payload = Path(args.source).read_bytes()
    _unlock(session, settings, envelope, compressed)
    _write_vault(settings.vault_path, session.seal(payload, compress=compressed))


def cmd_passwd(args, settings: VaultSettings, session: VaultSession) -> None:
    envelope = _read_vault(settings.vault_path)
    compressed = _read_compressed(settings.vault_path)
    payload = _unlock(session, settings, envelope, compressed)
    # the current password came from the environment; the new one must be typed
    new_settings = VaultSettings(
        vault_path=settings.vault_path,
        compress=settings.compress,
        session_ttl=settings.session_ttl,
        log_level=settings.log_level,
    )
    new_password = _read_new_password(new_settings)
    _write_vault(
        settings.vault_path,
        session.change_master_password(new_password, payload, compress=compressed),
    )
    print("Master password changed", file=sys.stderr)


def _build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ctvault",
        description="Personal credential vault protected by a master password.",
    )
    parser.add_argument(
        "--vault",
        dest="vault_path",
        default=None,
        help="Path to the vault file (default: $CTVAULT_PATH or ~/.ctvault/vault.bin)",
    )
    parser.add_argument(
        "--no-compress",
        action="store_true",
        help="Create the vault without deflate compression (init only; "
        "later commands use the mode recorded at creation)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    sub = parser.add_subparsers(dest="command", required=True)

    p_init = sub.add_parser("init", help="Create a new vault")
    p_init.add_argument("--from", dest="source", default=None, help="Initial payload file")
    p_init.set_defaults(func=cmd_init)

    p_show = sub.add_parser("show", help="Print the decrypted payload")
    p_show.set_defaults(func=cmd_show)

    p_put = sub.add_parser("put", help="Replace the payload")
    p_put.add_argument("source", help="File with the new payload")
    p_put.set_defaults(func=cmd_put)

    p_passwd = sub.add_parser("passwd", help="Change the master password")
    p_passwd.set_defaults(func=cmd_passwd)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = _build_arg_parser()
    args = parser.parse_args(argv)

    try:
        settings = VaultSettings.from_env()
    except ValueError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2
    if args.vault_path:
        settings.vault_path = Path(args.vault_path).expanduser()
    if args.no_compress:
        settings.compress = False
    configure_logging(logging.DEBUG if args.verbose else settings.log_level)

    session = VaultSession()
    try:
        args.func(args, settings, session)
    except (FormatError, IntegrityError):
        print(f"error: {UNLOCK_FAILED}", file=sys.stderr)
        return 1
    except (CliError, CtVaultError, OSError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    finally:
        session.lock()
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entry
    sys.exit(main())
