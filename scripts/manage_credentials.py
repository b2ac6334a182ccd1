#!/usr/bin/env python3
"""Manage Xero and Tink secrets in the system keychain.

Settings fall back to the keychain for any key in ``CREDENTIAL_KEYS`` that
is not set in the environment, so secrets stored here never need to live
in ``.env``.

Usage:
    python -m scripts.manage_credentials status
    python -m scripts.manage_credentials set XERO_CLIENT_SECRET     # prompts
    python -m scripts.manage_credentials delete TINK_CLIENT_SECRET
    python -m scripts.manage_credentials import-env --clean         # move .env secrets
"""

import argparse
import getpass
import re
import sys
from pathlib import Path

from dotenv import dotenv_values

from services.credential_manager import (
    CREDENTIAL_KEYS,
    delete_credential,
    get_credential,
    set_credential,
)

DEFAULT_ENV_FILE = Path(__file__).parent.parent / ".env"


def show_status() -> None:
    """Print which credentials are present in the keychain (never their values)."""
    for key in sorted(CREDENTIAL_KEYS):
        marker = "+" if get_credential(key) else "-"
        print(f"  {marker} {key}")


def store(key: str, value: str | None = None) -> bool:
    """Store one credential, prompting for the value when none is given."""
    if key not in CREDENTIAL_KEYS:
        print(f"Unknown credential: {key}")
        print(f"Expected one of: {', '.join(sorted(CREDENTIAL_KEYS))}")
        return False
    if value is None:
        value = getpass.getpass(f"{key}: ")
    if set_credential(key, value):
        print(f"Stored {key} in keychain")
        return True
    print(f"Failed to store {key}")
    return False


def remove(key: str) -> bool:
    if delete_credential(key):
        print(f"Deleted {key} from keychain")
        return True
    print(f"Nothing deleted for {key}")
    return False


def import_env(env_path: Path, *, clean: bool = False) -> list[str]:
    """Copy non-empty credentials from a ``.env`` file into the keychain.

    Args:
        env_path: Path to the ``.env`` file.
        clean: Remove the imported lines from the file afterwards.

    Returns:
        Keys that are now in the keychain with the file's value.
    """
    if not env_path.exists():
        print(f"No .env file found at {env_path}")
        sys.exit(1)

    values = dotenv_values(env_path)
    imported: list[str] = []
    failed: list[str] = []

    for key in sorted(CREDENTIAL_KEYS):
        value = values.get(key)
        if not value:
            continue
        if get_credential(key) == value or set_credential(key, value):
            imported.append(key)
        else:
            failed.append(key)

    print(f"Imported {len(imported)} credential(s) from {env_path}")
    for key in imported:
        print(f"  + {key}")
    for key in failed:
        print(f"  ! {key}")

    if clean and imported:
        _strip_env_lines(env_path, imported)
    return imported


def _strip_env_lines(env_path: Path, keys: list[str]) -> None:
    pattern = re.compile(r"^(" + "|".join(re.escape(k) for k in keys) + r")\s*=")
    lines = env_path.read_text().splitlines(keepends=True)
    env_path.write_text("".join(line for line in lines if not pattern.match(line)))
    print(f"Removed {len(keys)} credential(s) from {env_path}")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Manage provider secrets in the system keychain")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("status", help="List which credentials are stored")

    set_parser = commands.add_parser("set", help="Store one credential")
    set_parser.add_argument("key")
    set_parser.add_argument("--value", help="Value to store (prompted for when omitted)")

    delete_parser = commands.add_parser("delete", help="Remove one credential")
    delete_parser.add_argument("key")

    import_parser = commands.add_parser("import-env", help="Copy credentials from a .env file")
    import_parser.add_argument("--env-file", type=Path, default=DEFAULT_ENV_FILE)
    import_parser.add_argument(
        "--clean", action="store_true", help="Remove imported credentials from the .env file"
    )

    args = parser.parse_args(argv)
    if args.command == "status":
        show_status()
        return 0
    if args.command == "set":
        return 0 if store(args.key, args.value) else 1
    if args.command == "delete":
        return 0 if remove(args.key) else 1
    import_env(args.env_file, clean=args.clean)
    return 0


if __name__ == "__main__":
    sys.exit(main())
