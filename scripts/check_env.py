"""Verify that the credential service can start with the current configuration.

Two checks are available:

1. Settings: instantiate ``AppSettings`` from the given ``.env`` file so that
   missing Spotify credentials or malformed values surface before deploys.
2. Store (``--check-store``): open the credential database with the
   configured encryption secret and count stored authorizations.

Example usages::

    python -m scripts.check_env --env-file /opt/tokenkeeper/.env
    python -m scripts.check_env --env-file /opt/tokenkeeper/.env --check-store
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from pydantic import ValidationError

from tokenkeeper.clients import CredentialStoreError, SQLiteCredentialStore
from tokenkeeper.core.config import AppSettings, _load_env_file
from tokenkeeper.services import TokenCipherService

EXIT_OK = 0
EXIT_VALIDATION_ERROR = 2
EXIT_STORE_ERROR = 4
EXIT_RUNTIME_ERROR = 5


def _load_settings(env_file: Path) -> AppSettings:
    _load_env_file(str(env_file))
    return AppSettings()  # type: ignore[call-arg]


def _check_store(settings: AppSettings) -> int:
    secret = settings.security.token_encryption_secret or settings.spotify.client_secret
    cipher = TokenCipherService(
        secret=secret, previous_secrets=settings.security.previous_encryption_secrets
    )
    store = SQLiteCredentialStore(settings.credential_db_path, cipher=cipher)
    return store.ping()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Validate settings and, optionally, the credential store."
    )
    parser.add_argument(
        "--env-file",
        default=".env",
        type=Path,
        help="Path to the environment file (default: .env in the repo root).",
    )
    parser.add_argument(
        "--check-store",
        action="store_true",
        help="Also open the credential database and count stored authorizations.",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    env_file: Path = args.env_file

    if not env_file.exists():
        print(
            f"Environment file {env_file} does not exist. "
            "Ensure the path is correct or create it before running this tool.",
            file=sys.stderr,
        )
        return EXIT_RUNTIME_ERROR

    try:
        settings = _load_settings(env_file)
    except ValidationError as exc:
        print(
            "Settings validation failed. Missing or invalid values detected:\n"
            f"{exc.json(indent=2)}",
            file=sys.stderr,
        )
        return EXIT_VALIDATION_ERROR

    print(f"Settings OK (environment={settings.environment}).")
    if not args.check_store:
        return EXIT_OK

    try:
        total = _check_store(settings)
    except CredentialStoreError as exc:
        print(f"Credential store check failed: {exc}", file=sys.stderr)
        return EXIT_STORE_ERROR

    print(f"Credential store OK ({total} stored authorizations).")
    return EXIT_OK


if __name__ == "__main__":  # pragma: no cover - script entry point
    sys.exit(main())
