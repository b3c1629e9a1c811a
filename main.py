"""Command-line interface for the Oripay web service."""

from __future__ import annotations
import argparse
import logging
import os
import sys
from getpass import getpass
from pathlib import Path
from typing import Sequence

import anyio


def _running_in_virtualenv() -> bool:
    """Return ``True`` when the current interpreter is executing inside a venv."""

    base_prefix = getattr(sys, "base_prefix", sys.prefix)
    return sys.prefix != base_prefix


def _bootstrap_virtualenv() -> None:
    """Re-exec the script using the bundled virtualenv interpreter when available."""

    if _running_in_virtualenv():
        return

    root = Path(__file__).resolve().parent
    venv_dir = root / ".venv"
    if not venv_dir.is_dir():
        return

    candidates = (
        venv_dir / "bin" / "python",
        venv_dir / "bin" / "python3",
        venv_dir / "Scripts" / "python.exe",
    )

    script = str(Path(__file__).resolve())
    for candidate in candidates:
        if candidate.exists():
            os.execv(str(candidate), [str(candidate), script, *sys.argv[1:]])


if __name__ == "__main__":
    _bootstrap_virtualenv()

from oripay.application import build_backends
from oripay.config import AppConfig, load_content_seed
from oripay.documents import SERVER_TIMESTAMP, DocumentStore, resolve_database_path
from oripay.identity import PASSWORD_MIN_LENGTH, IdentityError, LocalIdentityProvider
from oripay.onboarding import OnboardingService
from oripay.schemas import ACCOUNT_ACTIVE, KYC_VERIFIED, USERS
from oripay.users import UserDirectory

logger = logging.getLogger("oripay.main")

KNOWN_COMMANDS = {"serve", "init-db", "create-admin", "grant-admin", "revoke-admin", "seed", "reconcile"}


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Oripay Exchange site utilities")
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve")

    subparsers.add_parser("init-db", help="Create the document and identity tables")

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP service")
    serve_parser.add_argument("--host", default="0.0.0.0", help="Bind address for the site")
    serve_parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port for the HTTP service (default: 8000)",
    )
    serve_parser.add_argument(
        "--ssl-certfile",
        default=None,
        help="Path to the TLS certificate chain in PEM format",
    )
    serve_parser.add_argument(
        "--ssl-keyfile",
        default=None,
        help="Path to the TLS private key in PEM format",
    )
    serve_parser.add_argument(
        "--ssl-keyfile-password",
        default=None,
        help="Password for the TLS private key, if encrypted",
    )

    create_admin_parser = subparsers.add_parser(
        "create-admin", help="Create an identity with a profile and an admin marker"
    )
    create_admin_parser.add_argument("email", help="Email address used to sign in")
    create_admin_parser.add_argument("--name", default="Administrator", help="Display name")

    grant_parser = subparsers.add_parser("grant-admin", help="Grant admin access to an existing account")
    grant_parser.add_argument("email")

    revoke_parser = subparsers.add_parser("revoke-admin", help="Remove admin access from an account")
    revoke_parser.add_argument("email")

    seed_parser = subparsers.add_parser("seed", help="Load site content from a YAML file")
    seed_parser.add_argument("file", type=Path, help="YAML file mapping collections to documents")

    reconcile_parser = subparsers.add_parser(
        "reconcile", help="List identities that have no profile document"
    )
    reconcile_parser.add_argument(
        "--repair",
        action="store_true",
        help="Write a placeholder profile for every orphaned identity",
    )

    args_list = list(argv) if argv is not None else sys.argv[1:]

    if not args_list:
        args_list = ["serve"]
    else:
        first = args_list[0]
        if first in ("-h", "--help"):
            return parser.parse_args(args_list)
        if first not in KNOWN_COMMANDS:
            if any(flag in args_list for flag in ("-h", "--help")):
                return parser.parse_args(args_list)
            args_list = ["serve", *args_list]

    return parser.parse_args(args_list)


def _database_path() -> Path:
    return resolve_database_path(os.getenv("ORIPAY_DB_PATH"))


def _initialise_backends():
    db_path = _database_path()
    store, identity = build_backends(db_path)
    logger.info("Database initialised at %s", db_path)
    return store, identity


def _serve(
    *,
    host: str,
    port: int,
    ssl_certfile: str | None,
    ssl_keyfile: str | None,
    ssl_keyfile_password: str | None,
) -> None:
    from oripay.application import create_application
    import uvicorn

    if bool(ssl_certfile) ^ bool(ssl_keyfile):
        raise SystemExit("Both --ssl-certfile and --ssl-keyfile must be provided together.")

    try:
        config = AppConfig.from_env()
    except RuntimeError as exc:
        raise SystemExit(str(exc)) from exc

    protocol = "https" if ssl_certfile and ssl_keyfile else "http"
    logger.info("Starting %s on %s://%s:%s", config.site_name, protocol, host, port)

    app = create_application(config)
    uvicorn.run(
        app,
        host=host,
        port=port,
        log_level="info",
        ssl_certfile=ssl_certfile,
        ssl_keyfile=ssl_keyfile,
        ssl_keyfile_password=ssl_keyfile_password,
    )


def _prompt_for_password() -> str | None:
    for _ in range(3):
        password = getpass(f"Password (min {PASSWORD_MIN_LENGTH} characters): ")
        if len(password) < PASSWORD_MIN_LENGTH:
            print("Password is too short. Please try again.")
            continue
        confirmation = getpass("Confirm password: ")
        if password != confirmation:
            print("Passwords do not match. Please try again.")
            continue
        return password
    return None


async def _create_admin(
    store: DocumentStore,
    identity: LocalIdentityProvider,
    *,
    email: str,
    name: str,
    password: str,
) -> str:
    session = await identity.create_identity(email, password)
    user = await identity.update_display_name(session, name)
    await store.set(
        USERS,
        user.uid,
        {
            "email": user.email,
            "displayName": user.display_name or "",
            "companyName": name,
            "role": "admin",
            "status": ACCOUNT_ACTIVE,
            "kycStatus": KYC_VERIFIED,
            "kycCompleted": True,
            "createdAt": SERVER_TIMESTAMP,
        },
    )
    await UserDirectory(store, identity).grant_admin(user.uid, email=user.email)
    await identity.sign_out(session.session_id)
    return user.uid


async def _set_admin(
    store: DocumentStore,
    identity: LocalIdentityProvider,
    *,
    email: str,
    granted: bool,
) -> str | None:
    user = await identity.get_identity_by_email(email)
    if user is None:
        return None
    directory = UserDirectory(store, identity)
    if granted:
        await directory.grant_admin(user.uid, email=user.email)
    else:
        await directory.revoke_admin(user.uid)
    return user.uid


async def _seed(store: DocumentStore, path: Path) -> int:
    bundle = load_content_seed(path)
    written = 0
    for collection, documents in bundle.items():
        for doc_id, fields in documents.items():
            await store.set(collection, doc_id, fields)
            written += 1
    return written


def main(argv: Sequence[str] | None = None) -> None:
    """Entry point for CLI usage."""

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    args = _parse_args(argv)

    if args.command == "serve":
        _serve(
            host=args.host,
            port=args.port,
            ssl_certfile=args.ssl_certfile,
            ssl_keyfile=args.ssl_keyfile,
            ssl_keyfile_password=args.ssl_keyfile_password,
        )
        return

    store, identity = _initialise_backends()

    if args.command == "init-db":
        print("Database initialisation complete.")
    elif args.command == "create-admin":
        password = _prompt_for_password()
        if password is None:
            raise SystemExit("Aborted creating admin account.")
        try:
            uid = anyio.run(
                lambda: _create_admin(store, identity, email=args.email, name=args.name, password=password)
            )
        except IdentityError as exc:
            raise SystemExit(f"Failed to create admin account: {exc}") from exc
        print(f"Created admin account {uid} <{args.email.strip().lower()}>")
    elif args.command in ("grant-admin", "revoke-admin"):
        granted = args.command == "grant-admin"
        uid = anyio.run(lambda: _set_admin(store, identity, email=args.email, granted=granted))
        if uid is None:
            raise SystemExit(f"No account found for {args.email}.")
        print(f"{'Granted' if granted else 'Revoked'} admin access for {uid}")
    elif args.command == "seed":
        try:
            written = anyio.run(_seed, store, args.file)
        except (OSError, ValueError) as exc:
            raise SystemExit(f"Failed to load {args.file}: {exc}") from exc
        print(f"Seeded {written} document(s) from {args.file}")
    elif args.command == "reconcile":
        results = anyio.run(lambda: OnboardingService(store, identity).reconcile(repair=args.repair))
        if not results:
            print("Every identity has a profile document.")
            return
        print(f"{len(results)} identity(ies) without a profile document:")
        for orphan in results:
            suffix = " (placeholder written)" if orphan.repaired else ""
            print(f"- {orphan.uid} <{orphan.email}>{suffix}")


if __name__ == "__main__":
    main()
