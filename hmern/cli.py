"""
hmern CLI — operator commands for the settings document.

Usage:
    hmern settings status               # env vars + credential status (no secrets)
    hmern settings reset --yes          # recreate the document from env vars
    hmern settings reencrypt            # rewrite legacy envelopes as v1
    hmern migrate status                # show applied vs pending SQL migrations
    hmern migrate apply [VERSION]       # apply pending migrations
    hmern version                       # show version
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="hmern",
        description="hmern — encrypted credential settings for the admin dashboard.",
    )
    parser.add_argument("--version", action="store_true", help="Show version and exit")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command")

    # settings
    settings_parser = subparsers.add_parser("settings", help="Inspect or repair the settings document")
    settings_sub = settings_parser.add_subparsers(dest="settings_command")
    settings_sub.add_parser("status", help="Show env vars and credential status")
    reset_parser = settings_sub.add_parser("reset", help="Delete and recreate from env vars")
    reset_parser.add_argument("--yes", "-y", action="store_true", help="Confirm the reset")
    reencrypt_parser = settings_sub.add_parser("reencrypt", help="Rewrite stored credentials as v1")
    reencrypt_parser.add_argument("--dry-run", action="store_true", help="Report without writing")
    reencrypt_parser.add_argument(
        "--seal-plaintext",
        action="store_true",
        help="Encrypt values that are not decryptable envelopes (plaintext from no-key mode)",
    )
    reencrypt_parser.add_argument(
        "--previous-salt", help="Salt that existing v1 envelopes were written with"
    )

    # migrate
    migrate_parser = subparsers.add_parser("migrate", help="Run database migrations")
    migrate_sub = migrate_parser.add_subparsers(dest="migrate_command")
    migrate_sub.add_parser("status", help="Show applied vs pending migrations")
    apply_parser = migrate_sub.add_parser("apply", help="Apply pending migrations")
    apply_parser.add_argument("version", nargs="?", help="Apply only this version")
    apply_parser.add_argument("--dry-run", action="store_true", help="List without executing")

    # version
    subparsers.add_parser("version", help="Show version")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    if args.version or args.command == "version":
        from hmern import __version__

        print(f"hmern {__version__}")
        return 0

    if args.command == "settings":
        return _cmd_settings(args, settings_parser)
    elif args.command == "migrate":
        return _cmd_migrate(args)
    else:
        parser.print_help()
        return 0


def _make_service():
    from hmern.settings import create_settings_service

    return create_settings_service()


def _cmd_settings(args: argparse.Namespace, parser: argparse.ArgumentParser) -> int:
    if args.settings_command == "status":
        return asyncio.run(_settings_status())
    elif args.settings_command == "reset":
        if not args.yes:
            print("Refusing to reset without --yes: this deletes the stored settings document.")
            return 1
        return asyncio.run(_settings_reset())
    elif args.settings_command == "reencrypt":
        return asyncio.run(
            _settings_reencrypt(
                dry_run=args.dry_run,
                seal_plaintext=args.seal_plaintext,
                previous_salt=args.previous_salt,
            )
        )
    parser.print_help()
    return 0


async def _settings_status() -> int:
    from hmern.settings.migrate import env_status
    from hmern.vault import codec_stats

    print("Environment:")
    for name, present in env_status().items():
        print(f"  {name:<30} {'SET' if present else 'MISSING'}")

    service = _make_service()
    status = await service.get_external_services_status()
    print()
    print("External services:")
    print(json.dumps(status.model_dump(), indent=2))

    stats = codec_stats()
    degraded = stats["decrypt_failed"] + stats["encrypt_failed"]
    if degraded:
        print(f"\nWARNING: {degraded} credential(s) could not be decrypted/encrypted; see logs.")
        return 1
    return 0


async def _settings_reset() -> int:
    from hmern.settings import DocumentStoreError
    from hmern.settings.migrate import reset_settings

    service = _make_service()
    try:
        verification = await reset_settings(service)
    except DocumentStoreError as e:
        print(f"Error: reset failed: {e}")
        return 1

    print("Recreated settings document. Decrypted values:")
    for field, ok in verification.items():
        print(f"  {field:<32} {'OK' if ok else 'EMPTY'}")
    return 0


async def _settings_reencrypt(
    *, dry_run: bool, seal_plaintext: bool, previous_salt: str | None
) -> int:
    from hmern.settings import DocumentStoreError
    from hmern.settings.migrate import reencrypt_settings

    service = _make_service()
    try:
        report = await reencrypt_settings(
            service,
            previous_salt=previous_salt,
            seal_plaintext=seal_plaintext,
            dry_run=dry_run,
        )
    except (ValueError, DocumentStoreError) as e:
        print(f"Error: {e}")
        return 1

    print(json.dumps(report.to_dict(), indent=2))
    return 1 if report.undecryptable else 0


def _cmd_migrate(args: argparse.Namespace) -> int:
    from hmern.db import migrate

    try:
        if args.migrate_command == "apply":
            applied = migrate.apply(version=args.version, dry_run=args.dry_run)
            if not applied:
                print("Nothing to apply.")
            for v in applied:
                print(f"{'[dry-run] ' if args.dry_run else ''}Applied version {v}")
            return 0

        rows = migrate.status()
    except ConnectionError as e:
        print(f"Error: {e}")
        return 1

    if not rows:
        print("No migration files found.")
        return 0
    print(f"{'Version':<10} {'Filename':<40} {'Status':<10} {'Applied At'}")
    print("-" * 80)
    for r in rows:
        at = str(r["applied_at"])[:19] if r["applied_at"] else ""
        print(f"{r['version']:<10} {r['filename']:<40} {r['status']:<10} {at}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
