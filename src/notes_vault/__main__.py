# Notes Vault: Main Entry Point
#
# Command line for the storage and backup subsystem.
#
#   notes-vault serve                      run the local API
#   notes-vault backup create              encrypt the dataset into backups/
#   notes-vault backup list                newest first
#   notes-vault backup restore PATH        replace the live dataset
#   notes-vault backup delete ID PATH      remove one backup
#   notes-vault backup prune [--keep N]    apply the retention policy
#   notes-vault backup reconcile           drop records for missing files
#   notes-vault backup info ID             decrypt and show what a backup holds
#   notes-vault backup set-password        store the auto-backup password
#   notes-vault backup clear-password      forget it
#
# Passwords are read from the environment variable named by --password-env,
# or prompted for without echo. `backup create --stored-password` uses the
# auto-backup password from the OS credential store.

import argparse
import getpass
import json
import os
import sys

from . import __version__
from .config import load_settings
from .core import EventSeverity, EventType, configure_audit_logger, get_audit_logger
from .exceptions import VaultError


def _read_password(args, confirm: bool = False) -> str:
    if args.password_env:
        password = os.environ.get(args.password_env)
        if password is None:
            raise SystemExit(f"Environment variable {args.password_env} is not set")
        return password
    password = getpass.getpass("Backup password: ")
    if confirm and getpass.getpass("Repeat password: ") != password:
        raise SystemExit("Passwords do not match")
    return password


def _print_json(payload) -> None:
    print(json.dumps(payload, indent=2))


def _cmd_backup(args, settings) -> int:
    from .services import VaultServices

    services = VaultServices(settings, configure_audit=False)
    try:
        return _run_backup_action(services.backup_manager, args)
    finally:
        services.shutdown()


def _run_backup_action(manager, args) -> int:
    if args.action == "create":
        password = None if args.stored_password else _read_password(args, confirm=True)
        record = manager.create_backup(password)
        _print_json(record.to_dict())
    elif args.action == "list":
        records = manager.list_backups()
        if args.json:
            _print_json([r.to_dict() for r in records])
        else:
            for r in records:
                print(f"{r.created_at}  {r.size_bytes:>12}  {r.id}  {r.filesystem_path}")
            print(f"{len(records)} backup(s)")
    elif args.action == "restore":
        result = manager.restore_backup(args.path, _read_password(args))
        _print_json(result.to_dict())
        print("Restore complete. Restart the application to load the restored data.")
    elif args.action == "delete":
        manager.delete_backup(args.backup_id, args.path)
        print(f"Deleted backup {args.backup_id}")
    elif args.action == "prune":
        _print_json(manager.enforce_retention(args.keep).to_dict())
    elif args.action == "reconcile":
        removed = manager.reconcile_orphans()
        print(f"Removed {len(removed)} orphaned record(s)")
    elif args.action == "info":
        record = manager.get_backup_info(args.backup_id)
        if record is None:
            print(f"Backup not found: {args.backup_id}", file=sys.stderr)
            return 1
        manifest = manager.get_backup_manifest(args.backup_id, _read_password(args))
        _print_json({"record": record.to_dict(), "manifest": manifest.summary()})
    elif args.action == "set-password":
        manager.set_auto_backup_password(_read_password(args, confirm=True))
        print("Auto-backup password stored")
    elif args.action == "clear-password":
        if manager.clear_auto_backup_password():
            print("Auto-backup password removed")
        else:
            print("No auto-backup password was stored")
    return 0


def _cmd_serve(args, settings) -> int:
    from .api.main import start_api_server

    print(f"Starting Notes Vault API on {args.host}:{args.port} (Ctrl+C to stop)")
    try:
        start_api_server(host=args.host, port=args.port)
    except KeyboardInterrupt:
        print("\nShutting down backend...")
        get_audit_logger().log_event(
            event_type=EventType.SYSTEM_STOP,
            severity=EventSeverity.INFO,
            message="Notes Vault backend stopped (user interrupt)",
        )
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="notes-vault",
        description="Notes Vault - attachment storage and encrypted backups",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"Notes Vault v{__version__}",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the local API server")
    serve.add_argument("--host", default="127.0.0.1", help="Bind host (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, default=8000, help="Bind port (default: 8000)")
    serve.set_defaults(func=_cmd_serve)

    backup = sub.add_parser("backup", help="Create, list, restore and delete backups")
    backup.set_defaults(func=_cmd_backup)
    actions = backup.add_subparsers(dest="action", required=True)

    def with_password(p):
        p.add_argument(
            "--password-env",
            metavar="VAR",
            help="Read the password from this environment variable instead of prompting",
        )
        return p

    create = with_password(actions.add_parser("create", help="Create an encrypted backup"))
    create.add_argument("--stored-password", action="store_true",
                        help="Use the stored auto-backup password")

    listing = actions.add_parser("list", help="List backups, newest first")
    listing.add_argument("--json", action="store_true", help="Print records as JSON")

    restore = with_password(actions.add_parser("restore", help="Restore from a backup"))
    restore.add_argument("path", help="Backup file (absolute or relative to the backups directory)")

    delete = actions.add_parser("delete", help="Delete a backup")
    delete.add_argument("backup_id")
    delete.add_argument("path")

    prune = actions.add_parser("prune", help="Apply the retention policy")
    prune.add_argument("--keep", type=int, default=None,
                       help="Backups to keep (default: NOTES_VAULT_RETENTION_COUNT)")

    actions.add_parser("reconcile", help="Drop records whose backup file is gone")

    info = with_password(actions.add_parser("info", help="Show the contents of a backup"))
    info.add_argument("backup_id")

    with_password(actions.add_parser("set-password", help="Store the auto-backup password"))
    actions.add_parser("clear-password", help="Remove the stored auto-backup password")
    return parser


def main(argv=None) -> int:
    """Main entry point for the notes-vault command."""
    args = build_parser().parse_args(argv)

    try:
        settings = load_settings()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2
    configure_audit_logger(settings.audit_log_dir)

    get_audit_logger().log_event(
        event_type=EventType.SYSTEM_START,
        severity=EventSeverity.INFO,
        message="Notes Vault starting",
        details={"version": __version__, "command": args.command},
    )

    try:
        return args.func(args, settings)
    except VaultError as e:
        print(f"Error: {e.user_message}", file=sys.stderr)
        return 1
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
