"""
Command line entry point for OTP Vault.

Every subcommand opens the JSON store in the data directory (``~/.otpvault``
or $OTPVAULT_HOME) and performs one operation. ``watch`` is the exception:
it stays in the foreground so the automatic backup alarm can fire.
"""

import argparse
import logging
import os
import sys
import threading
import time
from typing import List, Optional

from otpvault import config, otpauth
from otpvault.context import VaultContext
from otpvault.errors import OtpVaultError
from otpvault.otp import seconds_remaining
from otpvault.scheduler import BackupScheduler
from otpvault.storage import CredentialEntry, JsonFileStore, OtpKind
from otpvault.sync import SyncResolver
from otpvault.timesync import sync_clock
from otpvault.vault import CredentialVault
from otpvault.webdav import WebDAVConfig

logger = logging.getLogger(__name__)

BACKUP_PASSWORD_ENV = "OTPVAULT_BACKUP_PASSWORD"
MASTER_PASSWORD_ENV = "OTPVAULT_MASTER_PASSWORD"


class OtpVaultApp:
    """Wires the store, context, vault and sync collaborators for one command."""

    def __init__(self, data_dir: Optional[str] = None, backup_password: Optional[str] = None):
        self.data_dir = data_dir or config.default_data_dir()
        store = JsonFileStore(os.path.join(self.data_dir, config.DEFAULT_STORE_FILE))
        self.context = VaultContext(store, master_password=os.environ.get(MASTER_PASSWORD_ENV)).init()
        self.vault = CredentialVault(self.context)
        self.resolver = SyncResolver(self.context, self.vault,
                                     backup_password or os.environ.get(BACKUP_PASSWORD_ENV))
        self.scheduler = BackupScheduler(self.context, self.resolver)
        self.stop_event = threading.Event()

    def cmd_add(self, args) -> int:
        if args.uri:
            entry = self.vault.add_uri(args.uri)
        else:
            entry = self.vault.add(CredentialEntry(
                secret=args.secret,
                kind=OtpKind.HOTP if args.hotp else OtpKind.TOTP,
                issuer=args.issuer or "",
                account=args.account or "",
                algorithm=args.algorithm,
                digits=args.digits,
                period=args.period,
                counter=args.counter,
            ))
        print(entry.id)
        return 0

    def cmd_list(self, args) -> int:
        now = time.time()
        offset = self.context.clock_offset()
        for entry in self.vault.entries():
            code = self.vault.code_for(entry.id, now)
            label = f"{entry.issuer}:{entry.account}" if entry.issuer else entry.account
            if entry.kind is OtpKind.TOTP:
                remaining = f"{seconds_remaining(entry, now, offset):>3}s"
            else:
                remaining = f"#{entry.counter}"
            print(f"{entry.id}  {code:>10}  {remaining:>5}  {label}")
        return 0

    def cmd_uri(self, args) -> int:
        entry = self.vault.get(args.id)
        if entry is None:
            print(f"No entry {args.id}", file=sys.stderr)
            return 1
        print(otpauth.serialize(entry))
        return 0

    def cmd_next(self, args) -> int:
        entry = self.vault.accept_hotp(args.id)
        print(self.vault.code_for(entry.id))
        return 0

    def cmd_delete(self, args) -> int:
        if not self.vault.delete(args.id):
            print(f"No entry {args.id}", file=sys.stderr)
            return 1
        return 0

    def cmd_export(self, args) -> int:
        envelope = self.vault.export_backup(args.password)
        with open(args.file, "w", encoding="utf-8") as f:
            f.write(envelope.to_json())
        print(f"Exported {len(self.vault.entries())} account(s) to {args.file}")
        return 0

    def cmd_import(self, args) -> int:
        with open(args.file, "r", encoding="utf-8") as f:
            text = f.read()
        imported = self.vault.import_backup(text, args.password)
        print(f"Imported {imported} account(s)")
        return 0

    def cmd_webdav_config(self, args) -> int:
        current = self.context.load_webdav_config()
        webdav_config = WebDAVConfig(
            server_url=args.url if args.url is not None else current.server_url,
            username=args.username if args.username is not None else current.username,
            password=args.password if args.password is not None else current.password,
            auto_backup=args.auto_backup if args.auto_backup is not None else current.auto_backup,
            interval_minutes=args.interval if args.interval is not None else current.interval_minutes,
            retention_days=args.retention if args.retention is not None else current.retention_days,
        )
        self.scheduler.configure(webdav_config)
        if webdav_config.auto_backup:
            print("Automatic backups run while 'otpvault watch' is active")
        return 0

    def _report(self, result) -> int:
        if result.ok:
            print(result.action.value, result.uploaded_name or f"imported={result.imported}")
            return 0
        print(f"{result.action.value}: {result.error or 'another sync is running'}", file=sys.stderr)
        return 1

    def cmd_sync(self, args) -> int:
        return self._report(self.resolver.sync("manual"))

    def cmd_backup(self, args) -> int:
        return self._report(self.resolver.backup_now())

    def cmd_restore(self, args) -> int:
        if args.name:
            return self._report(self.resolver.restore(args.name))
        for remote in self.resolver.list_restore_points():
            stamp = time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(remote.modified_ms / 1000))
            print(f"{stamp}  {remote.name}")
        return 0

    def cmd_logs(self, args) -> int:
        if args.clear:
            self.context.sync_log.clear()
            return 0
        for entry in self.context.sync_log.read_all():
            stamp = time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(entry.timestamp / 1000))
            details = f" ({entry.details})" if entry.details else ""
            print(f"{stamp} {entry.level.value:<5} {entry.operation.value:<20} {entry.message}{details}")
        return 0

    def cmd_watch(self, args) -> int:
        webdav_config = self.context.load_webdav_config()
        if not (webdav_config.auto_backup and webdav_config.is_complete()):
            print("Automatic backup is not enabled, see 'otpvault webdav-config --auto-backup'", file=sys.stderr)
            return 1
        result = self.scheduler.on_startup()
        if result is not None:
            self._report(result)
        print(f"Backing up every {webdav_config.interval_minutes} minutes, press Ctrl+C to stop")
        try:
            while not self.stop_event.wait(1):
                pass
        except KeyboardInterrupt:
            logger.info("Watch interrupted")
        finally:
            self.scheduler.alarms.cancel(config.AUTO_BACKUP_ALARM)
        return 0

    def cmd_time_sync(self, args) -> int:
        status = sync_clock(self.context)
        print(status)
        return 0 if status == config.TIME_SYNC_SUCCESS else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="otpvault", description=f"{config.APP_NAME}: OTP authenticator with WebDAV backup")
    parser.add_argument("--version", action="version", version=config.APP_TITLE_PREFIX)
    parser.add_argument("--data-dir", help="Directory holding the store (default: ~/.otpvault)")
    parser.add_argument("--backup-password", help=f"Password for WebDAV backups (or ${BACKUP_PASSWORD_ENV})")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("add", help="Add an account from a URI or its parameters")
    p.add_argument("--uri", help="otpauth:// URI")
    p.add_argument("--secret", help="Base32 secret")
    p.add_argument("--issuer")
    p.add_argument("--account")
    p.add_argument("--hotp", action="store_true", help="Counter based instead of time based")
    p.add_argument("--algorithm", default=config.DEFAULT_ALGORITHM, choices=["SHA1", "SHA256", "SHA512"])
    p.add_argument("--digits", type=int, default=config.DEFAULT_DIGITS)
    p.add_argument("--period", type=int, default=config.DEFAULT_PERIOD)
    p.add_argument("--counter", type=int, default=config.DEFAULT_COUNTER)
    p.set_defaults(handler="cmd_add")

    p = sub.add_parser("list", help="Show current codes")
    p.set_defaults(handler="cmd_list")

    p = sub.add_parser("uri", help="Print the otpauth:// URI of an account")
    p.add_argument("id")
    p.set_defaults(handler="cmd_uri")

    p = sub.add_parser("next", help="Advance an HOTP counter and print the new code")
    p.add_argument("id")
    p.set_defaults(handler="cmd_next")

    p = sub.add_parser("delete", help="Remove an account")
    p.add_argument("id")
    p.set_defaults(handler="cmd_delete")

    p = sub.add_parser("export", help="Write a backup file")
    p.add_argument("file")
    p.add_argument("--password", help="Encrypt the backup with this password")
    p.set_defaults(handler="cmd_export")

    p = sub.add_parser("import", help="Merge a backup file")
    p.add_argument("file")
    p.add_argument("--password")
    p.set_defaults(handler="cmd_import")

    p = sub.add_parser("webdav-config", help="Set WebDAV server and schedule")
    p.add_argument("--url")
    p.add_argument("--username")
    p.add_argument("--password")
    p.add_argument("--auto-backup", dest="auto_backup", action="store_true", default=None)
    p.add_argument("--no-auto-backup", dest="auto_backup", action="store_false")
    p.add_argument("--interval", type=int, choices=config.BACKUP_INTERVALS_MINUTES, help="Minutes between backups")
    p.add_argument("--retention", type=int, help=f"Days of backups to offer ({config.RETENTION_FOREVER} keeps all)")
    p.set_defaults(handler="cmd_webdav_config")

    p = sub.add_parser("sync", help="Reconcile with the newest remote backup")
    p.set_defaults(handler="cmd_sync")

    p = sub.add_parser("backup", help="Upload a backup now")
    p.set_defaults(handler="cmd_backup")

    p = sub.add_parser("restore", help="List remote backups, or restore one by name")
    p.add_argument("name", nargs="?")
    p.set_defaults(handler="cmd_restore")

    p = sub.add_parser("logs", help="Show the sync log")
    p.add_argument("--clear", action="store_true")
    p.set_defaults(handler="cmd_logs")

    p = sub.add_parser("watch", help="Stay running and upload backups on the configured interval")
    p.set_defaults(handler="cmd_watch")

    p = sub.add_parser("time-sync", help="Measure and store the clock offset")
    p.set_defaults(handler="cmd_time_sync")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING,
                        format='%(asctime)s - %(levelname)s - %(name)s - %(message)s')
    if args.command == "add" and not (args.uri or args.secret):
        print("add needs --uri or --secret", file=sys.stderr)
        return 1

    app = OtpVaultApp(args.data_dir, args.backup_password)
    try:
        return getattr(app, args.handler)(args)
    except (OtpVaultError, KeyError, OSError, ValueError) as e:
        logger.debug("Command failed", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
