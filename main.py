"""
Main application entry point.

    python main.py                     # tray application
    python main.py check [ACCOUNT...]  # check once and print the result
    python main.py add-account EMAIL
    python main.py remove-account EMAIL
"""
import argparse
import getpass
import logging
import sys
from typing import Dict, List, Optional

from mail_checker import config
from mail_checker.auth.accounts import Account
from mail_checker.auth.credentials import EncryptedCredentialStore
from mail_checker.auth.login_flow import LoginFlow
from mail_checker.core.checker import AccountChecker, CheckScheduler
from mail_checker.core.cookie_export import CookieFileSink, open_mailbox
from mail_checker.core.settings import AUTO_LOGIN, CHECK_INTERVAL, SqliteSettingsStore
from mail_checker.models import ConnectionState
from mail_checker.network.session_client import SessionClient
from mail_checker.storage.db import init_db
from mail_checker.utils.errors import MailCheckerError, human_friendly_message
from mail_checker.utils.logging_cfg import setup_logging


logger = logging.getLogger(__name__)


def load_accounts(credentials: EncryptedCredentialStore,
                  settings: SqliteSettingsStore) -> List[Account]:
    """Create an Account for every stored login."""
    accounts = []
    for username in credentials.list_usernames():
        try:
            accounts.append(Account(username))
        except ValueError as e:
            logger.warning(f"Skipping stored login {username!r}: {e}")
            continue
        settings.register(username)
    return accounts


def cmd_check(args, credentials, settings) -> int:
    """Check accounts once, synchronously, and print what was found."""
    accounts = load_accounts(credentials, settings)
    if args.accounts:
        accounts = [account for account in accounts if account.username in args.accounts]
    if not accounts:
        print("No matching accounts. Add one with 'add-account EMAIL'.", file=sys.stderr)
        return 1

    client = SessionClient()
    flow = LoginFlow(client, credentials)
    failures = 0
    try:
        for account in accounts:
            try:
                snapshot = AccountChecker(account, flow).check()
            except MailCheckerError as e:
                failures += 1
                print(f"{account.username}: {human_friendly_message(e)}", file=sys.stderr)
                continue
            print(f"{account.username}: {account.state.value}")
            for name, label in sorted(snapshot.labels.items()):
                print(f"  {name}: {label.unread} unread / {label.total}")
            for message in snapshot.messages[:args.limit]:
                marker = " " if message.is_read else "*"
                print(f"  {marker} {message.short_date:>8}  {message.people[:24]:<24}  {message.subject}")
    finally:
        client.close()
    return 1 if failures else 0


def cmd_add_account(args, credentials, settings) -> int:
    try:
        Account(args.email)
    except ValueError as e:
        print(str(e), file=sys.stderr)
        return 2
    secret = getpass.getpass(f"Password for {args.email}: ")
    if not secret:
        print("No password given.", file=sys.stderr)
        return 2
    credentials.save_secret(args.email, secret)
    settings.register(args.email)
    print(f"Added {args.email}")
    return 0


def cmd_remove_account(args, credentials, settings) -> int:
    try:
        credentials.delete_secret(args.email)
    except MailCheckerError as e:
        print(human_friendly_message(e), file=sys.stderr)
        return 1
    settings.remove(args.email)
    print(f"Removed {args.email}")
    return 0


def cmd_run(args, credentials, settings) -> int:
    """Run the tray application."""
    from PyQt5.QtCore import QTimer
    from PyQt5.QtWidgets import QApplication, QMessageBox

    from mail_checker.ui.settings_dialog import SettingsDialog
    from mail_checker.ui.tray import AccountSignals, AccountTrayIcon

    app = QApplication(sys.argv)
    app.setApplicationName("Webmail Checker")
    app.setQuitOnLastWindowClosed(False)

    accounts = load_accounts(credentials, settings)
    if not accounts:
        QMessageBox.information(
            None, "Webmail Checker",
            "No accounts configured.\n\nAdd one with:\n  python main.py add-account EMAIL"
        )
        return 1

    client = SessionClient()
    flow = LoginFlow(client, credentials)
    scheduler = CheckScheduler()
    sink = CookieFileSink()
    signals = AccountSignals()
    icons: Dict[str, AccountTrayIcon] = {}
    last_unread: Dict[str, int] = {}
    timers: Dict[str, QTimer] = {}

    def on_state_changed(account: Account) -> None:
        # Called on check threads; Qt queues the signal to the UI thread
        signals.state_changed.emit(account)

    def refresh_icon(account: Account) -> None:
        icon = icons.get(account.username)
        if icon is None:
            return
        icon.refresh()
        icon.show_new_mail(last_unread.get(account.username, 0))
        last_unread[account.username] = account.inbox_unread

    signals.state_changed.connect(refresh_icon)

    def check(username: str) -> None:
        scheduler.trigger(username, supersede=True)

    def open_in_browser(username: str) -> None:
        account = scheduler.checker(username).account
        try:
            open_mailbox(account, sink)
        except (OSError, ValueError) as e:
            logger.error(f"Could not open mailbox for {username}: {e}")

    def logout(username: str) -> None:
        scheduler.checker(username).logout()

    def schedule(username: str) -> None:
        interval = int(settings.get(username, CHECK_INTERVAL, config.DEFAULT_CHECK_INTERVAL_SECONDS))
        timers[username].start(max(60, interval) * 1000)

    def show_settings() -> None:
        SettingsDialog([account.username for account in accounts], settings).exec_()
        for username in timers:
            schedule(username)

    def periodic(username: str) -> None:
        account = scheduler.checker(username).account
        if settings.get(username, AUTO_LOGIN, True) or account.state != ConnectionState.OFFLINE:
            scheduler.trigger(username)

    for account in accounts:
        scheduler.add(AccountChecker(account, flow, on_state_changed=on_state_changed))
        icon = AccountTrayIcon(account, check, open_in_browser, logout, show_settings, app.quit)
        icon.show()
        icons[account.username] = icon

        timer = QTimer()
        timer.timeout.connect(lambda name=account.username: periodic(name))
        timers[account.username] = timer
        schedule(account.username)

        if settings.get(account.username, AUTO_LOGIN, True):
            scheduler.trigger(account.username)

    try:
        return app.exec_()
    finally:
        for timer in timers.values():
            timer.stop()
        scheduler.shutdown()
        client.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Watch webmail inboxes for new mail.")
    parser.add_argument("--debug", action="store_true", help="verbose logging")
    parser.add_argument("--env-file", help="dotenv file to load")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("run", help="run the tray application (default)")

    check = subparsers.add_parser("check", help="check accounts once")
    check.add_argument("accounts", nargs="*", help="accounts to check (default: all)")
    check.add_argument("--limit", type=int, default=10, help="previews to show per account")

    add = subparsers.add_parser("add-account", help="store the password of an account")
    add.add_argument("email")

    remove = subparsers.add_parser("remove-account", help="forget an account")
    remove.add_argument("email")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main function"""
    args = build_parser().parse_args(argv)

    config.load_env(args.env_file)
    init_db()
    setup_logging(debug=args.debug)

    credentials = EncryptedCredentialStore()
    settings = SqliteSettingsStore()
    commands = {
        "check": cmd_check,
        "add-account": cmd_add_account,
        "remove-account": cmd_remove_account,
    }
    command = commands.get(args.command, cmd_run)
    return command(args, credentials, settings)


if __name__ == "__main__":
    sys.exit(main())
