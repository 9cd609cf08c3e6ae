"""
System tray icons, one per account.

Presentation-only: the icon and tooltip of each connection state live in
the STATE_PRESENTATION side table; all actions go through injected
callables so the tray knows nothing about checks or sessions.
"""
from typing import Callable, Optional

from PyQt5.QtCore import QObject, pyqtSignal
from PyQt5.QtWidgets import QAction, QApplication, QMenu, QStyle, QSystemTrayIcon

from mail_checker.auth.accounts import Account
from mail_checker.models import ConnectionState


# state -> (standard icon, tooltip suffix)
STATE_PRESENTATION = {
    ConnectionState.OFFLINE: (QStyle.SP_MessageBoxCritical, "signed out"),
    ConnectionState.CONNECTING: (QStyle.SP_BrowserReload, "checking..."),
    ConnectionState.ONLINE: (QStyle.SP_DialogApplyButton, "no new mail"),
    ConnectionState.NOTIFY: (QStyle.SP_MessageBoxInformation, "new mail"),
}


class AccountSignals(QObject):
    """Carries account updates from check threads to the UI thread."""
    state_changed = pyqtSignal(object)  # Account


class AccountTrayIcon(QSystemTrayIcon):
    """
    Tray icon showing the state of one account.

    Left click checks the account; the context menu offers the other
    actions.
    """

    def __init__(
        self,
        account: Account,
        check_fn: Callable[[str], None],
        open_fn: Callable[[str], None],
        logout_fn: Callable[[str], None],
        settings_fn: Callable[[], None],
        quit_fn: Callable[[], None],
        parent: Optional[QObject] = None,
    ):
        """
        Initialize the tray icon.

        Args:
            account: The account shown by this icon.
            check_fn: Starts a check (username).
            open_fn: Opens the mailbox in a browser (username).
            logout_fn: Signs the account out (username).
            settings_fn: Shows the settings dialog.
            quit_fn: Quits the application.
            parent: Parent object.
        """
        super().__init__(parent)
        self.account = account
        self.check_fn = check_fn
        self.open_fn = open_fn
        self.logout_fn = logout_fn

        menu = QMenu()
        title = QAction(account.username, menu)
        title.setEnabled(False)
        menu.addAction(title)
        menu.addSeparator()
        menu.addAction("Check now", lambda: self.check_fn(self.account.username))
        menu.addAction("Open mailbox", lambda: self.open_fn(self.account.username))
        menu.addAction("Sign out", lambda: self.logout_fn(self.account.username))
        menu.addSeparator()
        menu.addAction("Settings...", settings_fn)
        menu.addAction("Quit", quit_fn)
        self._menu = menu
        self.setContextMenu(menu)

        self.activated.connect(self._on_activated)
        self.refresh()

    def _on_activated(self, reason):
        if reason == QSystemTrayIcon.Trigger:
            self.check_fn(self.account.username)

    def refresh(self):
        """Update icon and tooltip from the account state."""
        account = self.account
        icon_id, status = STATE_PRESENTATION[account.state]
        self.setIcon(QApplication.style().standardIcon(icon_id))

        tooltip = f"{account.username}: {status}"
        if account.state == ConnectionState.NOTIFY:
            tooltip = f"{account.username}: {account.inbox_unread} unread"
        elif account.state == ConnectionState.OFFLINE and account.last_error is not None:
            tooltip = f"{tooltip} ({type(account.last_error).__name__})"
        self.setToolTip(tooltip)

    def show_new_mail(self, previous_unread: int):
        """Pop up a balloon when the unread count grew."""
        account = self.account
        if account.state != ConnectionState.NOTIFY or account.inbox_unread <= previous_unread:
            return
        unread = [message for message in account.messages if not message.is_read]
        lines = [f"{message.people}: {message.subject}" for message in unread[:3]]
        self.showMessage(
            f"{account.inbox_unread} unread - {account.username}",
            "\n".join(lines) or "New mail",
            QSystemTrayIcon.Information,
            5000,
        )
