"""
Settings dialog.

Lists every account with a "Check on startup" checkbox bound to the
account's ``auto-login`` preference.
"""
from typing import List

from PyQt5.QtWidgets import (
    QCheckBox, QDialog, QDialogButtonBox, QGroupBox, QLabel, QSpinBox,
    QFormLayout, QVBoxLayout
)

from mail_checker import config
from mail_checker.core.settings import AUTO_LOGIN, CHECK_INTERVAL, SettingsStore


class SettingsDialog(QDialog):
    """Edits per-account preferences in place."""

    def __init__(self, usernames: List[str], settings: SettingsStore, parent=None):
        super().__init__(parent)
        self.setWindowTitle("Webmail Checker Settings")
        self.setMinimumWidth(380)
        self.settings = settings

        layout = QVBoxLayout()
        if not usernames:
            layout.addWidget(QLabel("No accounts configured. Use 'add-account' to add one."))

        for username in sorted(usernames):
            group = QGroupBox(username)
            form = QFormLayout()

            auto_login = QCheckBox("Check on startup")
            auto_login.setChecked(bool(settings.get(username, AUTO_LOGIN, True)))
            auto_login.toggled.connect(
                lambda checked, name=username: self.settings.set(name, AUTO_LOGIN, checked)
            )
            form.addRow(auto_login)

            interval = QSpinBox()
            interval.setRange(1, 24 * 60)
            interval.setSuffix(" min")
            seconds = settings.get(username, CHECK_INTERVAL, config.DEFAULT_CHECK_INTERVAL_SECONDS)
            interval.setValue(max(1, int(seconds) // 60))
            interval.valueChanged.connect(
                lambda minutes, name=username: self.settings.set(name, CHECK_INTERVAL, minutes * 60)
            )
            form.addRow("Check every", interval)

            group.setLayout(form)
            layout.addWidget(group)

        buttons = QDialogButtonBox(QDialogButtonBox.Close)
        buttons.rejected.connect(self.reject)
        layout.addWidget(buttons)
        self.setLayout(layout)
