"""
Desktop prompts for WalletVault, built on PyQt5 dialogs.

LEGAL NOTICE:
Every dialog here asks the device owner directly. Nothing is approved on the
owner's behalf and no answer is remembered between requests.
"""

import logging
from typing import List, Optional

from PyQt5.QtWidgets import QInputDialog, QLineEdit, QMessageBox

from . import config
from .gate import Prompter
from .keyring import Identity

logger = logging.getLogger(__name__)


class QtPrompter(Prompter):
    """Prompter backed by modal Qt message boxes and input dialogs."""

    def __init__(self, parent=None):
        self.parent = parent

    def confirm(self, message: str, details: Optional[str] = None) -> bool:
        box = QMessageBox(self.parent)
        box.setWindowTitle(f"{config.APP_TITLE_PREFIX} - Confirm")
        box.setIcon(QMessageBox.Warning)
        box.setText(message)
        if details:
            box.setInformativeText(details)
        box.setStandardButtons(QMessageBox.Yes | QMessageBox.No)
        # Default to No so a stray Enter never approves
        box.setDefaultButton(QMessageBox.No)
        return box.exec_() == QMessageBox.Yes

    def ask_password(self, message: str) -> Optional[str]:
        text, ok = QInputDialog.getText(
            self.parent, f"{config.APP_TITLE_PREFIX} - Password", message, QLineEdit.Password
        )
        if not ok:
            return None
        return text

    def ask_new_password(self) -> Optional[tuple]:
        """Ask for a new password and its confirmation. None if cancelled."""
        password = self.ask_password("Choose a vault password:")
        if password is None:
            return None
        confirm = self.ask_password("Confirm the vault password:")
        if confirm is None:
            return None
        return password, confirm

    def choose_identity(self, identities: List[Identity]) -> Optional[Identity]:
        """Let the owner pick which wallet a session is bound to."""
        if len(identities) == 1:
            return identities[0]
        labels = [f"{i.name} ({i.address})" for i in identities]
        label, ok = QInputDialog.getItem(
            self.parent, f"{config.APP_TITLE_PREFIX} - Select Wallet",
            "Wallet to connect:", labels, 0, False
        )
        if not ok:
            return None
        return identities[labels.index(label)]

    def notify(self, message: str) -> None:
        logger.info(message)
        QMessageBox.information(self.parent, config.APP_TITLE_PREFIX, message)

    def error(self, message: str) -> None:
        logger.error(message)
        QMessageBox.critical(self.parent, f"{config.APP_TITLE_PREFIX} - Error", message)
