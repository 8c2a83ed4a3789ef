"""
Main entry point for WalletVault.

Run without arguments to unlock the vault and review the stored wallets, or
pass a wc: pairing URI to connect one wallet to a remote dApp.

LEGAL NOTICE:
This tool is for personal use only. It must operate only on the device where
it is installed and only with the explicit consent of the device owner.
"""

import importlib
import logging
import os
import signal
import sys
from typing import List, Optional

from PyQt5.QtCore import Qt
from PyQt5.QtWidgets import QApplication

from . import config
from .authorizer import SessionAuthorizer
from .chain import ChainClient
from .errors import (
    AttemptsExhausted, ConfirmationIncomplete, PasswordMismatch,
    PlaintextVaultDetected, UserRejectedAction, VaultError,
)
from .gate import ActionGate, ConfirmationToken
from .session import VaultSession
from .transport import Transport
from .ui import QtPrompter

logger = logging.getLogger(__name__)


def load_transport(factory_path: Optional[str] = None) -> Transport:
    """
    Build the session transport named by "module:callable".

    Raises:
        ValueError: If the setting is missing or does not resolve to a factory
    """
    factory_path = factory_path or os.environ.get(config.TRANSPORT_ENV_VAR)
    if not factory_path or ":" not in factory_path:
        raise ValueError(f"Set {config.TRANSPORT_ENV_VAR} to 'module:factory' to connect to dApps")
    module_name, _, attr = factory_path.partition(":")
    try:
        factory = getattr(importlib.import_module(module_name), attr)
    except (ImportError, AttributeError) as e:
        raise ValueError(f"Cannot load transport '{factory_path}': {e}") from e
    transport = factory()
    if not isinstance(transport, Transport):
        raise ValueError(f"'{factory_path}' did not return a Transport")
    return transport


class WalletVaultApp:
    """Desktop application wiring the vault session to Qt prompts."""

    def __init__(self, argv: List[str]):
        self.app = QApplication(argv)
        self.app.setApplicationName(config.APP_NAME)
        self.app.setOrganizationName(config.APP_NAME)
        self.prompter = QtPrompter()
        self.session = VaultSession()
        self.gate = ActionGate(self.prompter, self.session.audit)

        # Handle Ctrl+C gracefully
        signal.signal(signal.SIGINT, signal.SIG_DFL)

    def _set_first_password(self) -> bool:
        while True:
            pair = self.prompter.ask_new_password()
            if pair is None:
                return False
            try:
                self.session.set_password(*pair)
                return True
            except PasswordMismatch as e:
                self.prompter.error(str(e))

    def _resolve_plaintext(self) -> None:
        if self.prompter.confirm(
            "Unencrypted wallets were found. Encrypt them now with a new vault password?"
        ):
            while True:
                pair = self.prompter.ask_new_password()
                if pair is None:
                    raise UserRejectedAction("Encryption cancelled")
                try:
                    self.session.encrypt_plaintext_vault(*pair)
                    return
                except PasswordMismatch as e:
                    self.prompter.error(str(e))
        token = ConfirmationToken.collect(self.prompter)
        self.session.keep_plaintext(token)

    def unlock(self) -> bool:
        """Unlock the vault, asking for or creating the password as needed."""
        try:
            self.session.unlock_interactive(self.prompter)
        except PlaintextVaultDetected:
            try:
                self._resolve_plaintext()
            except (UserRejectedAction, ConfirmationIncomplete) as e:
                self.prompter.error(f"The vault stays locked: {e}")
                return False
        except UserRejectedAction:
            return False

        if not self.session.store.has_records() and self.session.encryption_enabled \
                and not self.session.password_set:
            return self._set_first_password()
        return True

    def ensure_identity(self) -> bool:
        if self.session.list_identities():
            return True
        if not self.prompter.confirm("The vault is empty. Create a new wallet?"):
            return False
        identity = self.session.create()
        self.prompter.notify(f"Created {identity.name}: {identity.address}")
        return True

    def show_wallets(self) -> None:
        chain = ChainClient(self.session.settings.default_network)
        lines = [
            f"{i.name}: {i.address} ({chain.get_native_balance(i.address)} {chain.currency})"
            for i in self.session.list_identities()
        ]
        self.prompter.notify("\n".join(lines))

    def connect(self, uri: str) -> int:
        identity = self.prompter.choose_identity(self.session.list_identities())
        if identity is None:
            return 0
        try:
            transport = load_transport()
        except ValueError as e:
            self.prompter.error(str(e))
            return 1
        authorizer = SessionAuthorizer(self.session, self.gate, transport)
        try:
            authorizer.pair(uri, identity.address)
        except VaultError as e:
            self.prompter.error(f"Pairing failed: {e}")
            return 1
        authorizer.run(poll_interval=0.1, on_idle=self.app.processEvents)
        return 0

    def run(self, uri: Optional[str] = None) -> int:
        try:
            if not self.unlock() or not self.ensure_identity():
                return 0
        except AttemptsExhausted as e:
            self.prompter.error(str(e))
            return 1
        except VaultError as e:
            self.prompter.error(f"Failed to open the vault: {e}")
            return 1

        if uri:
            return self.connect(uri)
        self.show_wallets()
        return 0

    def cleanup(self):
        """Forget every unlocked secret."""
        self.session.lock()


def main():
    """Main entry point."""
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(name)s - %(message)s')
    # Enable high DPI scaling
    if hasattr(Qt, 'AA_EnableHighDpiScaling'):
        QApplication.setAttribute(Qt.AA_EnableHighDpiScaling, True)
    if hasattr(Qt, 'AA_UseHighDpiPixmaps'):
        QApplication.setAttribute(Qt.AA_UseHighDpiPixmaps, True)

    uri = next((arg for arg in sys.argv[1:] if arg.startswith(config.PAIRING_URI_SCHEME)), None)
    app = WalletVaultApp(sys.argv)
    try:
        return app.run(uri)
    finally:
        app.cleanup()


if __name__ == "__main__":
    sys.exit(main())
