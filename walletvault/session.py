"""
The vault session: one object owning the Key Ring, the vault password and the
user settings for the lifetime of the process.

Every outward vault operation (unlock, create, rename, delete, restore, mode
toggle) lives here and is passed explicitly to whoever needs it; there is no
module-level state.
"""

import logging
import os
import threading
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from . import config, signer
from .crypto import CryptoManager
from .errors import (
    AttemptsExhausted, DecryptionError, DuplicateIdentity, IdentityNotFound,
    PasswordMismatch, PasswordNotSet, PlaintextVaultDetected, RecordCorrupt,
    UnlockFailedAfterRestore, UserRejectedAction, VaultError, VaultLocked,
    WrongPassword,
)
from .gate import ActionGate, ActionKind, AuditLog, ConfirmationToken, Prompter
from .keyring import Identity, KeyRing
from .settings import Settings, SettingsStore
from .storage import (
    MODE_EMPTY, MODE_ENCRYPTED, MODE_PLAINTEXT, VaultStore, WalletRecord,
    new_record_id, records_mode,
)

logger = logging.getLogger(__name__)

BackupHook = Callable[[Settings], None]


@dataclass
class RestoreResult:
    """Outcome of moving a record out of the trash."""
    record_id: str
    name: str
    identity: Optional[Identity] = None
    warning: Optional[UnlockFailedAfterRestore] = None


class VaultSession:
    """Owns all mutable vault state for one process session."""

    def __init__(self, directory: Optional[str] = None,
                 crypto: Optional[CryptoManager] = None,
                 backup_hook: Optional[BackupHook] = None):
        """
        Initialize the session.

        Args:
            directory: Vault directory (defaults to ~/.walletvault or $WALLETVAULT_HOME)
            crypto: Crypto manager, mostly overridden to use lighter KDF settings
            backup_hook: Called with the settings after every persisted change
        """
        self.directory = directory or config.get_config_dir()
        os.makedirs(self.directory, exist_ok=True)
        self.store = VaultStore(self.directory)
        self.settings_store = SettingsStore(os.path.join(self.directory, config.SETTINGS_FILE))
        self.settings = self.settings_store.load()
        self.crypto = crypto or CryptoManager()
        self.keyring = KeyRing()
        self.audit = AuditLog(self.directory)
        self._backup_hook = backup_hook
        self._password: Optional[str] = None
        self._unlocked = False
        self._failed_attempts = 0
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def encryption_enabled(self) -> bool:
        return not self.settings.encryption_disabled

    @property
    def password_set(self) -> bool:
        return self._password is not None

    @property
    def is_unlocked(self) -> bool:
        return self._unlocked

    @property
    def failed_attempts(self) -> int:
        return self._failed_attempts

    def list_identities(self) -> List[Identity]:
        """Return the unlocked identities in order."""
        return self.keyring.identities()

    def lock(self) -> None:
        """Forget the password and every unlocked secret."""
        with self._lock:
            self.keyring.clear()
            self._password = None
            self._unlocked = False

    def _require_unlocked(self) -> None:
        if not self._unlocked and self.store.has_records():
            raise VaultLocked("Unlock the vault first")

    def _after_change(self, action: str, details: str) -> None:
        self.audit.record(action, details)
        if self._backup_hook is None:
            return
        try:
            self._backup_hook(self.settings)
        except Exception as e:
            logger.error(f"Backup after '{action}' failed: {e}", exc_info=True)

    def _save_settings(self) -> None:
        self.settings_store.save(self.settings)

    # ------------------------------------------------------------------
    # Password lifecycle
    # ------------------------------------------------------------------

    def _check_pair(self, password: str, confirm: str) -> None:
        if not password:
            raise PasswordMismatch("Password cannot be empty")
        if not self.crypto.secure_compare(password.encode('utf-8'), confirm.encode('utf-8')):
            raise PasswordMismatch("Passwords do not match")

    def set_password(self, password: str, confirm: str) -> None:
        """
        Establish the vault password for a vault with no records yet.

        Raises:
            PasswordMismatch: If the two entries differ or are empty
            VaultLocked: If records exist (unlock with their password instead)
        """
        with self._lock:
            if not self.encryption_enabled:
                raise VaultError("The vault is in plaintext mode; enable encryption instead")
            if self._password is not None:
                raise VaultError("A vault password is already set; use change_password")
            self._check_pair(password, confirm)
            if self.store.has_records():
                raise VaultLocked("The vault already has records; unlock it with its password")
            self._password = password
            self._unlocked = True
            logger.info("Vault password set")

    def change_password(self, old_password: str, new_password: str, confirm: str) -> None:
        """Re-encrypt every active record under a new password."""
        with self._lock:
            if not self.encryption_enabled or self._password is None:
                raise PasswordNotSet("The vault has no password to change")
            self._require_unlocked()
            if not self.crypto.secure_compare(old_password.encode('utf-8'), self._password.encode('utf-8')):
                raise WrongPassword(attempts_left=config.MAX_UNLOCK_ATTEMPTS - self._failed_attempts)
            self._check_pair(new_password, confirm)
            self._rewrite_all(new_password)
            self._password = new_password
            self._after_change("change_password", f"{len(self.keyring)} record(s) re-encrypted")

    # ------------------------------------------------------------------
    # Unlock
    # ------------------------------------------------------------------

    def _open_record(self, record: WalletRecord, password: Optional[str]) -> Identity:
        if record.is_encrypted:
            if password is None:
                raise PasswordNotSet("A password is required to open encrypted records")
            secret = self.crypto.decrypt_secret(record.data, password)
        else:
            secret = record.private_key
        try:
            address = signer.derive_address(secret)
        except (ValueError, TypeError) as e:
            raise RecordCorrupt(f"Record '{record.name}' does not hold a valid key") from e
        return Identity(id=record.id, name=record.name, address=address, secret=secret)

    def unlock(self, password: Optional[str] = None) -> List[Identity]:
        """
        Decrypt the whole active record set into the Key Ring.

        All-or-nothing: one failing record leaves the Key Ring empty.

        Args:
            password: The vault password (ignored for a plaintext vault)

        Returns:
            The unlocked identities

        Raises:
            WrongPassword: If the password fails and attempts remain
            AttemptsExhausted: On the last allowed failure and on every call after it
            RecordCorrupt: If a backing file or record cannot be parsed
            PlaintextVaultDetected: If plaintext records exist without the opt-out flag
        """
        with self._lock:
            if self._failed_attempts >= config.MAX_UNLOCK_ATTEMPTS:
                raise AttemptsExhausted(self._failed_attempts)

            records = self.store.read_records()
            mode = records_mode(records)

            if mode == MODE_EMPTY:
                self.keyring.clear()
                self._unlocked = True
                return []

            if mode == MODE_PLAINTEXT:
                if self.encryption_enabled:
                    raise PlaintextVaultDetected(
                        "Unencrypted wallets detected. Encrypt them or confirm plaintext mode."
                    )
                identities = [self._open_record(r, None) for r in records]
                self.keyring.replace_all(identities)
                self._unlocked = True
                logger.info(f"Unlocked {len(identities)} unencrypted wallet(s)")
                return identities

            if password is None:
                raise PasswordNotSet("The vault is encrypted; a password is required")

            try:
                identities = [self._open_record(r, password) for r in records]
            except DecryptionError:
                self.keyring.clear()
                self._password = None
                self._unlocked = False
                self._failed_attempts += 1
                left = config.MAX_UNLOCK_ATTEMPTS - self._failed_attempts
                logger.warning(f"Wrong vault password ({left} attempt(s) left)")
                self.audit.record("unlock:failed", f"attempts left {left}")
                if left <= 0:
                    raise AttemptsExhausted(self._failed_attempts)
                raise WrongPassword(attempts_left=left)
            except RecordCorrupt:
                self.keyring.clear()
                self._unlocked = False
                raise

            self.keyring.replace_all(identities)
            self._password = password
            self._unlocked = True
            self._failed_attempts = 0
            logger.info(f"Successfully unlocked {len(identities)} wallet(s)")
            self.audit.record("unlock:ok", f"{len(identities)} wallet(s)")
            return identities

    def unlock_interactive(self, prompter: Prompter) -> List[Identity]:
        """
        Ask for the password until it works or the budget runs out.

        Raises:
            AttemptsExhausted: When every attempt failed
            UserRejectedAction: If the user cancels the password prompt
        """
        if self.store.mode() != MODE_ENCRYPTED:
            return self.unlock()
        while True:
            password = prompter.ask_password("Enter your wallet vault password:")
            if password is None:
                raise UserRejectedAction("Unlock cancelled")
            try:
                return self.unlock(password)
            except WrongPassword as e:
                prompter.notify(str(e))

    # ------------------------------------------------------------------
    # Plaintext legacy vaults
    # ------------------------------------------------------------------

    def encrypt_plaintext_vault(self, password: str, confirm: str) -> List[Identity]:
        """Encrypt a plaintext store found while encryption is expected."""
        with self._lock:
            self._check_pair(password, confirm)
            records = self.store.read_records()
            if records_mode(records) != MODE_PLAINTEXT:
                raise VaultError("The vault holds no plaintext records")
            identities = [self._open_record(r, None) for r in records]
            self.keyring.replace_all(identities)
            self.settings.encryption_disabled = False
            self._rewrite_all(password)
            self._save_settings()
            self._password = password
            self._unlocked = True
            self._after_change("encrypt_vault", f"{len(identities)} record(s)")
            return identities

    def keep_plaintext(self, token: ConfirmationToken) -> List[Identity]:
        """Accept an existing plaintext store after the two-step confirmation."""
        with self._lock:
            token.ensure_complete()
            self.settings.encryption_disabled = True
            self._save_settings()
            self.audit.record("vault_mode:plaintext", "kept existing plaintext store")
            return self.unlock()

    # ------------------------------------------------------------------
    # Create / import
    # ------------------------------------------------------------------

    def _seal(self, record_id: str, name: str, secret: str, password: Optional[str]) -> WalletRecord:
        if self.encryption_enabled:
            if password is None:
                raise PasswordNotSet("Set the vault password before storing wallets")
            return WalletRecord(id=record_id, name=name, data=self.crypto.encrypt_secret(secret, password))
        return WalletRecord(id=record_id, name=name, private_key=secret)

    def create(self, secret: Optional[str] = None, display_name: Optional[str] = None,
               default_name: str = config.DEFAULT_CREATED_NAME) -> Identity:
        """
        Store a new identity and add it to the Key Ring.

        Args:
            secret: Private key to store; a random one is generated when None
            display_name: Name shown to the user; a numbered default when empty

        Raises:
            PasswordNotSet: If the vault is encrypted and no password is set
            DuplicateIdentity: If the address is already unlocked
        """
        with self._lock:
            self._require_unlocked()
            if self.encryption_enabled and self._password is None:
                raise PasswordNotSet("Set the vault password before storing wallets")
            secret = signer.normalize_private_key(secret) if secret else signer.generate_private_key()
            address = signer.derive_address(secret)
            if address in self.keyring:
                raise DuplicateIdentity(f"{address} is already in the vault")
            name = (display_name or "").strip() or default_name.format(n=len(self.keyring) + 1)

            record = self._seal(new_record_id(), name, secret, self._password)
            with self.store.transaction() as txn:
                txn.records.append(record)

            identity = Identity(id=record.id, name=name, address=address, secret=secret)
            self.keyring.add(identity)
            self._unlocked = True
            logger.info(f"Wallet '{name}' saved ({address})")
            self._after_change("create", f"{name} {address}")
            return identity

    def import_private_key(self, private_key: str, display_name: Optional[str] = None) -> Identity:
        return self.create(signer.normalize_private_key(private_key), display_name,
                           default_name=config.DEFAULT_IMPORTED_NAME)

    def import_mnemonic(self, phrase: str, display_name: Optional[str] = None) -> Identity:
        return self.create(signer.private_key_from_mnemonic(phrase), display_name,
                           default_name=config.DEFAULT_IMPORTED_NAME)

    # ------------------------------------------------------------------
    # Rename / delete / trash
    # ------------------------------------------------------------------

    @staticmethod
    def _index_of(records: List[WalletRecord], record_id: str) -> int:
        for i, record in enumerate(records):
            if record.id == record_id:
                return i
        raise IdentityNotFound(f"No stored record with id {record_id}")

    def rename(self, address: str, new_name: str) -> Identity:
        """Change a display name; the active record file is rewritten as a whole."""
        with self._lock:
            new_name = new_name.strip()
            if not new_name:
                raise ValueError("Name cannot be empty")
            identity = self.keyring.get(address)
            with self.store.transaction() as txn:
                txn.records[self._index_of(txn.records, identity.id)].name = new_name
            old_name, identity.name = identity.name, new_name
            logger.info(f"Renamed wallet '{old_name}' to '{new_name}'")
            self._after_change("rename", f"{identity.address} {old_name} -> {new_name}")
            return identity

    def delete(self, address: str) -> WalletRecord:
        """Move the identity's record to the trash and drop it from the Key Ring."""
        with self._lock:
            identity = self.keyring.get(address)
            with self.store.transaction() as txn:
                record = txn.records.pop(self._index_of(txn.records, identity.id))
                txn.trash.append(record)
            self.keyring.remove(identity.address)
            logger.info(f"Wallet '{identity.name}' moved to trash")
            self._after_change("delete", f"{identity.name} {identity.address}")
            return record

    def list_trash(self) -> List[Dict[str, object]]:
        """Describe trashed records without opening them."""
        return [
            {"index": i, "id": r.id, "name": r.name, "encrypted": r.is_encrypted}
            for i, r in enumerate(self.store.read_trash())
        ]

    def clear_trash(self) -> int:
        with self._lock:
            count = self.store.clear_trash()
            if count:
                self._after_change("clear_trash", f"{count} record(s)")
            return count

    def restore(self, trash_index: int, password: Optional[str] = None) -> RestoreResult:
        """
        Move a trashed record back to the active set, then try to unlock it.

        The record is converted to the current vault mode on the way back.
        Failing to unlock it afterwards does not undo the restore; the result
        carries an UnlockFailedAfterRestore warning instead.

        Args:
            trash_index: Position in list_trash()
            password: Password to try; defaults to the session password
        """
        with self._lock:
            password = password if password is not None else self._password
            with self.store.transaction() as txn:
                if trash_index < 0 or trash_index >= len(txn.trash):
                    raise IdentityNotFound(f"No trashed record at index {trash_index}")
                record = txn.trash.pop(trash_index)
                record = self._convert_for_restore(record, password)
                if any(r.id == record.id for r in txn.records):
                    logger.warning(f"Record '{record.name}' is already active; dropping trash copy")
                else:
                    txn.records.append(record)

            result = RestoreResult(record_id=record.id, name=record.name)
            try:
                identity = self._open_record(record, password)
            except (DecryptionError, PasswordNotSet, RecordCorrupt) as e:
                result.warning = UnlockFailedAfterRestore(record.name, str(e))
                logger.warning(str(result.warning))
            else:
                existing = self.keyring.find(identity.address)
                if existing is None:
                    self.keyring.add(identity)
                    existing = identity
                result.identity = existing
            self._after_change("restore", record.name)
            return result

    def _convert_for_restore(self, record: WalletRecord, password: Optional[str]) -> WalletRecord:
        if self.encryption_enabled and not record.is_encrypted:
            if password is None:
                raise PasswordNotSet("Set the vault password before restoring a plaintext wallet")
            return self._seal(record.id, record.name, record.private_key, password)
        if not self.encryption_enabled and record.is_encrypted:
            if password is None:
                raise PasswordNotSet("A password is required to restore an encrypted wallet into a plaintext vault")
            try:
                secret = self.crypto.decrypt_secret(record.data, password)
            except DecryptionError as e:
                raise WrongPassword(attempts_left=config.MAX_UNLOCK_ATTEMPTS - self._failed_attempts) from e
            return WalletRecord(id=record.id, name=record.name, private_key=secret)
        return record

    # ------------------------------------------------------------------
    # Vault mode
    # ------------------------------------------------------------------

    def _rewrite_all(self, password: Optional[str]) -> None:
        """Replace every active record with the Key Ring's copy in the current mode."""
        with self.store.transaction() as txn:
            if {r.id for r in txn.records} != {i.id for i in self.keyring.identities()}:
                raise VaultLocked("The key ring does not hold every stored wallet")
            rewritten = []
            for record in txn.records:
                identity = self.keyring.by_id(record.id)
                rewritten.append(self._seal(record.id, identity.name, identity.secret, password))
            txn.records[:] = rewritten

    def toggle_vault_mode(self, token: Optional[ConfirmationToken] = None,
                          new_password: Optional[str] = None,
                          confirm: Optional[str] = None) -> str:
        """
        Switch every active record between encrypted and plaintext storage.

        To plaintext: needs a completed ConfirmationToken.
        To encrypted: needs a new password entered twice.

        Returns:
            The new mode, "encrypted" or "plaintext"
        """
        with self._lock:
            self._require_unlocked()
            if self.encryption_enabled:
                if token is None:
                    raise VaultError("A confirmation token is required to disable encryption")
                token.ensure_complete()
                self.settings.encryption_disabled = True
                try:
                    self._rewrite_all(None)
                except Exception:
                    self.settings.encryption_disabled = False
                    raise
                self._save_settings()
                self._password = None
                logger.warning("Vault decrypted: private keys are stored in plain text")
                self._after_change("vault_mode:plaintext", f"{len(self.keyring)} record(s)")
                return MODE_PLAINTEXT

            if new_password is None or confirm is None:
                raise PasswordNotSet("A new password is required to enable encryption")
            self._check_pair(new_password, confirm)
            self.settings.encryption_disabled = False
            try:
                self._rewrite_all(new_password)
            except Exception:
                self.settings.encryption_disabled = True
                raise
            self._save_settings()
            self._password = new_password
            self._unlocked = True
            logger.info("Vault encrypted")
            self._after_change("vault_mode:encrypted", f"{len(self.keyring)} record(s)")
            return MODE_ENCRYPTED

    # ------------------------------------------------------------------
    # Secret disclosure
    # ------------------------------------------------------------------

    def reveal_secret(self, address: str, gate: ActionGate) -> str:
        """Return a private key after a fresh confirmation."""
        identity = self.keyring.get(address)
        gate.require(
            ActionKind.DISCLOSE_SECRET,
            f"This will display the PRIVATE KEY of {identity.name} ({identity.address}). "
            "Anyone watching can steal your funds. Continue?",
        )
        return identity.secret
