"""
Error types raised by the vault and the session pipeline.
"""

from typing import Optional

from . import config


class VaultError(Exception):
    """Base class for every WalletVault error."""


class DecryptionError(VaultError):
    """A cipher blob could not be decrypted (wrong password or tampered data)."""


class WrongPassword(VaultError):
    """The vault password did not decrypt the active record set."""

    def __init__(self, attempts_left: int):
        super().__init__(f"Wrong vault password. Attempts left: {attempts_left}")
        self.attempts_left = attempts_left


class AttemptsExhausted(VaultError):
    """Every unlock attempt was used up. Not recoverable in this process."""

    def __init__(self, attempts: int = config.MAX_UNLOCK_ATTEMPTS):
        super().__init__(f"Too many failed attempts ({attempts}).")
        self.attempts = attempts


class RecordCorrupt(VaultError):
    """A backing file or record could not be parsed."""


class PasswordNotSet(VaultError):
    """An encrypted operation was attempted before the vault password was set."""


class PasswordMismatch(VaultError):
    """The password and its confirmation differ."""


class VaultLocked(VaultError):
    """The operation needs the Key Ring to hold the whole active record set."""


class PlaintextVaultDetected(VaultError):
    """Unencrypted records were found while the vault is flagged as encrypted."""


class ConfirmationIncomplete(VaultError):
    """A multi-step confirmation was not fully affirmed."""


class IdentityNotFound(VaultError):
    """No identity or record matches the given address, id or index."""


class DuplicateIdentity(VaultError):
    """An identity with the same address is already in the Key Ring."""


class InvalidSecret(VaultError):
    """A private key or mnemonic phrase could not be parsed."""


class UserRejectedAction(VaultError):
    """The user declined a confirmation. Never fatal."""


class InvalidPairingUri(VaultError):
    """A pairing URI is malformed or uses the wrong scheme."""


class PeerRejectedOrTimedOut(VaultError):
    """The peer refused the session, never acknowledged it, or the relay failed."""


class SessionStateError(VaultError):
    """An operation was attempted in a session state that does not allow it."""


class MalformedRequestPayload(VaultError):
    """A signing request carried a payload that could not be decoded."""


class UnsupportedMethod(VaultError):
    """A signing request named a method this wallet does not implement."""


class InsufficientFundsForGas(VaultError):
    """The sender cannot pay for gas. Top up the native coin and retry."""


class BroadcastFailed(VaultError):
    """The transaction could not be submitted for another reason."""


class UnlockFailedAfterRestore(UserWarning):
    """The record was restored on disk but could not be unlocked this session."""

    def __init__(self, name: str, reason: Optional[str] = None):
        message = f"Restored '{name}', but failed to unlock it in the current session."
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)
        self.name = name
