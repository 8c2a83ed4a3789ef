"""
The Action Gate: confirm immediately before anything irreversible.

Disclosing a secret, moving funds, signing for a peer and granting a peer a
session all pass through ActionGate.require(). A "yes" is consumed by the one
call that asked for it; nothing is remembered between calls.
"""

import datetime
import logging
import os
import threading
from abc import ABC, abstractmethod
from enum import Enum
from typing import List, Optional

from . import config
from .errors import ConfirmationIncomplete, UserRejectedAction

logger = logging.getLogger(__name__)


class Prompter(ABC):
    """Interactive surface used to ask the device owner."""

    @abstractmethod
    def confirm(self, message: str, details: Optional[str] = None) -> bool:
        """Ask a yes/no question. Returns True only on an explicit yes."""

    @abstractmethod
    def ask_password(self, message: str) -> Optional[str]:
        """Ask for a password. Returns None if the user cancelled."""

    def notify(self, message: str) -> None:
        """Show an informational message."""
        logger.info(message)


class ActionKind(str, Enum):
    DISCLOSE_SECRET = "disclose_secret"
    MOVE_FUNDS = "move_funds"
    SIGN_MESSAGE = "sign_message"
    GRANT_CAPABILITY = "grant_capability"


class AuditLog:
    """Appends security-relevant actions to <vault dir>/logs/audit.log."""

    def __init__(self, directory: str):
        self.filepath = os.path.join(directory, config.AUDIT_LOG_DIR, config.AUDIT_LOG_FILE)
        self._lock = threading.Lock()

    def record(self, action: str, details: str) -> None:
        timestamp = datetime.datetime.now().isoformat()
        with self._lock:
            os.makedirs(os.path.dirname(self.filepath), exist_ok=True)
            with open(self.filepath, 'a', encoding='utf-8') as f:
                f.write(f"{timestamp} | {action} | {details}\n")


class ActionGate:
    """Mandatory confirm-before-execute checkpoint."""

    def __init__(self, prompter: Prompter, audit: Optional[AuditLog] = None):
        self.prompter = prompter
        self.audit = audit

    def require(self, kind: ActionKind, summary: str, details: Optional[str] = None) -> None:
        """
        Ask for a fresh confirmation.

        Raises:
            UserRejectedAction: If the user does not explicitly approve
        """
        approved = bool(self.prompter.confirm(summary, details))
        outcome = "approved" if approved else "rejected"
        logger.info(f"Action gate {kind.value}: {outcome}")
        if self.audit is not None:
            self.audit.record(f"{kind.value}:{outcome}", summary)
        if not approved:
            raise UserRejectedAction(f"Rejected: {summary}")


class ConfirmationToken:
    """
    Proof of N sequential affirmative answers, captured before a risky call.

    Any negative answer voids the token for good.
    """

    def __init__(self, steps: int = config.PLAINTEXT_CONFIRMATION_STEPS):
        self.steps = steps
        self._affirmed = 0
        self._voided = False

    @property
    def complete(self) -> bool:
        return not self._voided and self._affirmed >= self.steps

    def answer(self, yes: bool) -> None:
        if self._voided or self._affirmed >= self.steps:
            return
        if yes:
            self._affirmed += 1
        else:
            self._voided = True

    def ensure_complete(self) -> None:
        if not self.complete:
            raise ConfirmationIncomplete(
                f"{self._affirmed} of {self.steps} confirmations given"
            )

    @classmethod
    def collect(cls, prompter: Prompter,
                messages: List[str] = config.PLAINTEXT_RISK_PROMPTS) -> 'ConfirmationToken':
        """Ask each message in turn, stopping at the first refusal."""
        token = cls(steps=len(messages))
        for message in messages:
            token.answer(bool(prompter.confirm(message)))
            if token._voided:
                break
        return token
