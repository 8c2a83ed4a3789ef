"""Shared test fixtures for walletvault."""

from pathlib import Path
from typing import List, Optional, Tuple

import pytest

from walletvault.crypto import CryptoManager
from walletvault.gate import ActionGate, Prompter
from walletvault.session import VaultSession
from walletvault.transport import LoopbackTransport

KEY_A = "0x" + "11" * 32
KEY_B = "0x" + "22" * 32
PAIRING_URI = "wc:7f6e504bfad60b485450578e05678ed3@2?relay-protocol=irn&symKey=587d5484ce2a2a6ee3ba1962fdd7e8588e06200c46823bd18fbd67def96ad303"


class ScriptedPrompter(Prompter):
    """Answers confirmations from a script; refuses once the script runs out."""

    def __init__(self, answers: Optional[List[bool]] = None, passwords: Optional[List[Optional[str]]] = None):
        self.answers = list(answers or [])
        self.passwords = list(passwords or [])
        self.prompts: List[Tuple[str, Optional[str]]] = []
        self.notices: List[str] = []

    def confirm(self, message: str, details: Optional[str] = None) -> bool:
        self.prompts.append((message, details))
        return self.answers.pop(0) if self.answers else False

    def ask_password(self, message: str) -> Optional[str]:
        return self.passwords.pop(0) if self.passwords else None

    def notify(self, message: str) -> None:
        self.notices.append(message)


@pytest.fixture
def vault_dir(tmp_path: Path, monkeypatch) -> str:
    """Provide an empty vault directory and point WALLETVAULT_HOME at it."""
    home = tmp_path / ".walletvault"
    home.mkdir()
    monkeypatch.setenv("WALLETVAULT_HOME", str(home))
    return str(home)


@pytest.fixture
def crypto() -> CryptoManager:
    """Crypto manager with cheap KDF settings."""
    return CryptoManager(time_cost=1, memory_cost=1024, parallelism=1, pbkdf2_iterations=1000)


@pytest.fixture
def session(vault_dir: str, crypto: CryptoManager) -> VaultSession:
    return VaultSession(vault_dir, crypto=crypto)


@pytest.fixture
def unlocked_session(session: VaultSession) -> VaultSession:
    """A session with password p1 and no wallets yet."""
    session.set_password("p1", "p1")
    return session


@pytest.fixture
def prompter() -> ScriptedPrompter:
    return ScriptedPrompter()


@pytest.fixture
def gate(prompter: ScriptedPrompter, session: VaultSession) -> ActionGate:
    return ActionGate(prompter, session.audit)


@pytest.fixture
def transport() -> LoopbackTransport:
    return LoopbackTransport()
