"""Tests for the vault session: unlock, lifecycle, trash and vault mode."""

import json
import os
import threading

import pytest

from conftest import KEY_A, KEY_B, ScriptedPrompter
from walletvault import signer
from walletvault.errors import (
    AttemptsExhausted, ConfirmationIncomplete, DuplicateIdentity, IdentityNotFound,
    PasswordMismatch, PasswordNotSet, PlaintextVaultDetected, UserRejectedAction,
    VaultLocked, WrongPassword,
)
from walletvault.gate import ActionGate, ConfirmationToken
from walletvault.session import VaultSession
from walletvault.storage import MODE_ENCRYPTED, MODE_PLAINTEXT, WalletRecord

HARDHAT_MNEMONIC = "test test test test test test test test test test test junk"
HARDHAT_ADDRESS = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"


def _fresh(session: VaultSession) -> VaultSession:
    """A new process over the same directory."""
    return VaultSession(session.directory, crypto=session.crypto)


def _token(steps: int = 2) -> ConfirmationToken:
    token = ConfirmationToken(steps)
    for _ in range(steps):
        token.answer(True)
    return token


def _stored(session: VaultSession) -> list:
    with open(session.store.wallets_path, encoding="utf-8") as f:
        return json.load(f)


class TestPassword:

    def test_mismatch(self, session: VaultSession) -> None:
        """Password and confirmation must agree."""
        with pytest.raises(PasswordMismatch):
            session.set_password("p1", "p2")
        assert not session.password_set

    def test_empty(self, session: VaultSession) -> None:
        with pytest.raises(PasswordMismatch):
            session.set_password("", "")

    def test_create_requires_password(self, session: VaultSession) -> None:
        """An encrypted vault refuses to store a key before a password exists."""
        with pytest.raises(PasswordNotSet):
            session.create(KEY_A)

    def test_change_password(self, unlocked_session: VaultSession) -> None:
        """Records re-encrypted under a new password open only with it."""
        unlocked_session.create(KEY_A, "Main")
        unlocked_session.change_password("p1", "p3", "p3")
        other = _fresh(unlocked_session)
        with pytest.raises(WrongPassword):
            other.unlock("p1")
        assert [i.name for i in other.unlock("p3")] == ["Main"]


class TestUnlock:
    """Tests for all-or-nothing unlock and the attempt budget."""

    def test_empty_vault(self, session: VaultSession) -> None:
        """An empty vault unlocks to an empty key ring."""
        assert session.unlock() == []
        assert session.is_unlocked

    def test_wrong_then_right_password(self, unlocked_session: VaultSession) -> None:
        """p2 fails with two attempts left, then p1 opens both wallets."""
        unlocked_session.create(KEY_A, "A")
        unlocked_session.create(KEY_B, "B")
        other = _fresh(unlocked_session)
        with pytest.raises(WrongPassword) as excinfo:
            other.unlock("p2")
        assert excinfo.value.attempts_left == 2
        assert other.list_identities() == []
        identities = other.unlock("p1")
        assert [i.name for i in identities] == ["A", "B"]
        assert identities[0].address == signer.derive_address(KEY_A)
        assert other.failed_attempts == 0

    def test_all_or_nothing(self, unlocked_session: VaultSession) -> None:
        """One record under another password leaves the key ring empty."""
        unlocked_session.create(KEY_A, "A")
        with unlocked_session.store.transaction() as txn:
            txn.records.append(WalletRecord(id="foreign", name="B",
                                            data=unlocked_session.crypto.encrypt_secret(KEY_B, "other")))
        other = _fresh(unlocked_session)
        with pytest.raises(WrongPassword):
            other.unlock("p1")
        assert len(other.keyring) == 0
        assert not other.is_unlocked

    def test_attempts_exhausted(self, unlocked_session: VaultSession) -> None:
        """The third failure is fatal and stays fatal."""
        unlocked_session.create(KEY_A, "A")
        other = _fresh(unlocked_session)
        for _ in range(2):
            with pytest.raises(WrongPassword):
                other.unlock("bad")
        with pytest.raises(AttemptsExhausted):
            other.unlock("bad")
        with pytest.raises(AttemptsExhausted):
            other.unlock("p1")

    def test_interactive(self, unlocked_session: VaultSession) -> None:
        """The prompter is asked until the right password arrives."""
        unlocked_session.create(KEY_A, "A")
        other = _fresh(unlocked_session)
        prompter = ScriptedPrompter(passwords=["nope", "p1"])
        assert [i.name for i in other.unlock_interactive(prompter)] == ["A"]
        assert len(prompter.notices) == 1

    def test_interactive_cancel(self, unlocked_session: VaultSession) -> None:
        unlocked_session.create(KEY_A, "A")
        other = _fresh(unlocked_session)
        with pytest.raises(UserRejectedAction):
            other.unlock_interactive(ScriptedPrompter())


class TestCreateAndImport:

    def test_create_generates_key(self, unlocked_session: VaultSession) -> None:
        """A generated wallet gets a numbered default name."""
        identity = unlocked_session.create()
        assert identity.name == "Wallet 1"
        assert identity.address.startswith("0x")
        assert "private_key" not in _stored(unlocked_session)[0]

    def test_duplicate_address(self, unlocked_session: VaultSession) -> None:
        """The same key cannot be stored twice."""
        unlocked_session.create(KEY_A)
        with pytest.raises(DuplicateIdentity):
            unlocked_session.import_private_key(KEY_A)

    def test_import_private_key(self, unlocked_session: VaultSession) -> None:
        identity = unlocked_session.import_private_key("11" * 32)
        assert identity.name == "Imported 1"
        assert identity.address == signer.derive_address(KEY_A)

    def test_import_mnemonic(self, unlocked_session: VaultSession) -> None:
        """The first account of a phrase is imported."""
        identity = unlocked_session.import_mnemonic(HARDHAT_MNEMONIC, "Dev")
        assert identity.address == HARDHAT_ADDRESS


class TestRenameAndDelete:
    """Tests for identity-stable edits."""

    def test_rename_matches_by_id(self, unlocked_session: VaultSession) -> None:
        """Two wallets named Main: only the chosen one changes."""
        first = unlocked_session.create(KEY_A, "Main")
        second = unlocked_session.create(KEY_B, "Main")
        unlocked_session.rename(second.address, "Savings")
        names = [r["name"] for r in _stored(unlocked_session)]
        assert names == ["Main", "Savings"]
        assert unlocked_session.keyring.get(first.address).name == "Main"

    def test_delete_matches_by_id(self, unlocked_session: VaultSession) -> None:
        first = unlocked_session.create(KEY_A, "Main")
        second = unlocked_session.create(KEY_B, "Main")
        unlocked_session.delete(second.address)
        assert [r["id"] for r in _stored(unlocked_session)] == [first.id]
        assert [t["id"] for t in unlocked_session.list_trash()] == [second.id]

    def test_rename_empty(self, unlocked_session: VaultSession) -> None:
        identity = unlocked_session.create(KEY_A, "Main")
        with pytest.raises(ValueError):
            unlocked_session.rename(identity.address, "  ")

    def test_unknown_address(self, unlocked_session: VaultSession) -> None:
        with pytest.raises(IdentityNotFound):
            unlocked_session.delete("0x" + "00" * 20)

    def test_concurrent_create_and_delete(self, unlocked_session: VaultSession) -> None:
        """Interleaved writers leave every record in exactly one file."""
        doomed = [unlocked_session.create(display_name=f"Old {i}") for i in range(4)]
        created, errors = [], []

        def add(n):
            try:
                created.append(unlocked_session.create(display_name=f"New {n}"))
            except Exception as e:
                errors.append(e)

        def remove(identity):
            try:
                unlocked_session.delete(identity.address)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=add, args=(i,)) for i in range(4)]
        threads += [threading.Thread(target=remove, args=(d,)) for d in doomed]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=60)

        assert errors == []
        active = [r["id"] for r in _stored(unlocked_session)]
        with open(unlocked_session.store.trash_path, encoding="utf-8") as f:
            trashed = [r["id"] for r in json.load(f)]
        assert sorted(active) == sorted(i.id for i in created)
        assert sorted(trashed) == sorted(d.id for d in doomed)
        assert len(set(active + trashed)) == len(active) + len(trashed) == 8


class TestTrash:
    """Tests for delete and restore."""

    def test_delete_then_restore_main(self, unlocked_session: VaultSession) -> None:
        """Main goes to the trash and comes back unlocked."""
        identity = unlocked_session.create(KEY_A, "Main")
        unlocked_session.delete(identity.address)
        assert identity.address not in unlocked_session.keyring
        assert [t["name"] for t in unlocked_session.list_trash()] == ["Main"]

        result = unlocked_session.restore(0)
        assert result.warning is None
        assert result.identity.address == identity.address
        assert identity.address in unlocked_session.keyring
        assert unlocked_session.list_trash() == []
        assert [r["name"] for r in _stored(unlocked_session)] == ["Main"]

    def test_restore_is_idempotent(self, unlocked_session: VaultSession) -> None:
        """A trash copy of an active record does not duplicate it."""
        identity = unlocked_session.create(KEY_A, "Main")
        with unlocked_session.store.transaction() as txn:
            txn.trash.append(WalletRecord(id=identity.id, name="Main", data=txn.records[0].data))
        unlocked_session.restore(0)
        assert len(_stored(unlocked_session)) == 1
        assert unlocked_session.list_trash() == []
        assert len(unlocked_session.keyring) == 1

    def test_restore_unlock_failure_warns(self, unlocked_session: VaultSession) -> None:
        """A record sealed with another password is restored with a warning."""
        with unlocked_session.store.transaction() as txn:
            txn.trash.append(WalletRecord(id="old", name="Old",
                                          data=unlocked_session.crypto.encrypt_secret(KEY_B, "other")))
        result = unlocked_session.restore(0)
        assert result.identity is None
        assert result.warning is not None
        assert result.warning.name == "Old"
        assert [r["name"] for r in _stored(unlocked_session)] == ["Old"]

    def test_restore_bad_index(self, unlocked_session: VaultSession) -> None:
        with pytest.raises(IdentityNotFound):
            unlocked_session.restore(3)

    def test_restore_plaintext_into_encrypted(self, unlocked_session: VaultSession) -> None:
        """A plaintext trash record is encrypted on the way back."""
        with unlocked_session.store.transaction() as txn:
            txn.trash.append(WalletRecord(id="plain", name="Plain", private_key=KEY_B))
        result = unlocked_session.restore(0)
        assert result.identity is not None
        assert "data" in _stored(unlocked_session)[0]

    def test_clear_trash(self, unlocked_session: VaultSession) -> None:
        identity = unlocked_session.create(KEY_A, "Main")
        unlocked_session.delete(identity.address)
        assert unlocked_session.clear_trash() == 1
        assert unlocked_session.list_trash() == []


class TestPlaintextVaults:
    """Tests for unencrypted stores."""

    def _write_plaintext(self, session: VaultSession) -> None:
        with session.store.transaction() as txn:
            txn.records.append(WalletRecord(id="p", name="Plain", private_key=KEY_A))

    def test_detected(self, session: VaultSession) -> None:
        """Plaintext records are never used silently."""
        self._write_plaintext(session)
        with pytest.raises(PlaintextVaultDetected):
            session.unlock()
        assert len(session.keyring) == 0

    def test_keep_needs_two_confirmations(self, session: VaultSession) -> None:
        """One yes out of two is not enough."""
        self._write_plaintext(session)
        token = ConfirmationToken(2)
        token.answer(True)
        with pytest.raises(ConfirmationIncomplete):
            session.keep_plaintext(token)
        assert session.encryption_enabled

    def test_keep_plaintext(self, session: VaultSession) -> None:
        self._write_plaintext(session)
        identities = session.keep_plaintext(_token())
        assert [i.name for i in identities] == ["Plain"]
        assert _fresh(session).settings.encryption_disabled is True

    def test_encrypt_plaintext_vault(self, session: VaultSession) -> None:
        """Encrypting replaces every private_key with a blob."""
        self._write_plaintext(session)
        session.encrypt_plaintext_vault("p1", "p1")
        stored = _stored(session)
        assert "private_key" not in stored[0]
        other = _fresh(session)
        assert [i.name for i in other.unlock("p1")] == ["Plain"]


class TestVaultMode:
    """Tests for toggling between encrypted and plaintext storage."""

    def test_to_plaintext_and_back(self, unlocked_session: VaultSession) -> None:
        identity = unlocked_session.create(KEY_A, "Main")
        assert unlocked_session.toggle_vault_mode(token=_token()) == MODE_PLAINTEXT
        assert _stored(unlocked_session)[0]["private_key"] == KEY_A
        assert unlocked_session.settings.encryption_disabled is True

        assert unlocked_session.toggle_vault_mode(new_password="p9", confirm="p9") == MODE_ENCRYPTED
        assert "data" in _stored(unlocked_session)[0]
        other = _fresh(unlocked_session)
        assert other.unlock("p9")[0].address == identity.address

    def test_to_plaintext_needs_token(self, unlocked_session: VaultSession) -> None:
        unlocked_session.create(KEY_A, "Main")
        token = ConfirmationToken(2)
        token.answer(True)
        token.answer(False)
        with pytest.raises(ConfirmationIncomplete):
            unlocked_session.toggle_vault_mode(token=token)
        assert "data" in _stored(unlocked_session)[0]

    def test_locked_vault_cannot_toggle(self, unlocked_session: VaultSession) -> None:
        """Rewriting every record needs every record unlocked."""
        unlocked_session.create(KEY_A, "Main")
        other = _fresh(unlocked_session)
        with pytest.raises(VaultLocked):
            other.toggle_vault_mode(token=_token())


class TestRevealAndHooks:

    def test_reveal_requires_confirmation(self, unlocked_session: VaultSession) -> None:
        """Each reveal asks again."""
        identity = unlocked_session.create(KEY_A, "Main")
        prompter = ScriptedPrompter(answers=[True, False])
        gate = ActionGate(prompter)
        assert unlocked_session.reveal_secret(identity.address, gate) == KEY_A
        with pytest.raises(UserRejectedAction):
            unlocked_session.reveal_secret(identity.address, gate)
        assert len(prompter.prompts) == 2

    def test_backup_hook(self, vault_dir: str, crypto) -> None:
        """The hook runs after changes and its failures are contained."""
        calls = []

        def hook(settings):
            calls.append(settings.backup_method)
            raise RuntimeError("remote down")

        session = VaultSession(vault_dir, crypto=crypto, backup_hook=hook)
        session.set_password("p1", "p1")
        session.create(KEY_A, "Main")
        assert calls == [None]

    def test_audit_log(self, unlocked_session: VaultSession) -> None:
        unlocked_session.create(KEY_A, "Main")
        with open(unlocked_session.audit.filepath, encoding="utf-8") as f:
            lines = f.read().splitlines()
        assert any("| create |" in line for line in lines)
        assert all(KEY_A not in line for line in lines)
