"""Tests for the record files and atomic writes."""

import json
import os
import platform
import stat

import pytest

from walletvault.errors import RecordCorrupt
from walletvault.storage import (
    MODE_EMPTY, MODE_ENCRYPTED, MODE_PLAINTEXT, VaultStore, WalletRecord, records_mode,
)
from walletvault.utils import write_json_atomic

BLOB = {"version": 1, "cipher": "aes-256-gcm", "kdf": "argon2id", "kdf_params": {},
        "salt": "", "nonce": "", "tag": "", "ciphertext": ""}


def _write(path: str, data) -> None:
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f)


class TestWalletRecord:
    """Tests for record parsing."""

    def test_encrypted_shape(self) -> None:
        """A record with data is encrypted and keeps its fields."""
        record = WalletRecord.from_dict({"id": "a1", "name": "Main", "data": BLOB})
        assert record.is_encrypted
        assert record.to_dict() == {"id": "a1", "name": "Main", "data": BLOB}

    def test_plaintext_shape(self) -> None:
        """A record with private_key is plaintext."""
        record = WalletRecord.from_dict({"id": "a1", "name": "Main", "private_key": "0x01"})
        assert not record.is_encrypted
        assert record.to_dict() == {"id": "a1", "name": "Main", "private_key": "0x01"}

    def test_legacy_camel_case_key(self) -> None:
        """Older plaintext files used privateKey."""
        record = WalletRecord.from_dict({"name": "Old", "privateKey": "0x01"})
        assert record.private_key == "0x01"
        assert record.id

    def test_both_shapes_rejected(self) -> None:
        """A record cannot be encrypted and plaintext at once."""
        with pytest.raises(RecordCorrupt):
            WalletRecord.from_dict({"name": "Main", "data": BLOB, "private_key": "0x01"})

    def test_neither_shape_rejected(self) -> None:
        """A record must carry a secret in some form."""
        with pytest.raises(RecordCorrupt):
            WalletRecord.from_dict({"name": "Main"})

    def test_missing_name_rejected(self) -> None:
        with pytest.raises(RecordCorrupt):
            WalletRecord.from_dict({"data": BLOB})


class TestRecordsMode:

    def test_modes(self) -> None:
        """Empty, all-encrypted and all-plaintext lists are recognised."""
        enc = WalletRecord(id="1", name="a", data=BLOB)
        plain = WalletRecord(id="2", name="b", private_key="0x01")
        assert records_mode([]) == MODE_EMPTY
        assert records_mode([enc]) == MODE_ENCRYPTED
        assert records_mode([plain]) == MODE_PLAINTEXT

    def test_mixed_rejected(self) -> None:
        """The active list never mixes shapes."""
        enc = WalletRecord(id="1", name="a", data=BLOB)
        plain = WalletRecord(id="2", name="b", private_key="0x01")
        with pytest.raises(RecordCorrupt):
            records_mode([enc, plain])


class TestVaultStore:
    """Tests for reading and writing the two record lists."""

    def test_missing_files_are_empty(self, vault_dir: str) -> None:
        """A fresh directory has no records and no trash."""
        store = VaultStore(vault_dir)
        assert store.read_records() == []
        assert store.read_trash() == []
        assert store.mode() == MODE_EMPTY

    def test_corrupt_file(self, vault_dir: str) -> None:
        """Unparseable JSON is never treated as empty."""
        store = VaultStore(vault_dir)
        with open(store.wallets_path, "w", encoding="utf-8") as f:
            f.write("{not json")
        with pytest.raises(RecordCorrupt):
            store.read_records()

    def test_not_a_list(self, vault_dir: str) -> None:
        store = VaultStore(vault_dir)
        _write(store.wallets_path, {"name": "Main"})
        with pytest.raises(RecordCorrupt):
            store.read_records()

    def test_legacy_ids_assigned_and_persisted(self, vault_dir: str) -> None:
        """Id-less records get an id that survives the next read."""
        store = VaultStore(vault_dir)
        _write(store.wallets_path, [{"name": "Old", "private_key": "0x01"}])
        first = store.read_records()
        second = store.read_records()
        assert first[0].id == second[0].id

    def test_transaction_moves_record(self, vault_dir: str) -> None:
        """Edits inside a transaction land in both files."""
        store = VaultStore(vault_dir)
        with store.transaction() as txn:
            txn.records.append(WalletRecord(id="1", name="Main", data=BLOB))
        with store.transaction() as txn:
            txn.trash.append(txn.records.pop(0))
        assert store.read_records() == []
        assert [r.name for r in store.read_trash()] == ["Main"]

    def test_transaction_rejects_mixed_result(self, vault_dir: str) -> None:
        """A transaction that would mix shapes writes nothing."""
        store = VaultStore(vault_dir)
        with store.transaction() as txn:
            txn.records.append(WalletRecord(id="1", name="a", data=BLOB))
        with pytest.raises(RecordCorrupt):
            with store.transaction() as txn:
                txn.records.append(WalletRecord(id="2", name="b", private_key="0x01"))
        assert len(store.read_records()) == 1

    def test_transaction_error_writes_nothing(self, vault_dir: str) -> None:
        store = VaultStore(vault_dir)
        with pytest.raises(RuntimeError):
            with store.transaction() as txn:
                txn.records.append(WalletRecord(id="1", name="a", data=BLOB))
                raise RuntimeError("boom")
        assert not os.path.exists(store.wallets_path)

    def test_clear_trash(self, vault_dir: str) -> None:
        """Clearing the trash reports how many records went."""
        store = VaultStore(vault_dir)
        with store.transaction() as txn:
            txn.trash.extend([WalletRecord(id="1", name="a", data=BLOB),
                              WalletRecord(id="2", name="b", data=BLOB)])
        assert store.clear_trash() == 2
        assert store.read_trash() == []
        assert store.clear_trash() == 0


class TestAtomicWrite:

    def test_no_temp_file_left(self, tmp_path) -> None:
        """The temp file is moved into place."""
        target = tmp_path / "out.json"
        write_json_atomic(str(target), [1, 2])
        assert json.loads(target.read_text()) == [1, 2]
        assert not (tmp_path / "out.json.tmp").exists()

    @pytest.mark.skipif(platform.system() == "Windows", reason="POSIX permissions")
    def test_owner_only_permissions(self, tmp_path) -> None:
        """Written files are readable by the owner only."""
        target = tmp_path / "out.json"
        write_json_atomic(str(target), {})
        assert stat.S_IMODE(os.stat(target).st_mode) == 0o600

    def test_failed_write_cleans_up(self, tmp_path) -> None:
        """An unserialisable value leaves neither target nor temp file."""
        target = tmp_path / "out.json"
        with pytest.raises(TypeError):
            write_json_atomic(str(target), {"bad": object()})
        assert not target.exists()
        assert not (tmp_path / "out.json.tmp").exists()
