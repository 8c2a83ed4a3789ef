"""
Storage management for the wallet vault.

Two JSON files hold the records: the active list and the trash list. A record
is either encrypted ({id, name, data}) or plaintext ({id, name, private_key});
the active list never mixes the two shapes.

LEGAL NOTICE:
This module handles storage of private keys. Keys are encrypted locally unless
the owner explicitly opts out, and are never transmitted.
"""

import json
import logging
import os
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional

from . import config
from .errors import RecordCorrupt
from .utils import write_json_atomic

logger = logging.getLogger(__name__)

MODE_EMPTY = "empty"
MODE_ENCRYPTED = "encrypted"
MODE_PLAINTEXT = "plaintext"


def new_record_id() -> str:
    """Return a fresh opaque record identifier."""
    return uuid.uuid4().hex


@dataclass
class WalletRecord:
    """Represents one persisted identity, encrypted or plaintext."""
    id: str
    name: str
    data: Optional[Dict[str, Any]] = None
    private_key: Optional[str] = field(default=None, repr=False)

    @property
    def is_encrypted(self) -> bool:
        return self.data is not None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        out: Dict[str, Any] = {"id": self.id, "name": self.name}
        if self.data is not None:
            out["data"] = self.data
        else:
            out["private_key"] = self.private_key
        return out

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'WalletRecord':
        """
        Create from dictionary.

        Records written before identifiers existed get a new id here. The
        camelCase "privateKey" key of older plaintext files is accepted.
        """
        if not isinstance(data, dict):
            raise RecordCorrupt(f"Record is not an object: {type(data).__name__}")
        name = data.get("name")
        if not isinstance(name, str):
            raise RecordCorrupt("Record has no display name")
        blob = data.get("data")
        private_key = data.get("private_key", data.get("privateKey"))
        if (blob is None) == (private_key is None):
            raise RecordCorrupt(f"Record '{name}' must hold exactly one of data or private_key")
        if blob is not None and not isinstance(blob, dict):
            raise RecordCorrupt(f"Record '{name}' has an unreadable cipher blob")
        record_id = data.get("id") or new_record_id()
        return cls(id=str(record_id), name=name, data=blob, private_key=private_key)


def records_mode(records: List[WalletRecord]) -> str:
    """
    Return the storage mode shared by a record list.

    Raises:
        RecordCorrupt: If encrypted and plaintext records are mixed
    """
    if not records:
        return MODE_EMPTY
    encrypted = sum(1 for r in records if r.is_encrypted)
    if encrypted == len(records):
        return MODE_ENCRYPTED
    if encrypted == 0:
        return MODE_PLAINTEXT
    raise RecordCorrupt("Active records mix encrypted and plaintext entries")


@dataclass
class VaultTransaction:
    """Mutable view of both record lists inside VaultStore.transaction()."""
    records: List[WalletRecord]
    trash: List[WalletRecord]


class VaultStore:
    """Manages the active and trash record files."""

    def __init__(self, directory: str):
        """
        Initialize the store.

        Args:
            directory: Directory holding the record files
        """
        self.directory = directory
        self.wallets_path = os.path.join(directory, config.WALLETS_FILE)
        self.trash_path = os.path.join(directory, config.TRASH_FILE)
        self._lock = threading.RLock()

    def _read_list(self, filepath: str) -> List[WalletRecord]:
        if not os.path.exists(filepath):
            return []
        try:
            with open(filepath, 'r', encoding='utf-8') as f:
                raw = json.load(f)
        except (OSError, ValueError) as e:
            raise RecordCorrupt(f"Cannot parse {filepath}: {e}") from e
        if not isinstance(raw, list):
            raise RecordCorrupt(f"{filepath} does not hold a list of records")
        records = [WalletRecord.from_dict(item) for item in raw]
        if any(not isinstance(item.get("id"), str) or not item.get("id") for item in raw):
            logger.info(f"Assigning identifiers to legacy records in {filepath}")
            self._write_list(filepath, records)
        return records

    def _write_list(self, filepath: str, records: List[WalletRecord]) -> None:
        write_json_atomic(filepath, [r.to_dict() for r in records])

    def read_records(self) -> List[WalletRecord]:
        """Return the active records in file order."""
        with self._lock:
            return self._read_list(self.wallets_path)

    def read_trash(self) -> List[WalletRecord]:
        """Return the trashed records in file order."""
        with self._lock:
            return self._read_list(self.trash_path)

    def mode(self) -> str:
        """Return the storage mode of the active records."""
        return records_mode(self.read_records())

    def has_records(self) -> bool:
        return bool(self.read_records())

    @contextmanager
    def transaction(self) -> Iterator[VaultTransaction]:
        """
        Hold the mutation lock across read -> compute -> write.

        The caller edits txn.records and txn.trash in place; whichever list
        changed is written back when the block exits without an exception.
        """
        with self._lock:
            records = self._read_list(self.wallets_path)
            trash = self._read_list(self.trash_path)
            before_records = [r.to_dict() for r in records]
            before_trash = [r.to_dict() for r in trash]
            txn = VaultTransaction(records=records, trash=trash)
            yield txn
            records_mode(txn.records)
            if [r.to_dict() for r in txn.records] != before_records:
                self._write_list(self.wallets_path, txn.records)
            if [r.to_dict() for r in txn.trash] != before_trash:
                self._write_list(self.trash_path, txn.trash)

    def clear_trash(self) -> int:
        """Delete every trashed record. Returns how many were removed."""
        with self.transaction() as txn:
            count = len(txn.trash)
            txn.trash.clear()
        if count:
            logger.info(f"Cleared {count} record(s) from trash")
        return count
