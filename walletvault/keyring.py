"""
In-memory set of unlocked identities.

The Key Ring is the only holder of decrypted secrets. Everything above it asks
for signatures by address and never receives the secret itself, except the
explicit, gated reveal operation of the vault session.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from . import signer
from .errors import DuplicateIdentity, IdentityNotFound

logger = logging.getLogger(__name__)


@dataclass
class Identity:
    """One unlocked key pair plus its display metadata."""
    id: str
    name: str
    address: str
    secret: str = field(repr=False, compare=False)

    def public_view(self) -> Dict[str, str]:
        """Fields safe to show or serialise."""
        return {"id": self.id, "name": self.name, "address": self.address}


def _norm(address: str) -> str:
    return address.lower()


class KeyRing:
    """Holds unlocked identities keyed by address."""

    def __init__(self):
        self._identities: List[Identity] = []

    def __len__(self) -> int:
        return len(self._identities)

    def __contains__(self, address: str) -> bool:
        return self.find(address) is not None

    def identities(self) -> List[Identity]:
        """Return identities in unlock/creation order."""
        return list(self._identities)

    def find(self, address: str) -> Optional[Identity]:
        for identity in self._identities:
            if _norm(identity.address) == _norm(address):
                return identity
        return None

    def get(self, address: str) -> Identity:
        """
        Return the identity for an address.

        Raises:
            IdentityNotFound: If no unlocked identity has this address
        """
        identity = self.find(address)
        if identity is None:
            raise IdentityNotFound(f"No unlocked identity for {address}")
        return identity

    def by_id(self, record_id: str) -> Optional[Identity]:
        for identity in self._identities:
            if identity.id == record_id:
                return identity
        return None

    def add(self, identity: Identity) -> None:
        """
        Add an identity.

        Raises:
            DuplicateIdentity: If the address is already present
        """
        if self.find(identity.address) is not None:
            raise DuplicateIdentity(f"{identity.address} is already in the key ring")
        self._identities.append(identity)

    def replace_all(self, identities: List[Identity]) -> None:
        """Swap in a complete new set, enforcing one identity per address."""
        seen = set()
        for identity in identities:
            key = _norm(identity.address)
            if key in seen:
                raise DuplicateIdentity(f"{identity.address} appears twice in the vault")
            seen.add(key)
        self._identities = list(identities)

    def remove(self, address: str) -> Identity:
        identity = self.get(address)
        self._identities.remove(identity)
        return identity

    def clear(self) -> None:
        self._identities = []

    def sign_message(self, address: str, message: Union[bytes, str]) -> str:
        return signer.sign_message(self.get(address).secret, message)

    def sign_typed_data(self, address: str, domain: Dict[str, Any], types: Dict[str, Any],
                        message: Dict[str, Any]) -> str:
        return signer.sign_typed_data(self.get(address).secret, domain, types, message)

    def sign_transaction(self, address: str, transaction: Dict[str, Any]) -> bytes:
        return signer.sign_transaction(self.get(address).secret, transaction)
