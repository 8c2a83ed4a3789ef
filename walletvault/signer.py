"""
Signing primitives for EVM identities, backed by eth-account.

Secrets are 0x-prefixed hex private keys. Nothing here logs or stores them.
"""

import binascii
from typing import Any, Dict, Union

from eth_account import Account
from eth_account.messages import encode_defunct, encode_typed_data
from eth_utils import ValidationError

from . import config
from .errors import InvalidSecret, MalformedRequestPayload

# Required to import mnemonic phrases with eth-account
Account.enable_unaudited_hdwallet_features()


def _hex(data: bytes) -> str:
    return "0x" + bytes(data).hex()


def generate_private_key() -> str:
    """Create a new random private key."""
    return _hex(Account.create().key)


def normalize_private_key(key: str) -> str:
    """
    Validate a private key and return it in canonical 0x form.

    Raises:
        InvalidSecret: If the key is not 32 bytes of hex
    """
    try:
        return _hex(Account.from_key(key.strip()).key)
    except (ValueError, TypeError, binascii.Error) as e:
        raise InvalidSecret(f"Invalid private key: {e}") from e


def private_key_from_mnemonic(phrase: str, account_path: str = config.MNEMONIC_ACCOUNT_PATH) -> str:
    """
    Derive the private key of the first account of a BIP-39 phrase.

    Raises:
        InvalidSecret: If the phrase is not a valid mnemonic
    """
    try:
        account = Account.from_mnemonic(" ".join(phrase.split()), account_path=account_path)
    except (ValidationError, ValueError, TypeError) as e:
        raise InvalidSecret(f"Invalid mnemonic phrase: {e}") from e
    return _hex(account.key)


def derive_address(secret: str) -> str:
    """Return the checksum address of a private key."""
    return Account.from_key(secret).address


def sign_message(secret: str, message: Union[bytes, str]) -> str:
    """
    Produce an EIP-191 personal signature.

    Bytes are signed as-is; str is signed as its UTF-8 text.
    """
    if isinstance(message, bytes):
        signable = encode_defunct(primitive=message)
    else:
        signable = encode_defunct(text=message)
    return _hex(Account.sign_message(signable, private_key=secret).signature)


def sign_typed_data(secret: str, domain: Dict[str, Any], types: Dict[str, Any],
                    message: Dict[str, Any]) -> str:
    """
    Produce an EIP-712 signature over domain/types/message.

    Raises:
        MalformedRequestPayload: If the structure cannot be encoded
    """
    message_types = {k: v for k, v in types.items() if k != "EIP712Domain"}
    try:
        signable = encode_typed_data(domain_data=domain, message_types=message_types,
                                     message_data=message)
    except (ValidationError, ValueError, TypeError, KeyError) as e:
        raise MalformedRequestPayload(f"Typed data cannot be encoded: {e}") from e
    return _hex(Account.sign_message(signable, private_key=secret).signature)


def sign_transaction(secret: str, transaction: Dict[str, Any]) -> bytes:
    """Sign a fully specified transaction and return the raw bytes to broadcast."""
    return bytes(Account.sign_transaction(transaction, secret).raw_transaction)
