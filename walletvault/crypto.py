"""
Cryptographic operations for the wallet vault.

Every record is sealed on its own: a fresh salt and nonce per record, the key
derived from the vault password with Argon2id (PBKDF2-HMAC-SHA256 when
argon2-cffi is unavailable), the secret encrypted with AES-256-GCM. The KDF
name and parameters travel inside the blob so a record can always be opened
with the settings it was written with.

LEGAL NOTICE:
This module handles encryption/decryption of private keys. It must only be used
for legitimate personal key management on devices you own or administer.
"""

import os
import base64
from typing import Any, Dict, Optional, Tuple
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives import constant_time, hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from cryptography.hazmat.backends import default_backend
from cryptography.exceptions import InvalidTag

from . import config
from .errors import DecryptionError, RecordCorrupt

try:
    from argon2 import Type
    from argon2.low_level import hash_secret_raw
    ARGON2_AVAILABLE = True
except ImportError:
    ARGON2_AVAILABLE = False

KDF_ARGON2ID = "argon2id"
KDF_PBKDF2 = "pbkdf2-sha256"
_KDF_PARAMS = {
    KDF_ARGON2ID: ("time_cost", "memory_cost", "parallelism"),
    KDF_PBKDF2: ("iterations",),
}
CIPHER_NAME = "aes-256-gcm"


class CryptoManager:
    """Handles all cryptographic operations for the vault."""

    def __init__(self, time_cost: int = config.ARGON2_TIME_COST,
                 memory_cost: int = config.ARGON2_MEMORY_COST,
                 parallelism: int = config.ARGON2_PARALLELISM,
                 pbkdf2_iterations: int = config.PBKDF2_ITERATIONS):
        """
        Initialize the crypto manager.

        Args:
            time_cost: Argon2id iterations used for new blobs
            memory_cost: Argon2id memory in KiB used for new blobs
            parallelism: Argon2id lanes used for new blobs
            pbkdf2_iterations: PBKDF2 iterations used for new blobs without argon2
        """
        self.backend = default_backend()
        self.time_cost = time_cost
        self.memory_cost = memory_cost
        self.parallelism = parallelism
        self.pbkdf2_iterations = pbkdf2_iterations

    def generate_salt(self) -> bytes:
        """Generate a cryptographically secure random salt."""
        return os.urandom(config.SALT_SIZE)

    def _kdf_params(self) -> Tuple[str, Dict[str, int]]:
        if ARGON2_AVAILABLE:
            return KDF_ARGON2ID, {
                "time_cost": self.time_cost,
                "memory_cost": self.memory_cost,
                "parallelism": self.parallelism,
            }
        return KDF_PBKDF2, {"iterations": self.pbkdf2_iterations}

    def derive_key(self, password: str, salt: bytes, kdf: str, params: Dict[str, int]) -> bytes:
        """
        Derive an encryption key from a password.

        Args:
            password: The vault password
            salt: Random salt for key derivation
            kdf: KDF name recorded in the blob
            params: KDF parameters recorded in the blob

        Returns:
            32-byte encryption key
        """
        if kdf == KDF_ARGON2ID:
            if not ARGON2_AVAILABLE:
                raise RecordCorrupt("Record was sealed with Argon2id but argon2-cffi is not installed")
            return hash_secret_raw(
                secret=password.encode('utf-8'),
                salt=salt,
                time_cost=params["time_cost"],
                memory_cost=params["memory_cost"],
                parallelism=params["parallelism"],
                hash_len=config.KEY_SIZE,
                type=Type.ID
            )
        if kdf == KDF_PBKDF2:
            kdf_impl = PBKDF2HMAC(
                algorithm=hashes.SHA256(),
                length=config.KEY_SIZE,
                salt=salt,
                iterations=params["iterations"],
                backend=self.backend
            )
            return kdf_impl.derive(password.encode('utf-8'))
        raise RecordCorrupt(f"Unknown key derivation function: {kdf}")

    def encrypt(self, plaintext: bytes, key: bytes) -> Tuple[bytes, bytes, bytes]:
        """
        Encrypt data using AES-256-GCM.

        Returns:
            Tuple of (ciphertext, nonce, tag)
        """
        nonce = os.urandom(config.NONCE_SIZE)
        cipher = Cipher(
            algorithms.AES(key),
            modes.GCM(nonce),
            backend=self.backend
        )
        encryptor = cipher.encryptor()
        ciphertext = encryptor.update(plaintext) + encryptor.finalize()
        return ciphertext, nonce, encryptor.tag

    def decrypt(self, ciphertext: bytes, key: bytes, nonce: bytes, tag: bytes) -> bytes:
        """
        Decrypt data using AES-256-GCM.

        Raises:
            InvalidTag: If authentication fails
        """
        cipher = Cipher(
            algorithms.AES(key),
            modes.GCM(nonce, tag),
            backend=self.backend
        )
        decryptor = cipher.decryptor()
        return decryptor.update(ciphertext) + decryptor.finalize()

    def encrypt_secret(self, secret: str, password: str) -> Dict[str, Any]:
        """
        Seal a secret under a password.

        Returns:
            A JSON-serialisable blob carrying KDF parameters, salt, nonce,
            tag and ciphertext.
        """
        kdf, params = self._kdf_params()
        salt = self.generate_salt()
        key = bytearray(self.derive_key(password, salt, kdf, params))
        try:
            ciphertext, nonce, tag = self.encrypt(secret.encode('utf-8'), bytes(key))
        finally:
            self.clear_bytes(key)
        return {
            "version": config.RECORD_BLOB_VERSION,
            "cipher": CIPHER_NAME,
            "kdf": kdf,
            "kdf_params": params,
            "salt": _b64(salt),
            "nonce": _b64(nonce),
            "tag": _b64(tag),
            "ciphertext": _b64(ciphertext),
        }

    def decrypt_secret(self, blob: Dict[str, Any], password: str) -> str:
        """
        Open a blob produced by encrypt_secret.

        Raises:
            DecryptionError: If the password is wrong or the blob was altered
            RecordCorrupt: If the blob is structurally invalid
        """
        try:
            if blob.get("version") != config.RECORD_BLOB_VERSION or blob.get("cipher") != CIPHER_NAME:
                raise RecordCorrupt(f"Unsupported blob format: {blob.get('version')}/{blob.get('cipher')}")
            kdf = blob["kdf"]
            params = blob["kdf_params"]
            for name in _KDF_PARAMS.get(kdf, ()):
                value = params[name]
                if not isinstance(value, int) or isinstance(value, bool) or value < 1:
                    raise RecordCorrupt(f"Invalid KDF parameter {name}: {value!r}")
            salt = base64.b64decode(blob["salt"])
            nonce = base64.b64decode(blob["nonce"])
            tag = base64.b64decode(blob["tag"])
            ciphertext = base64.b64decode(blob["ciphertext"])
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise RecordCorrupt(f"Malformed cipher blob: {e}") from e

        key = bytearray(self.derive_key(password, salt, kdf, params))
        try:
            plaintext = self.decrypt(ciphertext, bytes(key), nonce, tag)
        except InvalidTag as e:
            raise DecryptionError("Authentication failed") from e
        finally:
            self.clear_bytes(key)
        return plaintext.decode('utf-8')

    def secure_compare(self, a: bytes, b: bytes) -> bool:
        """Constant-time comparison to prevent timing attacks."""
        return constant_time.bytes_eq(a, b)

    def clear_bytes(self, data: Optional[bytearray]) -> None:
        """Attempt to clear sensitive bytes from memory."""
        if isinstance(data, bytearray):
            for i in range(len(data)):
                data[i] = 0


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode('ascii')
