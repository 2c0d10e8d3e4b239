"""
Cryptographic operations for backup files and stored credentials.

Current format: ``salt:iv:ciphertext`` where salt is 16 random bytes in hex
(the hex text itself feeds PBKDF2), iv is Base64 and ciphertext is Base64
AES-256-CBC with PKCS#7 padding. The key is PBKDF2-HMAC-SHA256 with 100000
iterations.

Legacy format: OpenSSL ``Salted__`` blobs (EVP_BytesToKey with MD5) written by
older exports. They are decrypted for compatibility and never produced.
"""

import os
import base64
import binascii
import hmac
import logging
from typing import Optional, Tuple

from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from . import config

logger = logging.getLogger(__name__)


def _pbkdf2(password: str, salt_text: str, iterations: int, length: int) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=length,
        salt=salt_text.encode('utf-8'),
        iterations=iterations,
        backend=default_backend()
    )
    return kdf.derive(password.encode('utf-8'))


def _aes_cbc_encrypt(plaintext: bytes, key: bytes, iv: bytes) -> bytes:
    padder = padding.PKCS7(algorithms.AES.block_size).padder()
    padded = padder.update(plaintext) + padder.finalize()
    encryptor = Cipher(algorithms.AES(key), modes.CBC(iv), backend=default_backend()).encryptor()
    return encryptor.update(padded) + encryptor.finalize()


def _aes_cbc_decrypt(ciphertext: bytes, key: bytes, iv: bytes) -> bytes:
    """Raises ValueError on bad length or padding."""
    decryptor = Cipher(algorithms.AES(key), modes.CBC(iv), backend=default_backend()).decryptor()
    padded = decryptor.update(ciphertext) + decryptor.finalize()
    unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
    return unpadder.update(padded) + unpadder.finalize()


def _encrypt_v1(plaintext: str, password: str, iterations: int) -> str:
    salt_text = os.urandom(config.SALT_SIZE).hex()
    iv = os.urandom(config.IV_SIZE)
    key = _pbkdf2(password, salt_text, iterations, config.KEY_SIZE)
    ciphertext = _aes_cbc_encrypt(plaintext.encode('utf-8'), key, iv)
    return ":".join([
        salt_text,
        base64.b64encode(iv).decode('ascii'),
        base64.b64encode(ciphertext).decode('ascii'),
    ])


def _decrypt_v1(blob: str, password: str, iterations: int) -> str:
    """Raises on any malformed part or wrong key."""
    parts = blob.split(':')
    if len(parts) != 3:
        raise ValueError("Expected salt:iv:ciphertext")
    salt_text, iv_b64, ciphertext_b64 = parts
    if not salt_text:
        raise ValueError("Empty salt")
    iv = base64.b64decode(iv_b64, validate=True)
    ciphertext = base64.b64decode(ciphertext_b64, validate=True)
    if len(iv) != config.IV_SIZE:
        raise ValueError("Bad IV length")
    key = _pbkdf2(password, salt_text, iterations, config.KEY_SIZE)
    return _aes_cbc_decrypt(ciphertext, key, iv).decode('utf-8')


def _evp_bytes_to_key(password: bytes, salt: bytes, key_len: int, iv_len: int) -> Tuple[bytes, bytes]:
    # OpenSSL EVP_BytesToKey, MD5, one round
    derived = b""
    block = b""
    while len(derived) < key_len + iv_len:
        digest = hashes.Hash(hashes.MD5(), backend=default_backend())
        digest.update(block + password + salt)
        block = digest.finalize()
        derived += block
    return derived[:key_len], derived[key_len:key_len + iv_len]


def _decrypt_legacy(blob: str, password: str) -> str:
    raw = base64.b64decode(blob, validate=True)
    header = config.LEGACY_SALT_HEADER
    if not raw.startswith(header):
        raise ValueError("Missing legacy salt header")
    salt = raw[len(header):len(header) + config.LEGACY_SALT_SIZE]
    ciphertext = raw[len(header) + config.LEGACY_SALT_SIZE:]
    key, iv = _evp_bytes_to_key(password.encode('utf-8'), salt, config.KEY_SIZE, config.IV_SIZE)
    return _aes_cbc_decrypt(ciphertext, key, iv).decode('utf-8')


def detect_format(blob: str) -> str:
    """Classify a blob that carries no format tag (files predating the tag)."""
    if blob.count(':') == 2:
        return config.CIPHER_FORMAT_V1
    return config.CIPHER_FORMAT_LEGACY


class VaultCipher:
    """Password-based encryption of whole backup payloads."""

    PBKDF2_ITERATIONS = config.PBKDF2_ITERATIONS

    def encrypt(self, plaintext: str, passphrase: str) -> str:
        """
        Encrypt a payload with a fresh salt and IV.

        Args:
            plaintext: Text to protect (usually serialized accounts JSON)
            passphrase: Backup password

        Returns:
            ``salt:iv:ciphertext`` string, always in the current format
        """
        if not passphrase:
            raise ValueError("A passphrase is required to encrypt a backup")
        return _encrypt_v1(plaintext, passphrase, self.PBKDF2_ITERATIONS)

    def decrypt(self, blob: str, passphrase: str, fmt: Optional[str] = None) -> Optional[str]:
        """
        Decrypt a payload. Never raises.

        Args:
            blob: Encrypted payload
            passphrase: Backup password
            fmt: ``"v1"`` or ``"legacy"`` as recorded in the envelope; when
                None the format is inferred from the blob shape

        Returns:
            Plaintext, or None for a wrong password or corrupted data
        """
        if not blob or not passphrase or not isinstance(blob, str):
            return None
        if fmt is None:
            fmt = detect_format(blob)
        try:
            if fmt == config.CIPHER_FORMAT_V1:
                plaintext = _decrypt_v1(blob, passphrase, self.PBKDF2_ITERATIONS)
            elif fmt == config.CIPHER_FORMAT_LEGACY:
                plaintext = _decrypt_legacy(blob, passphrase)
            else:
                logger.warning(f"Unknown cipher format tag {fmt!r}")
                return None
        except Exception:
            # wrong key and corrupted data look the same to the caller
            logger.debug("Decryption failed")
            return None
        return plaintext or None


class SecureHash:
    """
    Password hashing and small-secret protection.

    Same PBKDF2 construction as the backup cipher but a separate call site:
    these helpers protect stored credentials (for example the WebDAV
    password) and verify passwords, and they never accept legacy blobs.
    """

    HASH_ITERATIONS = config.PBKDF2_ITERATIONS

    @classmethod
    def hash_password(cls, password: str) -> str:
        """Return ``salt:hash`` (both hex)."""
        salt_text = os.urandom(config.SALT_SIZE).hex()
        digest = _pbkdf2(password, salt_text, cls.HASH_ITERATIONS, config.KEY_SIZE)
        return f"{salt_text}:{digest.hex()}"

    @classmethod
    def verify_password(cls, password: str, stored_hash: str) -> bool:
        try:
            salt_text, expected = stored_hash.split(':')
        except (AttributeError, ValueError):
            return False
        if not salt_text or not expected:
            return False
        computed = _pbkdf2(password, salt_text, cls.HASH_ITERATIONS, config.KEY_SIZE).hex()
        return hmac.compare_digest(computed, expected.lower())

    @classmethod
    def encrypt_data(cls, data: str, master_password: str) -> str:
        return _encrypt_v1(data, master_password, cls.HASH_ITERATIONS)

    @classmethod
    def decrypt_data(cls, encrypted_data: str, master_password: str) -> Optional[str]:
        try:
            return _decrypt_v1(encrypted_data, master_password, cls.HASH_ITERATIONS)
        except (ValueError, TypeError, AttributeError, binascii.Error, UnicodeDecodeError):
            return None
