"""Backup encryption using AES-256-GCM with scrypt key derivation.

- scrypt (memory-hard, n=2**15, r=8, p=1, ~32 MiB) for key derivation
- AES-256-GCM for authenticated encryption (128-bit tag)
- Random 16-byte salt + 12-byte nonce per encryption

Container format: magic(4) + version(1) + salt(16) + nonce(12) + ciphertext+tag

Every decryption failure, whether from a wrong password, a flipped bit or a
truncated file, surfaces as AuthenticationFailed. The cases are
indistinguishable on purpose.
"""

import os
from dataclasses import dataclass

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from ..exceptions import AuthenticationFailed

CONTAINER_MAGIC = b"NVBK"
CONTAINER_VERSION = 1


@dataclass(frozen=True)
class EncryptedContainer:
    """On-disk form of one encrypted backup artifact."""

    salt: bytes
    nonce: bytes
    ciphertext: bytes

    def to_bytes(self) -> bytes:
        return (
            CONTAINER_MAGIC
            + bytes([CONTAINER_VERSION])
            + self.salt
            + self.nonce
            + self.ciphertext
        )

    @classmethod
    def from_bytes(cls, blob: bytes) -> "EncryptedContainer":
        """Parse a serialized container.

        Raises:
            AuthenticationFailed: Header is malformed or the blob is too short
                to hold a tag.
        """
        header = len(CONTAINER_MAGIC) + 1
        salt_end = header + BackupCrypto.SALT_LENGTH
        nonce_end = salt_end + BackupCrypto.NONCE_LENGTH
        if len(blob) < nonce_end + BackupCrypto.TAG_LENGTH:
            raise AuthenticationFailed("Encrypted data too short to be a valid backup archive.")
        if blob[: len(CONTAINER_MAGIC)] != CONTAINER_MAGIC or blob[header - 1] != CONTAINER_VERSION:
            raise AuthenticationFailed("Unrecognized backup container header.")
        return cls(
            salt=blob[header:salt_end],
            nonce=blob[salt_end:nonce_end],
            ciphertext=blob[nonce_end:],
        )


class BackupCrypto:
    """Encrypt/decrypt opaque byte buffers with a user-provided password."""

    # scrypt cost: ~100 ms and 32 MiB on commodity hardware
    SCRYPT_N = 2 ** 15
    SCRYPT_R = 8
    SCRYPT_P = 1
    KEY_LENGTH = 32              # 256 bits for AES-256
    SALT_LENGTH = 16             # 128-bit salt
    NONCE_LENGTH = 12            # 96-bit nonce for GCM
    TAG_LENGTH = 16              # 128-bit GCM tag

    @classmethod
    def derive_key(cls, password: str, salt: bytes) -> bytes:
        """Derive a 256-bit key from password + salt via scrypt."""
        kdf = Scrypt(
            salt=salt,
            length=cls.KEY_LENGTH,
            n=cls.SCRYPT_N,
            r=cls.SCRYPT_R,
            p=cls.SCRYPT_P,
        )
        return kdf.derive(password.encode("utf-8"))

    @classmethod
    def encrypt(cls, plaintext: bytes, password: str) -> EncryptedContainer:
        """Encrypt with a fresh salt, a freshly derived key and a fresh nonce."""
        salt = os.urandom(cls.SALT_LENGTH)
        key = cls.derive_key(password, salt)
        nonce = os.urandom(cls.NONCE_LENGTH)
        ciphertext = AESGCM(key).encrypt(nonce, plaintext, None)
        return EncryptedContainer(salt=salt, nonce=nonce, ciphertext=ciphertext)

    @classmethod
    def decrypt(cls, container: EncryptedContainer, password: str) -> bytes:
        """Decrypt a container.

        Raises:
            AuthenticationFailed: Wrong password or tampered/corrupt data.
        """
        if len(container.nonce) != cls.NONCE_LENGTH or len(container.salt) != cls.SALT_LENGTH:
            raise AuthenticationFailed()
        key = cls.derive_key(password, container.salt)
        try:
            return AESGCM(key).decrypt(container.nonce, container.ciphertext, None)
        except InvalidTag:
            raise AuthenticationFailed() from None

    # ── Serialized helpers ───────────────────────────────────────────

    @classmethod
    def encrypt_bytes(cls, data: bytes, password: str) -> bytes:
        """Encrypt and serialize in one step."""
        return cls.encrypt(data, password).to_bytes()

    @classmethod
    def decrypt_bytes(cls, blob: bytes, password: str) -> bytes:
        """Parse and decrypt a serialized container."""
        return cls.decrypt(EncryptedContainer.from_bytes(blob), password)
