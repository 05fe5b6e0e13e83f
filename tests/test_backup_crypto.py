"""Tests for backup encryption (scrypt + AES-256-GCM) and the container format."""

import pytest

PASSWORD = "Sw4tNotes!"


class TestBackupCrypto:
    """AES-256-GCM encryption/decryption for backup archives."""

    def test_encrypt_decrypt_roundtrip(self):
        from notes_vault.backup.backup_crypto import BackupCrypto

        data = b"Hello, Notes Vault backup system!"
        encrypted = BackupCrypto.encrypt_bytes(data, PASSWORD)
        assert BackupCrypto.decrypt_bytes(encrypted, PASSWORD) == data

    def test_wrong_password_raises_authentication_failed(self):
        from notes_vault.backup.backup_crypto import BackupCrypto
        from notes_vault.exceptions import AuthenticationFailed

        encrypted = BackupCrypto.encrypt_bytes(b"secret data", PASSWORD)
        with pytest.raises(AuthenticationFailed):
            BackupCrypto.decrypt_bytes(encrypted, "wrong")

    @pytest.mark.parametrize("position", [5, 21, 40, -1])
    def test_single_byte_tamper_detected(self, position):
        from notes_vault.backup.backup_crypto import BackupCrypto
        from notes_vault.exceptions import AuthenticationFailed

        encrypted = bytearray(BackupCrypto.encrypt_bytes(b"tamper target" * 10, PASSWORD))
        encrypted[position] ^= 0x01
        with pytest.raises(AuthenticationFailed):
            BackupCrypto.decrypt_bytes(bytes(encrypted), PASSWORD)

    def test_salt_and_nonce_are_random(self):
        from notes_vault.backup.backup_crypto import BackupCrypto

        c1 = BackupCrypto.encrypt(b"same data", PASSWORD)
        c2 = BackupCrypto.encrypt(b"same data", PASSWORD)
        assert c1.salt != c2.salt
        assert c1.nonce != c2.nonce
        assert c1.ciphertext != c2.ciphertext

    def test_empty_data(self):
        from notes_vault.backup.backup_crypto import BackupCrypto

        encrypted = BackupCrypto.encrypt_bytes(b"", PASSWORD)
        assert BackupCrypto.decrypt_bytes(encrypted, PASSWORD) == b""

    def test_derive_key_deterministic(self):
        from notes_vault.backup.backup_crypto import BackupCrypto

        salt = b"\x00" * BackupCrypto.SALT_LENGTH
        k1 = BackupCrypto.derive_key(PASSWORD, salt)
        k2 = BackupCrypto.derive_key(PASSWORD, salt)
        assert k1 == k2
        assert len(k1) == 32
        assert BackupCrypto.derive_key("other", salt) != k1


class TestEncryptedContainer:
    """Binary layout: magic(4) + version(1) + salt(16) + nonce(12) + ciphertext+tag."""

    def test_output_format(self):
        from notes_vault.backup.backup_crypto import (
            BackupCrypto,
            CONTAINER_MAGIC,
            CONTAINER_VERSION,
        )

        container = BackupCrypto.encrypt(b"format check", PASSWORD)
        blob = container.to_bytes()
        assert blob[:4] == CONTAINER_MAGIC
        assert blob[4] == CONTAINER_VERSION
        assert blob[5:21] == container.salt
        assert blob[21:33] == container.nonce
        # ciphertext carries the 16-byte GCM tag
        assert len(blob) == 33 + len(b"format check") + 16

    def test_from_bytes_roundtrip(self):
        from notes_vault.backup.backup_crypto import BackupCrypto, EncryptedContainer

        container = BackupCrypto.encrypt(b"parse me", PASSWORD)
        assert EncryptedContainer.from_bytes(container.to_bytes()) == container

    def test_bad_magic_is_authentication_failure(self):
        from notes_vault.backup.backup_crypto import BackupCrypto
        from notes_vault.exceptions import AuthenticationFailed

        blob = BackupCrypto.encrypt_bytes(b"data", PASSWORD)
        with pytest.raises(AuthenticationFailed):
            BackupCrypto.decrypt_bytes(b"ZIPX" + blob[4:], PASSWORD)

    def test_truncated_input_is_authentication_failure(self):
        from notes_vault.backup.backup_crypto import BackupCrypto
        from notes_vault.exceptions import AuthenticationFailed

        blob = BackupCrypto.encrypt_bytes(b"data", PASSWORD)
        for cut in (0, 10, 40):
            with pytest.raises(AuthenticationFailed):
                BackupCrypto.decrypt_bytes(blob[:cut], PASSWORD)
