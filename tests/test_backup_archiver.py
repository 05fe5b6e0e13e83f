"""Tests for BackupArchiver: packaging the live dataset into one encrypted file."""

import errno
import hashlib
import io
import json
import os
import sqlite3
import zipfile

import pytest

PASSWORD = "Sw4tNotes!"


@pytest.fixture
def archiver(dataset):
    from notes_vault.backup.backup_archiver import BackupArchiver
    from notes_vault.backup.backup_database import BackupDatabase

    settings = dataset.settings
    return BackupArchiver(
        data_dir=settings.data_dir,
        backup_dir=settings.backup_dir,
        blob_store=dataset.store,
        backup_db=BackupDatabase(settings.backup_history_path),
    )


def _open_archive(path, password=PASSWORD):
    from notes_vault.backup.backup_crypto import BackupCrypto

    plaintext = BackupCrypto.decrypt_bytes(path.read_bytes(), password)
    return zipfile.ZipFile(io.BytesIO(plaintext))


class TestCreateBackup:

    def test_produces_encrypted_file(self, archiver, dataset):
        record = archiver.create_backup(PASSWORD)
        path = dataset.settings.backup_dir / os.path.basename(record.filesystem_path)

        assert path.is_file()
        assert path.name.startswith("backup_") and path.suffix == ".enc"
        raw = path.read_bytes()
        assert raw[:4] == b"NVBK"
        assert not zipfile.is_zipfile(io.BytesIO(raw))
        assert record.size_bytes == len(raw)

    def test_archive_contents(self, archiver, dataset):
        record = archiver.create_backup(PASSWORD)

        with _open_archive(dataset.settings.backup_dir / os.path.basename(record.filesystem_path)) as zf:
            names = set(zf.namelist())
            assert "manifest.json" in names
            assert "db.sqlite" in names
            for h, payload in zip(dataset.hashes, dataset.payloads):
                member = f"blobs/{h[0:2]}/{h[2:4]}/{h}"
                assert member in names
                assert zf.read(member) == payload

    def test_manifest_hash_recorded(self, archiver, dataset):
        record = archiver.create_backup(PASSWORD)

        with _open_archive(dataset.settings.backup_dir / os.path.basename(record.filesystem_path)) as zf:
            raw = zf.read("manifest.json")
            manifest = json.loads(raw)
            db_bytes = zf.read("db.sqlite")

        assert record.manifest_hash == hashlib.sha256(raw).hexdigest()
        db_entry = next(e for e in manifest["entries"] if e["relative_path"] == "db.sqlite")
        assert db_entry["sha256_hex"] == hashlib.sha256(db_bytes).hexdigest()
        assert manifest["format_version"] == 1

    def test_snapshot_taken_while_pool_in_use(self, archiver, dataset, tmp_path):
        with dataset.pool.connection() as conn:
            conn.execute("INSERT INTO notes (title) VALUES ('uncheckpointed')")
            conn.commit()
            record = archiver.create_backup(PASSWORD)

        with _open_archive(dataset.settings.backup_dir / os.path.basename(record.filesystem_path)) as zf:
            (tmp_path / "restored.sqlite").write_bytes(zf.read("db.sqlite"))
        conn = sqlite3.connect(str(tmp_path / "restored.sqlite"))
        try:
            titles = [r[0] for r in conn.execute("SELECT title FROM notes ORDER BY id")]
        finally:
            conn.close()
        assert titles == dataset.titles + ["uncheckpointed"]

    def test_recorded_in_history(self, archiver):
        record = archiver.create_backup(PASSWORD)
        assert archiver._db.get_backup(record.id) == record

    def test_blobs_only_dataset(self, archiver, dataset):
        dataset.settings.db_path.unlink()
        record = archiver.create_backup(PASSWORD)
        path = dataset.settings.backup_dir / os.path.basename(record.filesystem_path)
        with _open_archive(path) as zf:
            assert "db.sqlite" not in zf.namelist()

    def test_unique_names_for_fast_successive_backups(self, archiver):
        paths = {archiver.create_backup(PASSWORD).filesystem_path for _ in range(3)}
        assert len(paths) == 3


class TestCreateBackupFailures:

    def test_empty_dataset_rejected(self, tmp_path):
        from notes_vault.backup.backup_archiver import BackupArchiver
        from notes_vault.backup.backup_database import BackupDatabase
        from notes_vault.exceptions import EmptyDatasetRejected
        from notes_vault.storage.blob_store import BlobStore

        data_dir = tmp_path / "empty"
        backup_dir = data_dir / "backups"
        db = BackupDatabase(tmp_path / "history.db")
        archiver = BackupArchiver(data_dir, backup_dir, BlobStore(data_dir / "blobs"), db)

        with pytest.raises(EmptyDatasetRejected):
            archiver.create_backup(PASSWORD)
        assert not backup_dir.exists()
        assert db.list_backups() == []

    def test_disk_full_leaves_no_file_and_no_record(self, archiver, dataset, monkeypatch):
        from notes_vault.exceptions import StorageIOError

        real_replace = os.replace

        def failing_replace(src, dst):
            if str(dst).endswith(".enc"):
                raise OSError(errno.ENOSPC, "No space left on device")
            return real_replace(src, dst)

        monkeypatch.setattr(os, "replace", failing_replace)

        with pytest.raises(StorageIOError) as exc_info:
            archiver.create_backup(PASSWORD)

        assert exc_info.value.disk_full
        assert "disk is full" in exc_info.value.user_message.lower()
        backup_dir = dataset.settings.backup_dir
        leftovers = [p.name for p in backup_dir.iterdir() if p.name != "backup_history.db"
                     and not p.name.startswith("backup_history.db-")]
        assert leftovers == []
        assert archiver._db.list_backups() == []

    def test_record_failure_removes_archive(self, archiver, dataset, monkeypatch):
        from notes_vault.exceptions import StorageIOError

        def broken_record(**kwargs):
            raise sqlite3.OperationalError("database is locked")

        monkeypatch.setattr(archiver._db, "record_backup", broken_record)

        with pytest.raises(StorageIOError):
            archiver.create_backup(PASSWORD)
        assert list(dataset.settings.backup_dir.glob("*.enc")) == []
