"""Tests for the backup history database."""


class TestBackupDatabase:
    """Backup history SQLite persistence."""

    def _record(self, db, name, created_at, size=1024):
        return db.record_backup(
            path=f"/backups/{name}.enc",
            created_at=created_at,
            size_bytes=size,
            manifest_hash="f" * 64,
        )

    def test_record_and_retrieve(self, tmp_path):
        from notes_vault.backup.backup_database import BackupDatabase

        db = BackupDatabase(tmp_path / "history.db")
        record = db.record_backup(
            path="/backups/backup_1.enc",
            created_at="2026-01-01T02:00:00+00:00",
            size_bytes=2048,
            manifest_hash="a" * 64,
            backup_id="abc123",
        )
        assert record.id == "abc123"
        assert record.filesystem_path == "/backups/backup_1.enc"
        assert record.size_bytes == 2048
        assert db.get_backup("abc123") == record

    def test_generated_ids_are_unique(self, tmp_path):
        from notes_vault.backup.backup_database import BackupDatabase

        db = BackupDatabase(tmp_path / "history.db")
        r1 = self._record(db, "a", "2026-01-01T00:00:00+00:00")
        r2 = self._record(db, "b", "2026-01-01T00:00:00+00:00")
        assert r1.id != r2.id

    def test_list_sorted_newest_first(self, tmp_path):
        from notes_vault.backup.backup_database import BackupDatabase

        db = BackupDatabase(tmp_path / "history.db")
        self._record(db, "old", "2026-01-01T00:00:00+00:00")
        self._record(db, "new", "2026-03-01T00:00:00+00:00")
        self._record(db, "mid", "2026-02-01T00:00:00+00:00")

        names = [r.filesystem_path for r in db.list_backups()]
        assert names == ["/backups/new.enc", "/backups/mid.enc", "/backups/old.enc"]

    def test_get_missing_returns_none(self, tmp_path):
        from notes_vault.backup.backup_database import BackupDatabase

        assert BackupDatabase(tmp_path / "history.db").get_backup("nope") is None

    def test_find_by_path(self, tmp_path):
        from notes_vault.backup.backup_database import BackupDatabase

        db = BackupDatabase(tmp_path / "history.db")
        archive = tmp_path / "backups" / "backup_x.enc"
        record = db.record_backup(str(archive), "2026-01-01T00:00:00+00:00", 1, "a" * 64)

        assert db.find_by_path(archive) == record
        assert db.find_by_path(tmp_path / "backups" / ".." / "backups" / "backup_x.enc") == record
        assert db.find_by_path(tmp_path / "other.enc") is None

    def test_delete_record(self, tmp_path):
        from notes_vault.backup.backup_database import BackupDatabase

        db = BackupDatabase(tmp_path / "history.db")
        record = self._record(db, "a", "2026-01-01T00:00:00+00:00")
        assert db.delete_backup_record(record.id) is True
        assert db.get_backup(record.id) is None
        assert db.delete_backup_record(record.id) is False

    def test_delete_many(self, tmp_path):
        from notes_vault.backup.backup_database import BackupDatabase

        db = BackupDatabase(tmp_path / "history.db")
        ids = [self._record(db, str(i), f"2026-01-0{i + 1}T00:00:00+00:00").id for i in range(3)]
        assert db.delete_backup_records(ids[:2]) == 2
        assert [r.id for r in db.list_backups()] == [ids[2]]
        assert db.delete_backup_records([]) == 0

    def test_schema_idempotent(self, tmp_path):
        from notes_vault.backup.backup_database import BackupDatabase

        path = tmp_path / "history.db"
        db = BackupDatabase(path)
        self._record(db, "a", "2026-01-01T00:00:00+00:00")
        assert len(BackupDatabase(path).list_backups()) == 1

    def test_to_dict(self, tmp_path):
        from notes_vault.backup.backup_database import BackupDatabase

        record = self._record(BackupDatabase(tmp_path / "h.db"), "a", "2026-01-01T00:00:00+00:00")
        assert set(record.to_dict()) == {
            "id", "filesystem_path", "created_at", "size_bytes", "manifest_hash",
        }
