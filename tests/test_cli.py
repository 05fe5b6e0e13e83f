"""Tests for the notes-vault command line and process-wide services."""

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

PASSWORD = "Sw4tNotes!"


@pytest.fixture
def cli_env(dataset, monkeypatch):
    monkeypatch.setenv("NOTES_VAULT_DATA_DIR", str(dataset.settings.data_dir))
    monkeypatch.setenv("NV_TEST_PASSWORD", PASSWORD)
    monkeypatch.setenv("NV_WRONG_PASSWORD", "definitely wrong")
    return dataset


class TestBackupCommands:

    def test_create_then_list(self, cli_env, capsys):
        from notes_vault.__main__ import main

        assert main(["backup", "create", "--password-env", "NV_TEST_PASSWORD"]) == 0
        created = json.loads(capsys.readouterr().out)

        assert main(["backup", "list", "--json"]) == 0
        listed = json.loads(capsys.readouterr().out)
        assert [r["id"] for r in listed] == [created["id"]]

    def test_restore_wrong_password_exits_1(self, cli_env, capsys):
        from notes_vault.__main__ import main

        main(["backup", "create", "--password-env", "NV_TEST_PASSWORD"])
        path = json.loads(capsys.readouterr().out)["filesystem_path"]
        before = cli_env.settings.db_path.read_bytes()

        code = main(["backup", "restore", path, "--password-env", "NV_WRONG_PASSWORD"])

        assert code == 1
        assert "Incorrect password" in capsys.readouterr().err
        assert cli_env.settings.db_path.read_bytes() == before

    def test_restore(self, cli_env, capsys):
        from notes_vault.__main__ import main

        main(["backup", "create", "--password-env", "NV_TEST_PASSWORD"])
        path = json.loads(capsys.readouterr().out)["filesystem_path"]

        assert main(["backup", "restore", path, "--password-env", "NV_TEST_PASSWORD"]) == 0
        assert "Restart the application" in capsys.readouterr().out

    def test_delete_and_prune(self, cli_env, capsys):
        from notes_vault.__main__ import main

        records = []
        for _ in range(3):
            main(["backup", "create", "--password-env", "NV_TEST_PASSWORD"])
            records.append(json.loads(capsys.readouterr().out))

        assert main(["backup", "delete", records[0]["id"], records[0]["filesystem_path"]]) == 0
        capsys.readouterr()
        assert main(["backup", "prune", "--keep", "1"]) == 0
        report = json.loads(capsys.readouterr().out)
        assert report["kept"] == [records[2]["id"]]
        assert report["deleted"] == [records[1]["id"]]

    def test_missing_password_variable(self, cli_env):
        from notes_vault.__main__ import main

        with pytest.raises(SystemExit):
            main(["backup", "create", "--password-env", "NV_NOT_SET"])

    def test_empty_dataset_exits_1(self, tmp_path, monkeypatch, capsys):
        from notes_vault.__main__ import main

        monkeypatch.setenv("NOTES_VAULT_DATA_DIR", str(tmp_path / "empty"))
        monkeypatch.setenv("NV_TEST_PASSWORD", PASSWORD)
        assert main(["backup", "create", "--password-env", "NV_TEST_PASSWORD"]) == 1
        assert "no data to back up" in capsys.readouterr().err

    def test_info(self, cli_env, capsys):
        from notes_vault.__main__ import main

        main(["backup", "create", "--password-env", "NV_TEST_PASSWORD"])
        backup_id = json.loads(capsys.readouterr().out)["id"]

        assert main(["backup", "info", backup_id, "--password-env", "NV_TEST_PASSWORD"]) == 0
        info = json.loads(capsys.readouterr().out)
        assert info["record"]["id"] == backup_id
        assert info["manifest"]["blob_count"] == len(cli_env.hashes)

    def test_info_unknown_backup_exits_1(self, cli_env, capsys):
        from notes_vault.__main__ import main

        assert main(["backup", "info", "missing", "--password-env", "NV_TEST_PASSWORD"]) == 1
        assert "Backup not found" in capsys.readouterr().err

    def test_stored_password_flow(self, cli_env, capsys):
        from notes_vault.__main__ import main

        assert main(["backup", "create", "--stored-password"]) == 1
        assert "auto-backup password" in capsys.readouterr().err

        assert main(["backup", "set-password", "--password-env", "NV_TEST_PASSWORD"]) == 0
        assert "stored" in capsys.readouterr().out

        assert main(["backup", "create", "--stored-password"]) == 0
        backup_id = json.loads(capsys.readouterr().out)["id"]
        assert main(["backup", "info", backup_id, "--password-env", "NV_TEST_PASSWORD"]) == 0
        capsys.readouterr()

        assert main(["backup", "clear-password"]) == 0
        assert "removed" in capsys.readouterr().out
        assert main(["backup", "clear-password"]) == 0
        assert "No auto-backup password" in capsys.readouterr().out

    def test_version(self, capsys):
        from notes_vault.__main__ import main

        with pytest.raises(SystemExit) as exc_info:
            main(["--version"])
        assert exc_info.value.code == 0
        assert "Notes Vault v" in capsys.readouterr().out


class TestServicesStartup:

    def test_startup_purges_expired_previous_and_reconciles(self, dataset):
        from notes_vault.services import VaultServices

        svc = VaultServices(dataset.settings, configure_audit=False)
        record = svc.backup_manager.create_backup(PASSWORD)
        svc.backup_manager.restore_backup(record.filesystem_path, PASSWORD)

        data_dir = dataset.settings.data_dir
        old_stamp = (datetime.now(timezone.utc) - timedelta(days=30)).strftime("%Y%m%dT%H%M%S%fZ")
        expired = data_dir / f"db.sqlite.previous-{old_stamp}"
        expired.write_bytes(b"old")
        orphan = svc.backup_manager.create_backup(PASSWORD)
        Path(orphan.filesystem_path).unlink()

        svc.startup()

        assert not expired.exists()
        assert len(list(data_dir.glob("db.sqlite.previous-*"))) == 1
        assert svc.backup_manager.get_backup_info(orphan.id) is None
        assert svc.backup_manager.get_backup_info(record.id) is not None
        svc.shutdown()
        assert not svc.pool.is_open

    def test_get_services_is_singleton(self, dataset, monkeypatch):
        from notes_vault.services import get_services

        monkeypatch.setenv("NOTES_VAULT_DATA_DIR", str(dataset.settings.data_dir))
        assert get_services() is get_services()
        assert get_services().settings.data_dir == dataset.settings.data_dir
