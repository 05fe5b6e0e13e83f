"""
Shared pytest fixtures for the Notes Vault test suite.

Autouse fixtures below isolate tests from real user data:
  - Audit logger   -> temp directory (prevents test events in the real audit trail)
  - Services       -> reset per test (no singleton leaks between tests)
  - Key derivation -> cheap scrypt cost (the production cost is ~100 ms per call)
  - OS keyring     -> in-memory backend (auto-backup passwords never leave the test)
"""

import sqlite3
import threading
from types import SimpleNamespace

import pytest
from keyring.backend import KeyringBackend
from keyring.errors import PasswordDeleteError

BLOB_PAYLOADS = [
    b"\x89PNG\r\n\x1a\n fake image bytes",
    b"%PDF-1.7 quarterly report",
    b"plain text attachment",
]

NOTE_TITLES = ["Groceries", "Meeting notes", "Trip ideas"]


@pytest.fixture(autouse=True)
def _isolate_audit_logs(tmp_path, monkeypatch):
    """Redirect the global AuditLogger to a temp directory for every test.

    Without this, any test that (directly or indirectly) logs an audit
    event writes into ``./audit_logs/`` of the working directory.
    """
    import notes_vault.core.audit_log as audit_mod

    audit_mod._audit_logger = None

    orig_init = audit_mod.AuditLogger.__init__

    def patched_init(self, log_dir=None):
        orig_init(self, log_dir=log_dir or tmp_path / "audit_logs")

    monkeypatch.setattr(audit_mod.AuditLogger, "__init__", patched_init)

    yield

    if audit_mod._audit_logger is not None:
        audit_mod._audit_logger.close()
    audit_mod._audit_logger = None


@pytest.fixture(autouse=True)
def _isolate_services():
    """Reset the process-wide VaultServices singleton for every test."""
    from notes_vault import services as services_mod

    previous = services_mod.set_services(None)
    yield
    current = services_mod.set_services(previous)
    if current is not None:
        current.shutdown()


@pytest.fixture(autouse=True)
def _fast_kdf(monkeypatch):
    """Lower the scrypt work factor; the algorithm and formats are unchanged."""
    from notes_vault.backup.backup_crypto import BackupCrypto

    monkeypatch.setattr(BackupCrypto, "SCRYPT_N", 2 ** 10)


class MemoryKeyring(KeyringBackend):
    """Keyring backend holding credentials in a dict."""

    priority = 1

    def __init__(self):
        super().__init__()
        self.entries = {}

    def get_password(self, service, username):
        return self.entries.get((service, username))

    def set_password(self, service, username, password):
        self.entries[(service, username)] = password

    def delete_password(self, service, username):
        if self.entries.pop((service, username), None) is None:
            raise PasswordDeleteError("Password not found")


@pytest.fixture(autouse=True)
def memory_keyring():
    """Swap the OS keyring for a fresh in-memory one."""
    import keyring

    previous = keyring.get_keyring()
    backend = MemoryKeyring()
    keyring.set_keyring(backend)
    yield backend
    keyring.set_keyring(previous)


# ── Dataset helpers ─────────────────────────────────────────────────


def create_notes_db(db_path, titles, blob_hashes=()):
    """Create a small notes database with one attachment row per blob."""
    from notes_vault.core.db import connect

    conn = connect(db_path)
    try:
        conn.execute("CREATE TABLE notes (id INTEGER PRIMARY KEY, title TEXT NOT NULL)")
        conn.execute(
            "CREATE TABLE attachments (id INTEGER PRIMARY KEY, "
            "note_id INTEGER REFERENCES notes(id), blob_hash TEXT NOT NULL)"
        )
        conn.executemany("INSERT INTO notes (title) VALUES (?)", [(t,) for t in titles])
        conn.executemany(
            "INSERT INTO attachments (note_id, blob_hash) VALUES (1, ?)",
            [(h,) for h in blob_hashes],
        )
        conn.commit()
    finally:
        conn.close()


def read_titles(db_path):
    conn = sqlite3.connect(str(db_path))
    try:
        return [r[0] for r in conn.execute("SELECT title FROM notes ORDER BY id")]
    finally:
        conn.close()


@pytest.fixture
def settings(tmp_path):
    from notes_vault.config import VaultSettings

    return VaultSettings(data_dir=tmp_path / "data")


@pytest.fixture
def dataset(settings):
    """A live data directory with a notes database and three blobs."""
    from notes_vault.core.db import DatabasePool
    from notes_vault.storage.blob_store import BlobStore

    store = BlobStore(settings.blob_dir)
    store.initialize()
    hashes = [store.write(payload) for payload in BLOB_PAYLOADS]
    create_notes_db(settings.db_path, NOTE_TITLES, hashes)
    pool = DatabasePool(settings.db_path)

    yield SimpleNamespace(
        settings=settings,
        store=store,
        hashes=hashes,
        payloads=list(BLOB_PAYLOADS),
        titles=list(NOTE_TITLES),
        pool=pool,
        read_titles=lambda: read_titles(settings.db_path),
    )

    pool.close()


@pytest.fixture
def manager(dataset):
    """BackupManager over ``dataset`` with its own lock."""
    from notes_vault.backup.backup_manager import BackupManager

    return BackupManager(
        dataset.settings,
        blob_store=dataset.store,
        pool=dataset.pool,
        lock=threading.Lock(),
    )
