"""Backup manifest: a versioned, checksummed inventory of the live dataset.

The manifest lists the live database file and every blob with its SHA-256
and size. Paths are POSIX and relative to the data directory so a backup
restores onto any machine. The same ``sha256_file`` / ``verify_tree``
helpers are used when building and when verifying a restore.
"""

import hashlib
import json
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Union

from ..config import BLOB_DIRNAME, DB_FILENAME
from ..exceptions import ChecksumMismatch, FormatVersionUnsupported
from ..storage.blob_store import is_valid_hash

# Manifest version: increment if archive format changes
MANIFEST_FORMAT_VERSION = 1
MANIFEST_NAME = "manifest.json"

_CHUNK_SIZE = 1024 * 1024


@dataclass(frozen=True)
class ManifestEntry:
    relative_path: str
    sha256_hex: str
    size_bytes: int


@dataclass(frozen=True)
class Manifest:
    format_version: int
    created_at: str
    entries: List[ManifestEntry] = field(default_factory=list)

    def to_json(self) -> bytes:
        """Serialized form embedded in the archive (stable key order)."""
        payload = {
            "format_version": self.format_version,
            "created_at": self.created_at,
            "entries": [asdict(e) for e in self.entries],
        }
        return json.dumps(payload, indent=2, sort_keys=True).encode("utf-8")

    @classmethod
    def from_json(cls, raw: bytes) -> "Manifest":
        """Parse and version-check a manifest.

        Raises:
            ChecksumMismatch: Not a well-formed manifest.
            FormatVersionUnsupported: Valid manifest of another version.
        """
        try:
            payload = json.loads(raw)
            version = payload["format_version"]
        except (ValueError, KeyError, TypeError):
            raise ChecksumMismatch("Corrupt archive: missing or invalid manifest.")
        if version != MANIFEST_FORMAT_VERSION:
            raise FormatVersionUnsupported(
                f"Unsupported manifest format_version: {version!r}"
            )
        try:
            entries = [
                ManifestEntry(
                    relative_path=str(e["relative_path"]),
                    sha256_hex=str(e["sha256_hex"]),
                    size_bytes=int(e["size_bytes"]),
                )
                for e in payload["entries"]
            ]
            return cls(
                format_version=version,
                created_at=str(payload["created_at"]),
                entries=entries,
            )
        except (KeyError, TypeError, ValueError):
            raise ChecksumMismatch("Corrupt archive: malformed manifest entries.")

    def entry_map(self) -> Dict[str, ManifestEntry]:
        return {e.relative_path: e for e in self.entries}

    @property
    def total_bytes(self) -> int:
        return sum(e.size_bytes for e in self.entries)

    def summary(self) -> dict:
        """Counts and sizes for display, plus the full entry list."""
        blob_count = sum(1 for e in self.entries if e.relative_path != DB_FILENAME)
        return {
            "format_version": self.format_version,
            "created_at": self.created_at,
            "file_count": len(self.entries),
            "blob_count": blob_count,
            "total_bytes": self.total_bytes,
            "entries": [asdict(e) for e in self.entries],
        }


def manifest_hash(raw: bytes) -> str:
    """SHA-256 of the exact serialized manifest bytes."""
    return hashlib.sha256(raw).hexdigest()


def sha256_file(path: Union[str, Path]) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as fh:
        for chunk in iter(lambda: fh.read(_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def _entry_for(root: Path, path: Path) -> ManifestEntry:
    return ManifestEntry(
        relative_path=path.relative_to(root).as_posix(),
        sha256_hex=sha256_file(path),
        size_bytes=path.stat().st_size,
    )


def dataset_files(root: Union[str, Path]) -> List[Path]:
    """Live dataset files under ``root``: db.sqlite and every blob object."""
    root = Path(root)
    files = []
    db_path = root / DB_FILENAME
    if db_path.is_file():
        files.append(db_path)
    blob_root = root / BLOB_DIRNAME
    if blob_root.is_dir():
        for path in blob_root.glob("*/*/*"):
            if path.is_file() and is_valid_hash(path.name):
                files.append(path)
    return sorted(files, key=lambda p: p.relative_to(root).as_posix())


class ManifestBuilder:
    """Snapshot "what exists right now" into a Manifest."""

    def build(
        self,
        root_directory: Union[str, Path],
        created_at: Optional[str] = None,
        database_snapshot: Optional[Path] = None,
    ) -> Manifest:
        """Build a manifest for the dataset under ``root_directory``.

        Args:
            root_directory: Data directory holding db.sqlite and blobs/.
            created_at: ISO timestamp; defaults to now (UTC).
            database_snapshot: Consistent copy of the live database to
                describe as ``db.sqlite`` instead of the live file.
        """
        root = Path(root_directory)
        entries = []
        for path in dataset_files(root):
            if database_snapshot is not None and path == root / DB_FILENAME:
                continue
            entries.append(_entry_for(root, path))
        if database_snapshot is not None:
            entries.append(ManifestEntry(
                relative_path=DB_FILENAME,
                sha256_hex=sha256_file(database_snapshot),
                size_bytes=Path(database_snapshot).stat().st_size,
            ))
            entries.sort(key=lambda e: e.relative_path)
        return Manifest(
            format_version=MANIFEST_FORMAT_VERSION,
            created_at=created_at or datetime.now(timezone.utc).isoformat(),
            entries=entries,
        )


def verify_tree(root: Union[str, Path], manifest: Manifest) -> None:
    """Check every file under ``root`` against ``manifest``.

    Every manifest entry must exist with matching size and SHA-256, and no
    dataset file may be present that the manifest does not list.

    Raises:
        ChecksumMismatch: On the first discrepancy.
    """
    root = Path(root)
    expected = manifest.entry_map()
    for rel_path, entry in expected.items():
        path = root / rel_path
        if not path.is_file():
            raise ChecksumMismatch(f"Missing file in backup: {rel_path}")
        if path.stat().st_size != entry.size_bytes:
            raise ChecksumMismatch(f"Size mismatch for {rel_path}")
        if sha256_file(path) != entry.sha256_hex:
            raise ChecksumMismatch(f"Checksum mismatch for {rel_path}")

    for path in dataset_files(root):
        rel_path = path.relative_to(root).as_posix()
        if rel_path not in expected:
            raise ChecksumMismatch(f"Unlisted file in backup: {rel_path}")
