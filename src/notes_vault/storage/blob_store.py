"""Content-addressed blob store for attachment and image bytes.

Objects are keyed by the SHA-256 hex digest of their content and sharded
two levels deep so no directory grows unbounded:

    <root>/ab/cd/abcd1234...

Writes go to a unique temp file in the shard directory and become visible
through a single ``os.replace``. A crash mid-write leaves at most a stray
``.tmp`` file; the canonical path only ever holds complete content.
"""

import hashlib
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Iterable, List, Union

from ..core.audit_log import EventType, audit
from ..exceptions import BlobNotFound

logger = logging.getLogger(__name__)

_HASH_RE = re.compile(r"^[0-9a-f]{64}$")
_TMP_SUFFIX = ".tmp"


def compute_hash(data: bytes) -> str:
    """SHA-256 hex digest of ``data``."""
    return hashlib.sha256(data).hexdigest()


def is_valid_hash(value: str) -> bool:
    return bool(_HASH_RE.match(value))


class BlobStore:
    """Deduplicated, crash-safe storage of immutable byte payloads.

    The store keeps no reference counts. Whether a blob is still used by an
    attachment is the caller's concern; ``delete`` removes unconditionally.

    Args:
        root: Directory holding the shard tree (created on first write).
    """

    def __init__(self, root: Union[str, Path]):
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def initialize(self) -> None:
        self._root.mkdir(parents=True, exist_ok=True)
        logger.info("Blob store initialized at: %s", self._root)

    def path_for(self, blob_hash: str) -> Path:
        """Canonical path of ``blob_hash``: root/<h[0:2]>/<h[2:4]>/<h>."""
        if not is_valid_hash(blob_hash):
            raise ValueError(f"Invalid blob hash: {blob_hash!r}")
        return self._root / blob_hash[0:2] / blob_hash[2:4] / blob_hash

    # ── Core operations ──────────────────────────────────────────────

    def write(self, data: bytes) -> str:
        """Store ``data`` and return its hash.

        A second write of identical content is a no-op.
        """
        blob_hash = compute_hash(data)
        path = self.path_for(blob_hash)
        if path.exists():
            logger.debug("Blob already exists: %s", blob_hash)
            return blob_hash

        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{blob_hash[:8]}-", suffix=_TMP_SUFFIX, dir=path.parent
        )
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
                fh.flush()
                os.fsync(fh.fileno())
            self._commit(tmp_name, path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise

        logger.debug("Wrote blob: %s (%d bytes)", blob_hash, len(data))
        return blob_hash

    @staticmethod
    def _commit(tmp_name: str, path: Path) -> None:
        # Concurrent writers of the same content race here harmlessly:
        # both temp files hold identical bytes.
        os.replace(tmp_name, path)

    def read(self, blob_hash: str) -> bytes:
        """Return the payload for ``blob_hash``.

        Raises:
            BlobNotFound: No object exists for the hash.
        """
        if not is_valid_hash(blob_hash):
            raise BlobNotFound(f"Blob not found: {blob_hash!r}")
        path = self.path_for(blob_hash)
        try:
            data = path.read_bytes()
        except FileNotFoundError:
            raise BlobNotFound(f"Blob not found: {blob_hash}")
        logger.debug("Read blob: %s (%d bytes)", blob_hash, len(data))
        return data

    def exists(self, blob_hash: str) -> bool:
        try:
            return self.path_for(blob_hash).is_file()
        except ValueError:
            return False

    def delete(self, blob_hash: str) -> None:
        """Remove the blob; a missing blob counts as already deleted."""
        if not is_valid_hash(blob_hash):
            return
        try:
            self.path_for(blob_hash).unlink()
        except FileNotFoundError:
            return
        logger.debug("Deleted blob: %s", blob_hash)

    # ── Enumeration ──────────────────────────────────────────────────

    def list_all(self) -> List[str]:
        """Every stored hash, sorted. Temp files and strays are skipped."""
        if not self._root.exists():
            return []
        hashes = []
        for shard1 in self._root.iterdir():
            if not shard1.is_dir():
                continue
            for shard2 in shard1.iterdir():
                if not shard2.is_dir():
                    continue
                for entry in shard2.iterdir():
                    if entry.is_file() and is_valid_hash(entry.name):
                        hashes.append(entry.name)
        return sorted(hashes)

    def collect_garbage(self, referenced_hashes: Iterable[str]) -> List[str]:
        """Delete every blob not in ``referenced_hashes``.

        Never called implicitly; the caller supplies the live reference set
        (all hashes referenced by attachment records).

        Returns:
            Hashes that were removed.
        """
        keep = set(referenced_hashes)
        removed = []
        for blob_hash in self.list_all():
            if blob_hash not in keep:
                self.delete(blob_hash)
                removed.append(blob_hash)
        if removed:
            logger.info("Blob GC removed %d unreferenced blobs", len(removed))
            audit(EventType.BLOB_GC, f"Removed {len(removed)} unreferenced blobs",
                  {"removed": len(removed), "kept": len(keep)})
        return removed
