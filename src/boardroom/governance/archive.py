"""Hash-chained archive for exported access-audit entries.

Writes append-only entries to a JSONL file. Each entry's SHA-256 hash
includes the previous entry's hash, forming a tamper-evident chain:
altering any archived entry breaks the chain for all subsequent entries.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from boardroom.core.config import AuditConfig
from boardroom.governance.access import filter_audit_entries
from boardroom.governance.models import AuditLogEntry, AuditLogQuery

logger = logging.getLogger(__name__)


class ArchivedEntry:
    """Wrapper around an AuditLogEntry with chain hash metadata."""

    def __init__(self, entry: AuditLogEntry, previous_hash: str, entry_hash: str) -> None:
        self.entry = entry
        self.previous_hash = previous_hash
        self.entry_hash = entry_hash

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a dict suitable for JSONL output."""
        return {
            "previous_hash": self.previous_hash,
            "entry_hash": self.entry_hash,
            "entry": json.loads(self.entry.model_dump_json()),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ArchivedEntry:
        """Deserialize from a JSONL dict."""
        return cls(
            entry=AuditLogEntry(**data["entry"]),
            previous_hash=data["previous_hash"],
            entry_hash=data["entry_hash"],
        )


class AuditArchive:
    """Append-only, hash-chained store for access-audit entries.

    Args:
        config: AuditConfig instance. Defaults to AuditConfig() which reads
            from environment variables.
        log_file: Override the archive file name (default from config).
    """

    def __init__(
        self,
        config: AuditConfig | None = None,
        log_file: str | None = None,
    ) -> None:
        self._config = config or AuditConfig()
        self._log_dir = Path(self._config.log_dir)
        self._log_dir.mkdir(parents=True, exist_ok=True)
        self._log_path = self._log_dir / (log_file or self._config.log_file)
        self._last_hash: str = self._compute_genesis_hash()

        # If the archive already exists, recover the last hash from the chain
        if self._log_path.exists():
            self._recover_last_hash()

    @staticmethod
    def _compute_genesis_hash() -> str:
        """Return the genesis (seed) hash for the first entry in a chain."""
        return hashlib.sha256(b"boardroom-genesis").hexdigest()

    def _recover_last_hash(self) -> None:
        last_line: str | None = None
        with open(self._log_path) as fh:
            for line in fh:
                stripped = line.strip()
                if stripped:
                    last_line = stripped

        if last_line:
            self._last_hash = json.loads(last_line)["entry_hash"]

    def _compute_hash(self, previous_hash: str, entry_json: str) -> str:
        """Compute hash(previous_hash + entry_json) with the configured algorithm."""
        payload = (previous_hash + entry_json).encode("utf-8")
        return hashlib.new(self._config.hash_algorithm, payload).hexdigest()

    def append(self, entries: Iterable[AuditLogEntry]) -> list[ArchivedEntry]:
        """Chain and append a batch of entries, fsyncing once at the end.

        The in-memory chain head only advances after the batch is durable.
        A failed write truncates the file back to its previous length.
        """
        archived: list[ArchivedEntry] = []
        last_hash = self._last_hash
        for entry in entries:
            entry_hash = self._compute_hash(last_hash, entry.model_dump_json())
            archived.append(ArchivedEntry(entry=entry, previous_hash=last_hash, entry_hash=entry_hash))
            last_hash = entry_hash

        if not archived:
            return archived

        data = "".join(json.dumps(item.to_dict()) + "\n" for item in archived).encode("utf-8")
        # Unbuffered so a failed batch can be cut back to the last complete line.
        with open(self._log_path, "ab", buffering=0) as fh:
            offset = fh.seek(0, os.SEEK_END)
            try:
                view = memoryview(data)
                while view:
                    view = view[fh.write(view):]
                os.fsync(fh.fileno())
            except OSError:
                logger.error("Archive write to %s failed; truncating to %d bytes", self._log_path, offset)
                fh.truncate(offset)
                raise

        self._last_hash = last_hash
        logger.info("Archived %d audit entries to %s", len(archived), self._log_path)
        return archived

    def log(self, entry: AuditLogEntry) -> ArchivedEntry:
        """Append a single entry."""
        return self.append([entry])[0]

    def verify_chain(self) -> bool:
        """Verify the integrity of the entire hash chain.

        Reads all entries from the archive and recomputes each hash.
        Returns True if the chain is intact, False if any entry has been
        tampered with.
        """
        if not self._log_path.exists():
            return True  # Empty chain is trivially valid

        previous_hash = self._compute_genesis_hash()

        with open(self._log_path) as fh:
            for line in fh:
                stripped = line.strip()
                if not stripped:
                    continue

                data = json.loads(stripped)
                if data["previous_hash"] != previous_hash:
                    return False

                entry = AuditLogEntry(**data["entry"])
                expected_hash = self._compute_hash(previous_hash, entry.model_dump_json())
                if data["entry_hash"] != expected_hash:
                    return False

                previous_hash = data["entry_hash"]

        return True

    def read(self, query: AuditLogQuery | None = None) -> list[AuditLogEntry]:
        """Archived entries matching ``query``, newest first."""
        entries: list[AuditLogEntry] = []
        if self._log_path.exists():
            with open(self._log_path) as fh:
                for line in fh:
                    stripped = line.strip()
                    if stripped:
                        entries.append(ArchivedEntry.from_dict(json.loads(stripped)).entry)
        return filter_audit_entries(entries, query)

    @property
    def log_path(self) -> Path:
        """Path to the JSONL archive file."""
        return self._log_path

    @property
    def last_hash(self) -> str:
        """The hash of the most recent entry (or genesis hash if empty)."""
        return self._last_hash
