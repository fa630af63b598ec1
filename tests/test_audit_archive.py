"""Tests for the hash-chained access audit archive."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from boardroom.core.config import AuditConfig
from boardroom.governance.access import AccessControl
from boardroom.governance.archive import AuditArchive
from boardroom.governance.models import AuditLogEntry, AuditLogQuery


@pytest.fixture()
def archive(tmp_path: Path) -> AuditArchive:
    return AuditArchive(AuditConfig(log_dir=str(tmp_path / "audit")))


def _entry(role: str = "cto", path: str = "a.py", allowed: bool = True) -> AuditLogEntry:
    return AuditLogEntry(
        agent_role=role,
        target_path=path,
        allowed=allowed,
        reason="Access permitted" if allowed else "denied",
    )


class TestAuditArchive:
    def test_empty_archive_is_valid(self, archive: AuditArchive) -> None:
        assert archive.verify_chain() is True
        assert archive.read() == []

    def test_entries_are_chained(self, archive: AuditArchive) -> None:
        first = archive.log(_entry())
        second = archive.log(_entry(path="b.py"))
        assert second.previous_hash == first.entry_hash
        assert archive.last_hash == second.entry_hash
        assert archive.verify_chain() is True

    def test_tampering_breaks_chain(self, archive: AuditArchive) -> None:
        archive.append([_entry(), _entry(path="board.yaml", allowed=False)])
        lines = archive.log_path.read_text().splitlines()
        record = json.loads(lines[1])
        record["entry"]["allowed"] = True
        lines[1] = json.dumps(record)
        archive.log_path.write_text("\n".join(lines) + "\n")
        assert archive.verify_chain() is False

    def test_chain_head_recovered_on_reopen(self, tmp_path: Path) -> None:
        config = AuditConfig(log_dir=str(tmp_path / "audit"))
        first = AuditArchive(config)
        first.append([_entry(), _entry(path="b.py")])

        reopened = AuditArchive(config)
        assert reopened.last_hash == first.last_hash
        reopened.log(_entry(path="c.py"))
        assert reopened.verify_chain() is True

    def test_empty_batch_is_noop(self, archive: AuditArchive) -> None:
        assert archive.append([]) == []
        assert not archive.log_path.exists()

    def test_read_applies_query(self, archive: AuditArchive) -> None:
        archive.append([_entry(), _entry(role="ceo", path="board.yaml", allowed=False)])
        denied = archive.read(AuditLogQuery(allowed=False))
        assert [e.target_path for e in denied] == ["board.yaml"]

    def test_failed_append_truncates(self, archive: AuditArchive, monkeypatch: pytest.MonkeyPatch) -> None:
        archive.log(_entry())
        before = archive.log_path.read_bytes()
        head = archive.last_hash

        def boom(_fd: int) -> None:
            raise OSError("disk full")

        monkeypatch.setattr("boardroom.governance.archive.os.fsync", boom)
        with pytest.raises(OSError):
            archive.append([_entry(path="b.py"), _entry(path="c.py")])

        assert archive.log_path.read_bytes() == before
        assert archive.last_hash == head
        assert archive.verify_chain() is True

        monkeypatch.undo()
        archive.log(_entry(path="d.py"))
        assert archive.verify_chain() is True
        assert [e.target_path for e in archive.read()] == ["d.py", "a.py"]


class TestFlush:
    def test_flush_moves_entries_to_archive(self, board, tmp_path: Path, archive: AuditArchive) -> None:
        access = AccessControl.from_board(board, tmp_path)
        access.check_write_access("cto", "src/app/main.py")
        access.check_write_access("ceo", "board.yaml")

        assert access.flush_to(archive) == 2
        assert access.export_audit_log() == []
        assert len(archive.read()) == 2
        assert archive.verify_chain() is True

        access.check_write_access("ceo", "CONSTITUTION.md")
        assert access.flush_to(archive) == 1
        assert len(archive.read()) == 3
        assert archive.verify_chain() is True
