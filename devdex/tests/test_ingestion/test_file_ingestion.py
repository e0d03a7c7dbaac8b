"""Tests for FileIngestionService against in-memory SQLite and storage.

Tests cover:
- Kind classification from file names
- Blob + record persistence with distinct storage paths
- Lenient fallback to inline-only content when storage fails
- Strict mode failing only the affected file
- Per-file outcomes without batch rollback
- Content resolution for analysis (inline first, storage second)
"""

import asyncio
import pytest
from unittest.mock import AsyncMock
from uuid import uuid4

from devdex.core.auth import AuthContext
from devdex.core.db import DatabaseManager, ProjectFile
from devdex.core.exceptions import ProjectNotFoundError, StorageError
from devdex.core.ingestion import FileIngestionService, IncomingFile, classify_file_kind
from devdex.core.project import ProjectManager
from devdex.core.storage import InMemoryStorage


# ── Fixtures ──────────────────────────────────────────────────────────────


def _make_db() -> DatabaseManager:
    db = DatabaseManager("sqlite://")
    db.create_tables()
    return db


def _make_project(db) -> str:
    return ProjectManager(db).create_empty_project(AuthContext.admin())["project_id"]


def _failing_storage():
    storage = InMemoryStorage()
    storage.put = AsyncMock(side_effect=StorageError("bucket unavailable"))
    return storage


# ── Tests: Classification ────────────────────────────────────────────────


class TestClassifyFileKind:

    @pytest.mark.parametrize("name,kind", [
        ("README.md", "readme"),
        ("readme.txt", "readme"),
        ("ARCHITECTURE.md", "docs"),
        ("docs.txt", "docs"),
        ("screenshot.PNG", "image"),
        ("logo.svg", "image"),
        ("package.json", "config"),
        ("Makefile", "config"),
    ])
    def test_kinds(self, name, kind):
        assert classify_file_kind(name) == kind

    def test_readme_wins_over_markdown(self):
        assert classify_file_kind("Readme.MD") == "readme"


# ── Tests: Ingest ────────────────────────────────────────────────────────


class TestIngest:

    def test_stores_blob_and_record(self):
        db = _make_db()
        storage = InMemoryStorage()
        service = FileIngestionService(db, storage)
        pid = _make_project(db)

        result = asyncio.run(service.ingest(pid, [IncomingFile("README.md", b"# Demo\nnpm run dev")]))

        assert result.files_ingested == 1
        assert result.files_failed == 0
        record = result.outcomes[0].file
        assert record["kind"] == "readme"
        assert record["bucket"] == "project-files"
        assert record["path"].startswith(f"{pid}/")
        assert record["path"].endswith("-README.md")
        assert record["has_inline_content"] is True
        stored = asyncio.run(storage.get("project-files", record["path"]))
        assert stored == b"# Demo\nnpm run dev"

    def test_same_name_gets_distinct_paths(self):
        db = _make_db()
        service = FileIngestionService(db, InMemoryStorage())
        pid = _make_project(db)

        result = asyncio.run(service.ingest(pid, [
            IncomingFile("README.md", b"one"),
            IncomingFile("README.md", b"two"),
        ]))

        paths = [o.file["path"] for o in result.outcomes]
        assert len(set(paths)) == 2

    def test_image_has_no_inline_content(self):
        db = _make_db()
        service = FileIngestionService(db, InMemoryStorage())
        pid = _make_project(db)

        result = asyncio.run(service.ingest(pid, [IncomingFile("logo.png", b"\x89PNG")]))

        assert result.outcomes[0].file["kind"] == "image"
        assert result.outcomes[0].file["has_inline_content"] is False

    def test_unknown_project_raises(self):
        db = _make_db()
        service = FileIngestionService(db, InMemoryStorage())

        with pytest.raises(ProjectNotFoundError):
            asyncio.run(service.ingest(str(uuid4()), [IncomingFile("README.md", b"x")]))

        with db.get_session() as session:
            assert session.query(ProjectFile).count() == 0

    def test_lenient_storage_failure_keeps_inline(self):
        db = _make_db()
        service = FileIngestionService(db, _failing_storage())
        pid = _make_project(db)

        result = asyncio.run(service.ingest(pid, [IncomingFile("README.md", b"hello")]))

        outcome = result.outcomes[0]
        assert outcome.ok is True
        assert outcome.warning
        assert outcome.file["path"] is None
        contexts = asyncio.run(service.load_contexts(result.file_ids))
        assert contexts[0].content == "hello"

    def test_strict_storage_failure_fails_file(self):
        db = _make_db()
        service = FileIngestionService(db, _failing_storage(), storage_required=True)
        pid = _make_project(db)

        result = asyncio.run(service.ingest(pid, [IncomingFile("README.md", b"hello")]))

        assert result.files_failed == 1
        assert "Storage write failed" in result.outcomes[0].error

    def test_image_storage_failure_fails_even_when_lenient(self):
        db = _make_db()
        service = FileIngestionService(db, _failing_storage())
        pid = _make_project(db)

        result = asyncio.run(service.ingest(pid, [IncomingFile("logo.png", b"\x89PNG")]))

        assert result.outcomes[0].ok is False

    def test_partial_batch_not_rolled_back(self):
        db = _make_db()
        storage = InMemoryStorage()
        service = FileIngestionService(db, storage, storage_required=True, max_file_size_mb=1)
        pid = _make_project(db)

        result = asyncio.run(service.ingest(pid, [
            IncomingFile("README.md", b"first"),
            IncomingFile("big.json", b"x" * (1024 * 1024 + 1)),
            IncomingFile("package.json", b"{}"),
        ]))

        assert [o.ok for o in result.outcomes] == [True, False, True]
        assert "too large" in result.outcomes[1].error
        assert len(result.file_ids) == 2
        with db.get_session() as session:
            assert session.query(ProjectFile).count() == 2

    def test_unnamed_file_fails(self):
        db = _make_db()
        service = FileIngestionService(db, InMemoryStorage())
        pid = _make_project(db)

        result = asyncio.run(service.ingest(pid, [IncomingFile("", b"data")]))

        assert result.outcomes[0].ok is False


# ── Tests: Content Resolution ────────────────────────────────────────────


class TestLoadContexts:

    def test_preserves_requested_order(self):
        db = _make_db()
        service = FileIngestionService(db, InMemoryStorage())
        pid = _make_project(db)
        result = asyncio.run(service.ingest(pid, [
            IncomingFile("a.txt", b"alpha"),
            IncomingFile("b.txt", b"beta"),
        ]))

        contexts = asyncio.run(service.load_contexts(list(reversed(result.file_ids))))

        assert [c.name for c in contexts] == ["b.txt", "a.txt"]

    def test_falls_back_to_storage(self):
        db = _make_db()
        storage = InMemoryStorage()
        service = FileIngestionService(db, storage)
        pid = _make_project(db)
        result = asyncio.run(service.ingest(pid, [IncomingFile("package.json", b'{"name": "demo"}')]))

        # Drop the inline cache so only the blob remains
        with db.get_session() as session:
            session.query(ProjectFile).update({ProjectFile.content: None})

        contexts = asyncio.run(service.load_contexts(result.file_ids))
        assert contexts[0].content == '{"name": "demo"}'

    def test_skips_unreadable_files(self):
        db = _make_db()
        service = FileIngestionService(db, InMemoryStorage())
        pid = _make_project(db)
        result = asyncio.run(service.ingest(pid, [
            IncomingFile("logo.png", b"\x89PNG"),
            IncomingFile("README.md", b"hi"),
        ]))

        contexts = asyncio.run(service.load_contexts(result.file_ids + ["not-a-uuid", str(uuid4())]))

        assert [c.name for c in contexts] == ["README.md"]

    def test_project_contexts_oldest_first(self):
        db = _make_db()
        service = FileIngestionService(db, InMemoryStorage())
        pid = _make_project(db)
        asyncio.run(service.ingest(pid, [IncomingFile("first.txt", b"1")]))
        asyncio.run(service.ingest(pid, [IncomingFile("second.txt", b"2")]))

        contexts = asyncio.run(service.load_project_contexts(pid))

        assert [c.name for c in contexts] == ["first.txt", "second.txt"]
