"""Tests for OracleSession and OracleSessionStore.

Tests cover:
- Fixed context window built once from truncated files
- Full history re-sent on every turn, replies appended as model turns
- FIFO ordering under concurrent sends
- Failed turns leave history unchanged
- Context-size limit errors
- Store lookup, close and idle expiry
"""

import asyncio
import pytest
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

from llama_index.core.base.llms.types import MessageRole

from devdex.core.analysis import FileContext
from devdex.core.auth import AuthContext
from devdex.core.db import DatabaseManager
from devdex.core.db.models import utcnow
from devdex.core.exceptions import ChatError, ContextTooLargeError, SessionNotFoundError
from devdex.core.ingestion import FileIngestionService, IncomingFile
from devdex.core.oracle import OracleSession, OracleSessionStore
from devdex.core.project import ProjectManager
from devdex.core.storage import InMemoryStorage


# ── Fixtures ──────────────────────────────────────────────────────────────


def _reply(text):
    return MagicMock(message=MagicMock(content=text))


def _mock_llm(*replies, side_effect=None):
    llm = MagicMock()
    if side_effect is not None:
        llm.achat = AsyncMock(side_effect=side_effect)
    else:
        llm.achat = AsyncMock(side_effect=[_reply(r) for r in replies])
    return llm


def _files():
    return [FileContext(name="a.txt", content="hello")]


# ── Tests: Context Window ────────────────────────────────────────────────


class TestContextWindow:

    def test_built_from_truncated_files(self):
        files = [
            FileContext(name="a.txt", content="x" * 30),
            FileContext(name="b.txt", content="short"),
        ]
        session = OracleSession.create(files, _mock_llm(), max_file_chars=10)

        assert "x" * 10 in session.context_window
        assert "x" * 11 not in session.context_window
        assert "--- START OF FILE: b.txt ---" in session.context_window
        assert session.file_names == ["a.txt", "b.txt"]

    def test_context_included_in_system_prompt(self):
        session = OracleSession.create(_files(), _mock_llm())
        assert "hello" in session.system_prompt


# ── Tests: Send ──────────────────────────────────────────────────────────


class TestSend:

    def test_reply_appended_after_user_turn(self):
        """Context reaches the capability and the reply lands as a model turn."""
        llm = _mock_llm("It says hello.")
        session = OracleSession.create(_files(), llm)

        reply = asyncio.run(session.send("what does a.txt say?"))

        assert reply == "It says hello."
        messages = llm.achat.await_args.args[0]
        assert messages[0].role == MessageRole.SYSTEM
        assert "hello" in messages[0].content
        assert messages[-1].role == MessageRole.USER
        assert messages[-1].content == "what does a.txt say?"
        assert [(t.role, t.content) for t in session.history] == [
            ("user", "what does a.txt say?"),
            ("model", "It says hello."),
        ]

    def test_whole_history_sent_each_turn(self):
        llm = _mock_llm("one", "two")
        session = OracleSession.create(_files(), llm)

        asyncio.run(session.send("first"))
        asyncio.run(session.send("second"))

        messages = llm.achat.await_args.args[0]
        assert [m.content for m in messages[1:]] == ["first", "one", "second"]
        assert [m.role for m in messages[1:]] == [
            MessageRole.USER, MessageRole.ASSISTANT, MessageRole.USER,
        ]

    def test_concurrent_sends_are_fifo(self):
        async def slow_chat(messages):
            last = messages[-1].content
            await asyncio.sleep(0.02 if last == "first" else 0)
            return _reply(f"re: {last}")

        llm = MagicMock()
        llm.achat = slow_chat
        session = OracleSession.create(_files(), llm)

        async def scenario():
            return await asyncio.gather(
                session.send("first"), session.send("second"), session.send("third"),
            )

        replies = asyncio.run(scenario())

        assert replies == ["re: first", "re: second", "re: third"]
        assert [t.content for t in session.history] == [
            "first", "re: first", "second", "re: second", "third", "re: third",
        ]

    def test_capability_failure_leaves_history_unchanged(self):
        llm = _mock_llm(side_effect=[_reply("ok"), ConnectionError("unreachable")])
        session = OracleSession.create(_files(), llm)
        asyncio.run(session.send("first"))
        before = session.history

        with pytest.raises(ChatError, match="unreachable"):
            asyncio.run(session.send("second"))

        assert session.history == before

    def test_empty_reply_raises(self):
        session = OracleSession.create(_files(), _mock_llm("   "))

        with pytest.raises(ChatError, match="Empty response"):
            asyncio.run(session.send("hi"))
        assert session.history == []

    def test_resend_after_failure(self):
        llm = _mock_llm(side_effect=[ConnectionError("down"), _reply("back")])
        session = OracleSession.create(_files(), llm)

        with pytest.raises(ChatError):
            asyncio.run(session.send("hi"))
        assert asyncio.run(session.send("hi")) == "back"
        assert [t.content for t in session.history] == ["hi", "back"]

    def test_timeout_raises_chat_error(self):
        async def never(messages):
            await asyncio.sleep(1)

        llm = MagicMock()
        llm.achat = never
        session = OracleSession.create(_files(), llm, timeout=0.01)

        with pytest.raises(ChatError, match="timed out"):
            asyncio.run(session.send("hi"))

    def test_empty_message_rejected(self):
        session = OracleSession.create(_files(), _mock_llm())
        with pytest.raises(ValueError):
            asyncio.run(session.send("  "))


# ── Tests: Context Size ──────────────────────────────────────────────────


class TestContextTooLarge:

    def test_local_limit(self):
        llm = _mock_llm("unused")
        session = OracleSession.create(_files(), llm, max_input_chars=50)

        with pytest.raises(ContextTooLargeError):
            asyncio.run(session.send("x" * 100))

        llm.achat.assert_not_called()
        assert session.history == []

    def test_provider_limit_error(self):
        llm = _mock_llm(side_effect=ValueError("Request exceeds maximum context length"))
        session = OracleSession.create(_files(), llm)

        with pytest.raises(ContextTooLargeError):
            asyncio.run(session.send("hi"))
        assert session.history == []

    def test_is_a_chat_error(self):
        assert issubclass(ContextTooLargeError, ChatError)


# ── Tests: Store ─────────────────────────────────────────────────────────


class TestOracleSessionStore:

    def test_create_get_close(self):
        store = OracleSessionStore(_mock_llm())
        session = store.create(_files(), project_id="p1")

        assert store.get(session.session_id) is session
        assert store.close(session.session_id) is True
        assert store.close(session.session_id) is False
        with pytest.raises(SessionNotFoundError):
            store.get(session.session_id)

    def test_idle_sessions_expire(self):
        store = OracleSessionStore(_mock_llm(), idle_minutes=30)
        session = store.create(_files())
        session.last_active_at = utcnow() - timedelta(minutes=31)

        assert store.prune_expired() == 1
        assert len(store) == 0

    def test_create_for_project_reads_stored_files(self):
        db = DatabaseManager("sqlite://")
        db.create_tables()
        ingestion = FileIngestionService(db, InMemoryStorage())
        pid = ProjectManager(db).create_empty_project(AuthContext.admin())["project_id"]
        asyncio.run(ingestion.ingest(pid, [IncomingFile("a.txt", b"hello")]))
        store = OracleSessionStore(_mock_llm(), ingestion=ingestion)

        session = asyncio.run(store.create_for_project(pid))

        assert session.project_id == pid
        assert "hello" in session.context_window

    def test_create_for_project_skips_files_of_other_projects(self):
        db = DatabaseManager("sqlite://")
        db.create_tables()
        ingestion = FileIngestionService(db, InMemoryStorage())
        pm = ProjectManager(db)
        pid = pm.create_empty_project(AuthContext.admin())["project_id"]
        other = pm.create_empty_project(AuthContext.admin())["project_id"]
        own = asyncio.run(ingestion.ingest(pid, [IncomingFile("a.txt", b"own notes")])).file_ids
        foreign = asyncio.run(ingestion.ingest(other, [IncomingFile("b.txt", b"foreign notes")])).file_ids
        store = OracleSessionStore(_mock_llm(), ingestion=ingestion)

        session = asyncio.run(store.create_for_project(pid, own + foreign))

        assert session.file_names == ["a.txt"]
        assert "own notes" in session.context_window
        assert "foreign notes" not in session.context_window
