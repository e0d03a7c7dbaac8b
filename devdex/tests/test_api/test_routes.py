"""Tests for the FastAPI routes.

Builds the full app over in-memory SQLite and storage with a mocked LLM,
then drives it through TestClient. The client is used as a context
manager so the dispatcher's background runs share one event loop.
"""

import json
import time
import pytest
from unittest.mock import AsyncMock, MagicMock

from fastapi.testclient import TestClient
from llama_index.core.base.llms.types import (
    ChatMessage,
    ChatResponse,
    CompletionResponse,
    MessageRole,
)

from devdex.api.app import create_app, status_for_error
from devdex.core.analysis import AnalysisInvoker
from devdex.core.auth import AdminGate
from devdex.core.db import DatabaseManager
from devdex.core.gateway import LLMGateway
from devdex.core.exceptions import (
    ChatError,
    ConflictError,
    ContextTooLargeError,
    InvalidTransitionError,
    ProjectNotFoundError,
)
from devdex.core.ingestion import FileIngestionService
from devdex.core.jobs import AnalysisDispatcher, AnalysisJobService
from devdex.core.oracle import OracleSessionStore
from devdex.core.project import ProjectManager
from devdex.core.storage import InMemoryStorage
from devdex.setting import DevDexSettings

PASSWORD = "test-pass"


def _analysis_json(**overrides) -> str:
    payload = {
        "one_liner": "A demo app",
        "description": "A small demo application.",
        "main_features": ["Hot reload"],
        "tech_stack": ["Node"],
        "tags": ["demo"],
        "confidence_score": 0.8,
        "chains": [],
        "target_users": ["Developers"],
        "run_commands": ["npm run dev"],
        "key_decisions": [],
        "deploy_status": "local",
        "missing_info": [],
    }
    payload.update(overrides)
    return json.dumps(payload)


def _mock_llm():
    llm = MagicMock()
    llm.model = "gemini-2.5-flash"
    llm.acomplete = AsyncMock(return_value=CompletionResponse(text=_analysis_json()))
    llm.achat = AsyncMock(return_value=ChatResponse(
        message=ChatMessage(role=MessageRole.ASSISTANT, content="It is a Node app.")
    ))
    return llm


def _make_app(llm=None, max_input_chars=900_000):
    llm = llm or _mock_llm()
    settings = DevDexSettings()
    settings.analysis.auto_run = False
    db = DatabaseManager("sqlite://")
    db.create_tables()
    storage = InMemoryStorage()
    ingestion = FileIngestionService(db, storage)
    job_service = AnalysisJobService(db, ingestion, AnalysisInvoker(llm=llm))
    oracle_store = OracleSessionStore(llm, ingestion, max_input_chars=max_input_chars)
    return create_app(
        settings=settings,
        db_manager=db,
        project_manager=ProjectManager(db),
        ingestion=ingestion,
        job_service=job_service,
        dispatcher=AnalysisDispatcher(job_service),
        oracle_store=oracle_store,
        admin_gate=AdminGate(PASSWORD),
        llm=llm,
        storage=storage,
    )


def _login(client):
    resp = client.post("/api/auth/login", json={"password": PASSWORD})
    assert resp.status_code == 200


def _new_project(client) -> str:
    resp = client.post("/api/projects")
    assert resp.status_code == 201
    return resp.json()["project_id"]


def _upload(client, pid, *files, analyze=False):
    resp = client.post(
        f"/api/projects/{pid}/files",
        params={"analyze": str(analyze).lower()},
        files=[("files", (name, content, "text/plain")) for name, content in files],
    )
    assert resp.status_code == 200
    return resp.json()


def _wait_for_status(client, pid, statuses, timeout=5.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        job = client.get(f"/api/projects/{pid}/analysis/latest").json()
        if job.get("status") in statuses:
            return job
        time.sleep(0.02)
    raise AssertionError(f"Job did not reach {statuses}")


# ── Tests: Error mapping ─────────────────────────────────────────────────


class TestStatusForError:

    @pytest.mark.parametrize("exc, code", [
        (ProjectNotFoundError("p1"), 404),
        (InvalidTransitionError("j1", "done", "retry"), 409),
        (ConflictError("busy"), 409),
        (ContextTooLargeError("big"), 413),
        (ChatError("down"), 502),
    ])
    def test_mapping(self, exc, code):
        assert status_for_error(exc) == code


# ── Tests: Auth ──────────────────────────────────────────────────────────


class TestAuthRoutes:

    def test_login_status_logout(self):
        with TestClient(_make_app()) as client:
            assert client.get("/api/auth/status").json()["authenticated"] is False

            _login(client)
            status = client.get("/api/auth/status").json()
            assert status["authenticated"] is True
            assert status["expires_at"] is not None

            client.post("/api/auth/logout")
            assert client.get("/api/auth/status").json()["authenticated"] is False

    def test_wrong_password(self):
        with TestClient(_make_app()) as client:
            resp = client.post("/api/auth/login", json={"password": "nope"})
            assert resp.status_code == 401

    def test_writes_require_login(self):
        with TestClient(_make_app()) as client:
            assert client.post("/api/projects").status_code == 401
            assert client.get("/api/admin/export").status_code == 401

    def test_health(self):
        with TestClient(_make_app()) as client:
            assert client.get("/api/health").json()["status"] == "ok"


# ── Tests: Projects ──────────────────────────────────────────────────────


class TestProjectRoutes:

    def test_create_save_get_list(self):
        with TestClient(_make_app()) as client:
            _login(client)
            pid = _new_project(client)

            resp = client.put(f"/api/projects/{pid}", json={"name": "Catalog", "status": "Paused"})
            assert resp.status_code == 200
            assert resp.json()["name"] == "Catalog"

            assert client.get(f"/api/projects/{pid}").json()["status"] == "Paused"
            assert [p["project_id"] for p in client.get("/api/projects").json()] == [pid]

    def test_invalid_status_is_400(self):
        with TestClient(_make_app()) as client:
            _login(client)
            pid = _new_project(client)
            resp = client.put(f"/api/projects/{pid}", json={"status": "abandoned-ish"})
            assert resp.status_code == 400

    def test_unknown_project_404(self):
        with TestClient(_make_app()) as client:
            assert client.get("/api/projects/not-a-uuid").status_code == 404

    def test_upload_reports_each_file(self):
        with TestClient(_make_app()) as client:
            _login(client)
            pid = _new_project(client)

            body = _upload(client, pid, ("README.md", b"# Demo"), ("notes.txt", b"notes"))

            assert body["files_ingested"] == 2
            assert body["files_failed"] == 0
            assert body["job"] is None
            assert len(client.get(f"/api/projects/{pid}/files").json()) == 2

    def test_upload_unknown_project(self):
        with TestClient(_make_app()) as client:
            _login(client)
            resp = client.post(
                "/api/projects/00000000-0000-0000-0000-000000000000/files",
                files=[("files", ("a.txt", b"x", "text/plain"))],
            )
            assert resp.status_code == 404


# ── Tests: Analysis ──────────────────────────────────────────────────────


class TestAnalysisRoutes:

    def test_submit_runs_in_background(self):
        with TestClient(_make_app()) as client:
            _login(client)
            pid = _new_project(client)
            _upload(client, pid, ("README.md", b"# Demo"))

            resp = client.post(f"/api/projects/{pid}/analysis", json={})
            assert resp.status_code == 202
            assert resp.json()["status"] == "queued"

            job = _wait_for_status(client, pid, {"done", "error"})
            assert job["status"] == "done"
            project = client.get(f"/api/projects/{pid}").json()
            assert project["name"] == "README"
            assert project["stack_ai"] == ["Node"]

    def test_submit_without_files_is_400(self):
        with TestClient(_make_app()) as client:
            _login(client)
            pid = _new_project(client)
            resp = client.post(f"/api/projects/{pid}/analysis", json={})
            assert resp.status_code == 400

    def test_retry_after_failure(self):
        llm = _mock_llm()
        llm.acomplete = AsyncMock(side_effect=[
            MagicMock(text="not json"),
            MagicMock(text=_analysis_json()),
        ])
        with TestClient(_make_app(llm)) as client:
            _login(client)
            pid = _new_project(client)
            _upload(client, pid, ("README.md", b"# Demo"))
            client.post(f"/api/projects/{pid}/analysis", json={})

            failed = _wait_for_status(client, pid, {"done", "error"})
            assert failed["status"] == "error"
            assert client.get(f"/api/projects/{pid}").json()["stack_ai"] == []

            resp = client.post(f"/api/analysis/{failed['job_id']}/retry", params={"wait": "true"})
            assert resp.status_code == 200
            assert resp.json()["status"] == "done"
            assert resp.json()["job_id"] == failed["job_id"]

    def test_retry_of_done_job_is_409(self):
        with TestClient(_make_app()) as client:
            _login(client)
            pid = _new_project(client)
            _upload(client, pid, ("README.md", b"# Demo"))
            client.post(f"/api/projects/{pid}/analysis", json={})
            job = _wait_for_status(client, pid, {"done", "error"})

            resp = client.post(f"/api/analysis/{job['job_id']}/retry")
            assert resp.status_code == 409

    def test_unknown_job_404(self):
        with TestClient(_make_app()) as client:
            assert client.get("/api/analysis/not-a-job").status_code == 404


# ── Tests: Oracle ────────────────────────────────────────────────────────


class TestOracleRoutes:

    def _session(self, client) -> str:
        _login(client)
        pid = _new_project(client)
        _upload(client, pid, ("README.md", b"# Demo app built with Node"))
        resp = client.post("/api/oracle/sessions", json={"project_id": pid})
        assert resp.status_code == 201
        return resp.json()["session_id"]

    def test_chat_and_history(self):
        with TestClient(_make_app()) as client:
            sid = self._session(client)

            resp = client.post(f"/api/oracle/sessions/{sid}/messages", json={"message": "What is it?"})
            assert resp.status_code == 200
            assert resp.json()["reply"] == "It is a Node app."
            assert resp.json()["turns"] == 2

            history = client.get(f"/api/oracle/sessions/{sid}").json()["history"]
            assert [t["role"] for t in history] == ["user", "model"]

    def test_chat_failure_is_502_and_history_unchanged(self):
        llm = _mock_llm()
        llm.achat = AsyncMock(side_effect=ConnectionError("unreachable"))
        with TestClient(_make_app(llm)) as client:
            sid = self._session(client)

            resp = client.post(f"/api/oracle/sessions/{sid}/messages", json={"message": "Hi"})
            assert resp.status_code == 502
            assert client.get(f"/api/oracle/sessions/{sid}").json()["history"] == []

    def test_context_too_large_is_413(self):
        with TestClient(_make_app(max_input_chars=10)) as client:
            sid = self._session(client)
            resp = client.post(f"/api/oracle/sessions/{sid}/messages", json={"message": "Hi"})
            assert resp.status_code == 413

    def test_empty_message_is_400(self):
        with TestClient(_make_app()) as client:
            sid = self._session(client)
            resp = client.post(f"/api/oracle/sessions/{sid}/messages", json={"message": "  "})
            assert resp.status_code == 400

    def test_close_session(self):
        with TestClient(_make_app()) as client:
            sid = self._session(client)
            assert client.delete(f"/api/oracle/sessions/{sid}").status_code == 200
            assert client.get(f"/api/oracle/sessions/{sid}").status_code == 404
            assert client.delete(f"/api/oracle/sessions/{sid}").status_code == 404


# ── Tests: Admin ─────────────────────────────────────────────────────────


class TestAdminRoutes:

    def test_export_then_import_into_fresh_app(self):
        with TestClient(_make_app()) as client:
            _login(client)
            pid = _new_project(client)
            client.put(f"/api/projects/{pid}", json={"name": "Catalog"})
            _upload(client, pid, ("README.md", b"# Demo"))
            exported = client.get("/api/admin/export").json()

        assert len(exported["projects"]) == 1
        assert len(exported["project_files"]) == 1

        with TestClient(_make_app()) as client:
            _login(client)
            resp = client.post("/api/admin/import", json={"payload": exported})
            assert resp.status_code == 200
            report = resp.json()
            assert report["projects_imported"] == 1
            assert report["files_imported"] == 1
            assert report["errors"] == []
            assert client.get(f"/api/projects/{pid}").json()["name"] == "Catalog"

    def test_malformed_import_is_400(self):
        with TestClient(_make_app()) as client:
            _login(client)
            resp = client.post("/api/admin/import", json={"payload": {"projects": "nope"}})
            assert resp.status_code == 400

    def test_llm_metrics(self):
        with TestClient(_make_app(LLMGateway(_mock_llm()))) as client:
            _login(client)
            pid = _new_project(client)
            _upload(client, pid, ("README.md", b"# Demo"))
            client.post(f"/api/projects/{pid}/analysis", json={})
            _wait_for_status(client, pid, {"done", "error"})

            metrics = client.get("/api/admin/llm/metrics").json()
            assert metrics["calls_by_purpose"] == {"analysis": 1}

            client.post("/api/admin/llm/metrics/reset")
            assert client.get("/api/admin/llm/metrics").json()["total_calls"] == 0
