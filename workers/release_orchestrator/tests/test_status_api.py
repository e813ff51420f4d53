"""Tests for the FastAPI releases router."""
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from app.config import Settings
from app.main import app
from app.routers import releases
from release_orchestrator.runner import ReleaseRun

from conftest import PINNED_REF, FakeCommands, FakeFetcher, RecordingClient


@pytest.fixture
def api(tmp_path: Path, build_settings: Path):
    cfg = Settings(
        GITHUB_RUN_NUMBER=9,
        GITHUB_REF="refs/heads/main",
        BUILD_SETTINGS_FILE=str(build_settings),
        SOURCE_REF_FILE=str(tmp_path / "llvm-commit.txt"),
        WORKSPACE_ROOT=str(tmp_path / "ws"),
        ARTIFACTS_PATH=str(tmp_path / "artifacts"),
        RUN_TIMEOUT=30.0,
    )
    clients = []

    def factory(run_cfg: Settings, request: releases.RunRequest) -> ReleaseRun:
        client = RecordingClient()
        clients.append(client)
        return ReleaseRun(
            run_cfg,
            client,
            source_ref=request.source_ref or PINNED_REF,
            commands=FakeCommands(),
            fetcher=FakeFetcher(),
        )

    app.dependency_overrides[releases.get_settings] = lambda: cfg
    app.dependency_overrides[releases.get_run_factory] = lambda: factory
    with TestClient(app) as client:
        client.published = clients
        yield client
    app.dependency_overrides.clear()


def _start_and_wait(api, **body) -> str:
    resp = api.post("/releases/runs", json=body)
    assert resp.status_code == 202, resp.text
    run_id = resp.json()["run_id"]
    entry = releases.registry.get(run_id)
    entry.thread.join(timeout=30)
    assert entry.done
    return run_id


class TestReleasesApi:

    def test_health(self, api):
        resp = api.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "healthy"
        assert isinstance(resp.json()["runs_in_flight"], int)

    def test_successful_run(self, api):
        run_id = _start_and_wait(api)

        resp = api.get(f"/releases/runs/{run_id}")
        assert resp.status_code == 200
        data = resp.json()
        assert data["done"] is True
        assert data["exit_code"] == 0
        assert data["report"]["state"] == "SUCCEEDED"
        assert data["report"]["run_number"] == 9
        assert len(data["report"]["manifest"]) == 3
        assert api.published[-1].calls[0]["tag"] == "r9"

        badge = api.get(f"/releases/runs/{run_id}/badge").json()
        assert badge == {"schemaVersion": 1, "label": "release", "message": "succeeded", "color": "brightgreen"}

    def test_draft_run_badge(self, api):
        run_id = _start_and_wait(api, ref="refs/heads/dev", run_number=10)
        badge = api.get(f"/releases/runs/{run_id}/badge").json()
        assert badge["message"] == "draft published"
        assert badge["color"] == "yellow"

    def test_events_filtered_by_platform(self, api):
        run_id = _start_and_wait(api)
        events = api.get(f"/releases/runs/{run_id}/events", params={"platform": "windows"}).json()
        assert events
        assert {e["platform"] for e in events} == {"windows"}

    def test_run_listed(self, api):
        run_id = _start_and_wait(api)
        ids = [r["report"]["run_id"] for r in api.get("/releases/runs").json()]
        assert run_id in ids

    def test_unknown_platform_rejected(self, api):
        resp = api.post("/releases/runs", json={"platforms": ["linux", "solaris"]})
        assert resp.status_code == 400

    def test_duplicate_platforms_rejected(self, api):
        before = len(releases.registry.list())
        resp = api.post("/releases/runs", json={"platforms": ["linux", "linux"]})
        assert resp.status_code == 400
        assert "duplicate platform" in resp.json()["detail"]
        assert len(releases.registry.list()) == before

    def test_crashed_run_reports_failure(self, api, monkeypatch):
        def explode(self, timeout=None):
            raise RuntimeError("executor gone")
        monkeypatch.setattr(ReleaseRun, "execute", explode)

        run_id = _start_and_wait(api)
        data = api.get(f"/releases/runs/{run_id}").json()
        assert data["done"] is True
        assert data["exit_code"] == 1
        assert data["report"]["state"] == "FAILED"
        assert data["report"]["error"] == "RuntimeError: executor gone"

    def test_unknown_run(self, api):
        assert api.get("/releases/runs/nope").status_code == 404
        assert api.get("/releases/runs/nope/badge").status_code == 404

    def test_cancel_finished_run_conflicts(self, api):
        run_id = _start_and_wait(api)
        assert api.post(f"/releases/runs/{run_id}/cancel").status_code == 409
