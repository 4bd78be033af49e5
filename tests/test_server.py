"""Tests for the HTTP API and the SSE stream."""

import asyncio
import json

import httpx
import pytest
import pytest_asyncio
import uvicorn

from mongrate.agent.events import TextDelta, TurnComplete
from mongrate.app import MongrateApp
from mongrate.core.job import JobConfig, JobStatus
from mongrate.stream.events import LogEvent
from mongrate.viewer.server import create_api


@pytest.fixture
def app(config, store, sessions, broadcaster, orchestrator) -> MongrateApp:
    return MongrateApp(
        config=config,
        store=store,
        sessions=sessions,
        broadcaster=broadcaster,
        orchestrator=orchestrator,
    )


@pytest_asyncio.fixture
async def base_url(app):
    config = uvicorn.Config(
        create_api(app, heartbeat_interval=0.05),
        host="127.0.0.1",
        port=0,
        log_level="warning",
        timeout_graceful_shutdown=1,
    )
    server = uvicorn.Server(config)
    task = asyncio.create_task(server.serve())
    while not server.started:
        if task.done():
            task.result()
        await asyncio.sleep(0.01)
    port = server.servers[0].sockets[0].getsockname()[1]

    yield f"http://127.0.0.1:{port}"

    await app.orchestrator.wait_idle()
    server.should_exit = True
    await task


@pytest_asyncio.fixture
async def client(base_url):
    async with httpx.AsyncClient(base_url=base_url, timeout=5) as client:
        yield client


CREATE_BODY = {
    "name": "shop",
    "config": {
        "repoUrl": "https://github.com/acme/shop",
        "postgresUrl": "postgres://app:secret@db/shop",
        "mongoUrl": "mongodb://localhost:27017/shop",
        "githubToken": "ghp_secret",
    },
}


async def _create(client) -> str:
    response = await client.post("/api/jobs", json=CREATE_BODY)
    assert response.status_code == 201
    return response.json()["job"]["id"]


class TestJobsApi:
    """Tests for the job CRUD routes."""

    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/api/health")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"
        assert response.json()["activeSessions"] == 0

    @pytest.mark.asyncio
    async def test_create_job_masks_secrets(self, client, store):
        response = await client.post(
            "/api/jobs", json=CREATE_BODY, headers={"Origin": "http://localhost:3000"}
        )

        assert response.status_code == 201
        assert response.headers["access-control-allow-origin"] == "*"
        job = response.json()["job"]
        assert job["id"].startswith("job-")
        assert job["status"] == "pending"
        assert job["config"]["postgresUrl"] == "***hidden***"
        assert job["config"]["githubToken"] is True
        assert job["config"]["branch"] == "main"

        stored = await store.get(job["id"])
        assert stored.config.github_token == "ghp_secret"

    @pytest.mark.asyncio
    async def test_create_job_missing_fields(self, client):
        response = await client.post("/api/jobs", json={"config": {}})

        assert response.status_code == 400
        data = response.json()
        assert data["success"] is False
        assert data["error"] == "Missing required fields: name, repoUrl, mongoUrl"

    @pytest.mark.asyncio
    async def test_create_job_uses_default_mongo_url(self, client, config):
        config.default_mongo_url = "mongodb://default/db"
        body = {"name": "shop", "config": {"repoUrl": "https://github.com/acme/shop"}}

        response = await client.post("/api/jobs", json=body)

        assert response.status_code == 201
        assert response.json()["job"]["config"]["mongoUrl"] == "mongodb://default/db"

    @pytest.mark.asyncio
    async def test_create_job_invalid_json(self, client):
        response = await client.post(
            "/api/jobs", content=b"{nope", headers={"Content-Type": "application/json"}
        )

        assert response.status_code == 400
        assert "Invalid JSON" in response.json()["error"]

    @pytest.mark.asyncio
    async def test_create_job_body_must_be_object(self, client):
        response = await client.post("/api/jobs", json=["shop"])

        assert response.status_code == 400
        assert response.json()["error"] == "JSON body must be an object"

    @pytest.mark.asyncio
    async def test_create_job_body_too_large(self, client, monkeypatch):
        monkeypatch.setattr("mongrate.viewer.server.MAX_BODY", 16)

        response = await client.post("/api/jobs", json=CREATE_BODY)

        assert response.status_code == 413
        assert response.json()["error"] == "Request body too large"

    @pytest.mark.asyncio
    async def test_oversized_header_still_gets_a_response(self, client):
        response = await client.get("/api/health", headers={"X-Big": "a" * 70000})

        assert response.status_code in (200, 400, 431)

    @pytest.mark.asyncio
    async def test_list_and_get(self, client):
        job_id = await _create(client)

        response = await client.get("/api/jobs")
        assert response.status_code == 200
        assert [job["id"] for job in response.json()["jobs"]] == [job_id]

        response = await client.get(f"/api/jobs/{job_id}")
        assert response.status_code == 200
        fetched = response.json()
        assert fetched["job"]["name"] == "shop"
        assert fetched["job"]["hasActiveSession"] is False
        assert "app:secret" not in response.text
        assert response.headers["cache-control"].startswith("no-cache")

    @pytest.mark.asyncio
    async def test_unknown_job(self, client):
        response = await client.get("/api/jobs/job-missing")

        assert response.status_code == 404
        assert response.json() == {"success": False, "error": "Job job-missing not found"}

    @pytest.mark.asyncio
    async def test_unknown_route(self, client):
        response = await client.get("/api/nothing")

        assert response.status_code == 404
        assert response.json()["success"] is False

    @pytest.mark.asyncio
    async def test_wrong_method(self, client):
        response = await client.put("/api/jobs")

        assert response.status_code == 405
        assert response.json()["success"] is False

    @pytest.mark.asyncio
    async def test_delete(self, client, store):
        job_id = await _create(client)

        response = await client.delete(f"/api/jobs/{job_id}")

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert await store.get(job_id) is None

    @pytest.mark.asyncio
    async def test_options_preflight(self, client):
        response = await client.options(
            "/api/jobs",
            headers={
                "Origin": "http://localhost:3000",
                "Access-Control-Request-Method": "POST",
                "Access-Control-Request-Headers": "Content-Type",
            },
        )

        assert response.status_code == 200
        assert "POST" in response.headers["access-control-allow-methods"]
        assert response.headers["access-control-max-age"] == "86400"


class TestAgentRoutes:
    """Tests for plan, execute and chat routes."""

    @pytest.mark.asyncio
    async def test_plan_runs_in_background(self, client, app, clone, launcher):
        launcher.turns.append([TextDelta(text='{"summary": "ok"}'), TurnComplete()])
        job_id = await _create(client)

        response = await client.post(f"/api/jobs/{job_id}/plan")
        assert response.status_code == 200
        assert response.json() == {"success": True, "output": "Planning started"}

        await app.orchestrator.wait_idle()
        clone.assert_awaited_once()
        job = await app.store.get(job_id)
        assert job.status is JobStatus.PLAN_READY
        assert job.plan == {"summary": "ok"}

    @pytest.mark.asyncio
    async def test_plan_unknown_job(self, client):
        response = await client.post("/api/jobs/job-missing/plan")

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_execute_without_plan(self, client):
        job_id = await _create(client)

        response = await client.post(f"/api/jobs/{job_id}/execute")

        assert response.status_code == 400
        assert response.json()["error"] == "No plan found. Run planning agent first."

    @pytest.mark.asyncio
    async def test_chat_validation(self, client):
        job_id = await _create(client)

        response = await client.post(f"/api/jobs/{job_id}/chat", json={"message": "  "})
        assert response.status_code == 400
        assert response.json()["error"] == "Message is required"

        response = await client.post(f"/api/jobs/{job_id}/chat", json={"message": "x" * 10001})
        assert response.status_code == 400
        assert response.json()["error"] == "Message too long (max 10000 characters)"

        response = await client.post(f"/api/jobs/{job_id}/chat", json={"message": "hi"})
        assert response.status_code == 400
        assert response.json()["error"] == "No active session - start planning first"

    @pytest.mark.asyncio
    async def test_chat_and_messages(self, client, app, launcher):
        job_id = await _create(client)
        await app.store.update(job_id, resume_token="session-3", status=JobStatus.PLAN_READY)
        launcher.turns.append([TextDelta(text="Because of joins."), TurnComplete()])

        response = await client.post(f"/api/jobs/{job_id}/chat", json={"message": "Why?"})
        assert response.status_code == 200
        assert response.json() == {"success": True, "response": "Because of joins."}

        response = await client.get(f"/api/jobs/{job_id}/messages")
        assert response.status_code == 200
        assert [(m["role"], m["content"]) for m in response.json()["messages"]] == [
            ("user", "Why?"),
            ("assistant", "Because of joins."),
        ]


class TestStream:
    """Tests for the SSE route."""

    @pytest.mark.asyncio
    async def test_stream_sends_snapshot_history_and_live_events(self, client, app):
        job = await app.orchestrator.create_job("shop", _job_config())
        app.broadcaster.publish(job.id, LogEvent(level="info", message="Job created"))

        async def read_frames(response):
            frames = []
            async for line in response.aiter_lines():
                if not line.startswith("data: "):
                    continue
                frames.append(json.loads(line[6:]))
                if len(frames) == 3:
                    app.broadcaster.publish(job.id, LogEvent(level="info", message="live line"))
                if len(frames) == 4:
                    return frames

        async with client.stream("GET", f"/api/jobs/{job.id}/stream") as response:
            assert response.status_code == 200
            assert response.headers["content-type"].startswith("text/event-stream")
            frames = await asyncio.wait_for(read_frames(response), timeout=2)

        assert frames[0]["type"] == "status"
        assert frames[0]["message"] == "Connected"
        assert frames[1]["type"] == "status"
        assert frames[1]["status"] == "pending"
        assert frames[2]["message"] == "Job created"
        assert frames[3]["message"] == "live line"

        for _ in range(100):
            if app.broadcaster.subscriber_count(job.id) == 0:
                break
            await asyncio.sleep(0.02)
        assert app.broadcaster.subscriber_count(job.id) == 0

    @pytest.mark.asyncio
    async def test_stream_heartbeat(self, client, app):
        job = await app.orchestrator.create_job("shop", _job_config())
        app.broadcaster.clear_history(job.id)

        async def read_comments(response):
            comments = []
            async for line in response.aiter_lines():
                if line.startswith(":"):
                    comments.append(line)
                if len(comments) == 2:
                    return comments

        async with client.stream("GET", f"/api/jobs/{job.id}/stream") as response:
            comments = await asyncio.wait_for(read_comments(response), timeout=2)

        assert comments == [": connected", ": heartbeat"]

    @pytest.mark.asyncio
    async def test_stream_unknown_job(self, client):
        response = await client.get("/api/jobs/job-missing/stream")

        assert response.status_code == 404


def _job_config():
    return JobConfig(repo_url="https://github.com/acme/shop", mongo_url="mongodb://localhost/shop")
