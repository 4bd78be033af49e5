"""HTTP API and live event stream for mongrate jobs.

JSON routes manage jobs and start agent turns; ``/api/jobs/{id}/stream`` is a
Server-Sent Events feed backed by the event broadcaster. Served by uvicorn.
"""

import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict

import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..app import MongrateApp
from ..core.job import Job, JobConfig
from ..stream.sse import DEFAULT_HEARTBEAT_INTERVAL, stream_job_events

logger = logging.getLogger(__name__)

MAX_CHAT_MESSAGE = 10000
MAX_BODY = 1024 * 1024

NO_CACHE = {"Cache-Control": "no-cache, no-store, must-revalidate"}


def _json(data: Dict[str, Any], status: int = 200) -> JSONResponse:
    return JSONResponse(data, status_code=status, headers=NO_CACHE)


async def _json_body(request: Request) -> Dict[str, Any]:
    """Decode a JSON object body; an empty body is an empty object."""
    length = request.headers.get("content-length")
    if length is not None:
        try:
            too_large = int(length) > MAX_BODY
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid Content-Length")
        if too_large:
            raise HTTPException(status_code=413, detail="Request body too large")

    raw = await request.body()
    if len(raw) > MAX_BODY:
        raise HTTPException(status_code=413, detail="Request body too large")
    if not raw:
        return {}
    try:
        data = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise HTTPException(status_code=400, detail=f"Invalid JSON body: {e}")
    if not isinstance(data, dict):
        raise HTTPException(status_code=400, detail="JSON body must be an object")
    return data


def create_api(app: MongrateApp, heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL) -> FastAPI:
    """Build the FastAPI application serving one mongrate instance.

    Agent sessions are released when the ASGI server shuts down.
    """

    @asynccontextmanager
    async def lifespan(api: FastAPI):
        yield
        await app.shutdown()

    api = FastAPI(title="mongrate", version="0.1.0", lifespan=lifespan)
    api.state.mongrate = app

    api.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type"],
        max_age=86400,
    )

    @api.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            {"success": False, "error": exc.detail},
            status_code=exc.status_code,
            headers=exc.headers,
        )

    @api.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error for %s %s", request.method, request.url.path)
        return JSONResponse({"success": False, "error": str(exc)}, status_code=500)

    async def require_job(job_id: str) -> Job:
        job = await app.store.get(job_id)
        if job is None:
            raise HTTPException(status_code=404, detail=f"Job {job_id} not found")
        return job

    @api.get("/api/health")
    async def health():
        return _json({"success": True, "status": "ok", "activeSessions": app.sessions.active_count()})

    @api.get("/api/jobs")
    async def list_jobs():
        jobs = await app.store.list()
        return _json({"success": True, "jobs": [job.to_public_dict() for job in jobs]})

    @api.post("/api/jobs")
    async def create_job(request: Request):
        body = await _json_body(request)
        config_data = body.get("config") or {}
        name = body.get("name")
        repo_url = config_data.get("repoUrl")
        mongo_url = config_data.get("mongoUrl") or app.config.default_mongo_url

        missing = [
            label
            for label, value in (("name", name), ("repoUrl", repo_url), ("mongoUrl", mongo_url))
            if not value
        ]
        if missing:
            raise HTTPException(status_code=400, detail=f"Missing required fields: {', '.join(missing)}")

        config = JobConfig(
            repo_url=repo_url,
            branch=config_data.get("branch") or app.config.default_branch,
            postgres_url=config_data.get("postgresUrl"),
            mongo_url=mongo_url,
            github_token=config_data.get("githubToken") or app.config.default_github_token,
        )
        job = await app.orchestrator.create_job(name, config)
        return _json({"success": True, "job": job.to_public_dict()}, status=201)

    @api.get("/api/jobs/{job_id}")
    async def get_job(job_id: str):
        job = await require_job(job_id)
        data = job.to_public_dict()
        data["hasActiveSession"] = app.sessions.has_active(job_id)
        return _json({"success": True, "job": data})

    @api.delete("/api/jobs/{job_id}")
    async def delete_job(job_id: str):
        await require_job(job_id)
        result = await app.orchestrator.delete_job(job_id)
        return _json(result.to_dict(), status=200 if result.success else 409)

    @api.post("/api/jobs/{job_id}/plan")
    async def plan(job_id: str):
        await require_job(job_id)
        result = await app.orchestrator.start_pipeline(job_id)
        return _json(result.to_dict(), status=200 if result.success else 400)

    @api.post("/api/jobs/{job_id}/execute")
    async def execute(job_id: str):
        await require_job(job_id)
        result = await app.orchestrator.start_turn(job_id, "execute")
        return _json(result.to_dict(), status=200 if result.success else 400)

    @api.post("/api/jobs/{job_id}/chat")
    async def chat(job_id: str, request: Request):
        body = await _json_body(request)
        message = body.get("message")
        if not isinstance(message, str) or not message.strip():
            raise HTTPException(status_code=400, detail="Message is required")
        if len(message) > MAX_CHAT_MESSAGE:
            raise HTTPException(status_code=400, detail=f"Message too long (max {MAX_CHAT_MESSAGE} characters)")

        await require_job(job_id)
        result = await app.orchestrator.send_chat_message(job_id, message)
        if not result.success:
            return _json(result.to_dict(), status=400)
        return _json({"success": True, "response": result.output})

    @api.get("/api/jobs/{job_id}/messages")
    async def messages(job_id: str):
        job = await require_job(job_id)
        return _json({"success": True, "messages": [m.to_dict() for m in job.chat]})

    @api.get("/api/jobs/{job_id}/stream")
    async def stream(job_id: str, request: Request):
        job = await require_job(job_id)

        async def frames() -> AsyncIterator[bytes]:
            events = stream_job_events(
                app.broadcaster,
                job_id,
                initial=app.orchestrator.snapshot_event(job),
                heartbeat_interval=heartbeat_interval,
            )
            try:
                async for frame in events:
                    if await request.is_disconnected():
                        logger.debug("Stream client for %s disconnected", job_id)
                        break
                    yield frame
            finally:
                await events.aclose()

        return StreamingResponse(
            frames(),
            media_type="text/event-stream",
            headers={**NO_CACHE, "X-Accel-Buffering": "no"},
        )

    return api


def run_server(app: MongrateApp, host: str = "127.0.0.1", port: int = 8080) -> None:
    """Serve until interrupted, then release every agent session."""
    logger.info("Serving mongrate API on http://%s:%s", host, port)
    uvicorn.run(create_api(app), host=host, port=port, log_level="info")
