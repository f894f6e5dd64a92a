"""Local JSON API exposing the dashboard core to a browser front end."""

from __future__ import annotations

import asyncio
import base64
import binascii
import json
import logging
import os
import secrets
from dataclasses import dataclass
from datetime import datetime
from typing import Any, AsyncGenerator, Dict, Optional, Set
from urllib.parse import urlparse

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, StreamingResponse

from huddle_dashboard.config import (
    DashboardConfig,
    access_token,
    job_retry_policy,
    load_config,
    save_config,
)
from huddle_dashboard.errors import SubmissionError, TransportError
from huddle_dashboard.events import EventCoordinator
from huddle_dashboard.models import UploadRequest
from huddle_dashboard.mutator import ChatSession, FileBoard
from huddle_dashboard.poller import DEFAULT_SLOT, JobPoller, PollPolicy
from huddle_dashboard.projector import project_chat, project_files, project_job
from huddle_dashboard.transport import TransportClient

logger = logging.getLogger(__name__)

app = FastAPI(title="Huddle Dashboard (Local)")

CSRF_HEADER = "X-Huddle-CSRF"
CSRF_TOKEN = secrets.token_urlsafe(32)
ALLOWED_HOSTS = {"127.0.0.1:8080", "localhost:8080", "testserver"}
# Seconds shutdown waits for in-flight chat and reorder commits.
SHUTDOWN_GRACE = 5.0


@dataclass
class Services:
    config: DashboardConfig
    transport: Any
    poller: JobPoller
    chat: ChatSession
    files: FileBoard


_services: Optional[Services] = None
_coordinator: EventCoordinator = EventCoordinator()
# Commits run after the response is sent; keep references until they finish.
_background: Set[asyncio.Task] = set()


def _build_transport(config: DashboardConfig) -> TransportClient:
    return TransportClient(
        base_url=config.api_url,
        token=access_token(),
        team_id=config.team_id,
        timeout=config.request_timeout,
    )


def _build_services(config: DashboardConfig) -> Services:
    transport = _build_transport(config)
    policy = PollPolicy(interval=config.poll_interval, retry=job_retry_policy(config))
    return Services(
        config=config,
        transport=transport,
        poller=JobPoller(transport, policy=policy, coordinator=_coordinator),
        chat=ChatSession(transport, coordinator=_coordinator),
        files=FileBoard(transport, coordinator=_coordinator, view=config.file_view),
    )


def _get_services() -> Services:
    if _services is None:
        raise HTTPException(status_code=503, detail="Dashboard core is not running")
    return _services


def _spawn(coro) -> None:
    task = asyncio.create_task(coro)
    _background.add(task)
    task.add_done_callback(_background.discard)


def _upstream_error(exc: TransportError) -> HTTPException:
    if exc.status_code and 400 <= exc.status_code < 500:
        return HTTPException(status_code=exc.status_code, detail=exc.message)
    return HTTPException(status_code=502, detail=exc.message)


def _origin_from_url(value: str | None) -> str | None:
    if not value:
        return None
    try:
        parsed = urlparse(value)
    except ValueError:
        return None
    if not parsed.scheme or not parsed.netloc:
        return None
    return f"{parsed.scheme}://{parsed.netloc}"


def _expected_origins(request: Request) -> Set[str]:
    host = request.headers.get("host")
    allowed_hosts = set(ALLOWED_HOSTS)
    if host:
        allowed_hosts.add(host)
    origins: Set[str] = set()
    for entry in allowed_hosts:
        origins.add(f"http://{entry}")
        origins.add(f"https://{entry}")
    return origins


def _require_authorized_write(request: Request) -> None:
    allowed_origins = _expected_origins(request)

    origin = _origin_from_url(request.headers.get("origin"))
    if origin and origin not in allowed_origins:
        raise HTTPException(status_code=403, detail="Cross-origin request blocked")

    referer = _origin_from_url(request.headers.get("referer"))
    if referer and referer not in allowed_origins:
        raise HTTPException(status_code=403, detail="Cross-site request blocked")

    token = request.headers.get(CSRF_HEADER)
    if token != CSRF_TOKEN:
        raise HTTPException(status_code=403, detail="Invalid or missing CSRF token")


def _decode_upload(payload: Dict[str, Any]) -> UploadRequest:
    file_name = payload.get("fileName")
    if not file_name or not isinstance(file_name, str):
        raise HTTPException(status_code=400, detail="fileName is required")

    if "contentBase64" in payload:
        try:
            content = base64.b64decode(str(payload["contentBase64"]), validate=True)
        except (binascii.Error, ValueError) as exc:
            raise HTTPException(status_code=400, detail="contentBase64 is not valid base64") from exc
    elif isinstance(payload.get("content"), str):
        content = payload["content"].encode("utf-8")
    else:
        raise HTTPException(status_code=400, detail="content or contentBase64 is required")

    return UploadRequest(
        file_name=file_name,
        content=content,
        source_type=str(payload.get("sourceType") or "document"),
        content_type=str(payload.get("contentType") or "application/octet-stream"),
    )


def _index(payload: Dict[str, Any], key: str) -> int:
    value = payload.get(key)
    if not isinstance(value, int) or isinstance(value, bool):
        raise HTTPException(status_code=400, detail=f"{key} must be an integer")
    return value


@app.get("/api/csrf")
async def get_csrf_token() -> JSONResponse:
    """Hand the CSRF token to same-origin pages."""

    return JSONResponse({"header": CSRF_HEADER, "token": CSRF_TOKEN})


@app.get("/api/config")
async def get_config() -> JSONResponse:
    return JSONResponse(_get_services().config.to_dict())


@app.post("/api/config/view")
async def update_file_view(payload: Dict[str, Any], request: Request) -> JSONResponse:
    """Persist the file list view preference."""

    _require_authorized_write(request)
    services = _get_services()

    try:
        services.config.set_file_view(str(payload.get("view")))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    save_config(services.config)
    services.files.view = services.config.file_view
    return JSONResponse({"status": "ok", "view": services.config.file_view})


# ----------------------------------------------------------------------
# Upload jobs
# ----------------------------------------------------------------------


@app.post("/api/uploads")
async def submit_upload(payload: Dict[str, Any], request: Request) -> JSONResponse:
    """Submit a document; the job is then polled in the background."""

    _require_authorized_write(request)
    services = _get_services()
    upload = _decode_upload(payload)
    slot = str(payload.get("slot") or DEFAULT_SLOT)

    try:
        job = await services.poller.submit(upload, slot=slot)
    except SubmissionError as exc:
        status_code = exc.status_code if exc.status_code and 400 <= exc.status_code < 500 else 502
        raise HTTPException(status_code=status_code, detail=exc.message) from exc

    return JSONResponse(
        {"slot": slot, **project_job(job.snapshot()).to_dict()},
        status_code=202,
    )


@app.get("/api/uploads/{slot}")
async def get_upload(slot: str) -> JSONResponse:
    snapshot = _get_services().poller.slot_state(slot)
    return JSONResponse({"slot": slot, **project_job(snapshot).to_dict()})


@app.post("/api/uploads/{slot}/retry")
async def retry_upload(slot: str, request: Request) -> JSONResponse:
    _require_authorized_write(request)
    poller = _get_services().poller

    snapshot = poller.slot_state(slot)
    if snapshot is None or snapshot.id is None or not poller.retry(snapshot.id):
        raise HTTPException(status_code=409, detail="Nothing to retry for this upload")
    return JSONResponse({"status": "ok"})


@app.delete("/api/uploads/{slot}")
async def discard_upload(slot: str, request: Request) -> JSONResponse:
    """Stop tracking the job in a slot (the consumer navigated away)."""

    _require_authorized_write(request)
    discarded = _get_services().poller.discard(slot)
    return JSONResponse({"status": "ok", "discarded": discarded})


# ----------------------------------------------------------------------
# Chat
# ----------------------------------------------------------------------


@app.get("/api/chat")
async def get_chat(reload: bool = False) -> JSONResponse:
    chat = _get_services().chat
    if reload:
        try:
            await chat.load_history()
        except TransportError as exc:
            raise _upstream_error(exc) from exc
    return JSONResponse(project_chat(chat))


@app.post("/api/chat")
async def send_chat_message(payload: Dict[str, Any], request: Request) -> JSONResponse:
    """Show the message immediately and confirm it in the background."""

    _require_authorized_write(request)
    chat = _get_services().chat

    message = payload.get("message")
    if not isinstance(message, str):
        raise HTTPException(status_code=400, detail="message is required")

    mutation = await chat.begin_send(message)
    if mutation is None:
        raise HTTPException(status_code=400, detail="message is empty")

    _spawn(chat.finish_send(mutation))
    return JSONResponse({"localId": mutation.local_id, **project_chat(chat)}, status_code=202)


@app.delete("/api/chat")
async def clear_chat(request: Request) -> JSONResponse:
    _require_authorized_write(request)
    chat = _get_services().chat
    cleared = await chat.clear()
    if not cleared:
        raise HTTPException(status_code=502, detail=chat.error)
    return JSONResponse({"status": "ok"})


# ----------------------------------------------------------------------
# Files
# ----------------------------------------------------------------------


@app.get("/api/files")
async def get_files(q: str = "", reload: bool = False) -> JSONResponse:
    board = _get_services().files
    if reload:
        try:
            await board.refresh()
        except TransportError as exc:
            raise _upstream_error(exc) from exc
    return JSONResponse(project_files(board, q))


@app.post("/api/files/reorder")
async def reorder_files(payload: Dict[str, Any], request: Request) -> JSONResponse:
    """Apply a drag reorder locally and persist it in the background."""

    _require_authorized_write(request)
    board = _get_services().files

    source = _index(payload, "source")
    destination = _index(payload, "destination")
    try:
        mutation = await board.begin_reorder(source, destination)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    if mutation is not None:
        _spawn(board.finish_reorder(mutation))
    return JSONResponse(project_files(board), status_code=202)


# ----------------------------------------------------------------------
# Events and health
# ----------------------------------------------------------------------


@app.get("/api/events")
async def events_stream(request: Request) -> StreamingResponse:
    """Server-Sent Events stream of job, chat and file updates."""

    async def event_generator() -> AsyncGenerator[str, None]:
        try:
            async for event in _coordinator.subscribe():
                if await request.is_disconnected():
                    break

                yield f"data: {json.dumps(event)}\n\n"

        except asyncio.CancelledError:
            logger.info("SSE client disconnected")
            raise

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        },
    )


@app.get("/api/health")
async def health_check() -> JSONResponse:
    """Health check endpoint with poller and coordinator status."""

    services = _get_services()
    return JSONResponse({
        "status": "ok",
        "timestamp": datetime.now().isoformat(),
        "poller": services.poller.get_stats(),
        "coordinator": _coordinator.get_stats(),
        "chatSending": services.chat.sending,
        "filesSaving": services.files.saving,
        "background": len(_background),
    })


@app.on_event("startup")
async def startup_event():
    """Build the transport, poller and sessions from the saved config."""
    global _services

    config = load_config()
    if not config.team_id:
        logger.warning("No team configured; requests will fail until HUDDLE_TEAM_ID is set")
    if not access_token():
        logger.warning("No API token configured; requests will be unauthenticated")

    _services = _build_services(config)
    logger.info(f"Dashboard core started against {config.api_url}")


@app.on_event("shutdown")
async def shutdown_event():
    """Cancel polling, let issued commits finish, then close the transport."""
    global _services

    if _services is None:
        return

    _services.poller.shutdown()
    if _background:
        _, unfinished = await asyncio.wait(list(_background), timeout=SHUTDOWN_GRACE)
        for task in unfinished:
            logger.warning(f"Commit still running after {SHUTDOWN_GRACE}s at shutdown; cancelling")
            task.cancel()
    _background.clear()

    close = getattr(_services.transport, "aclose", None)
    if close is not None:
        await close()

    _services = None
    logger.info("Dashboard core shutdown complete")


def run() -> None:
    """Convenience entry point for running with `python -m`."""

    import uvicorn

    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO"),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    uvicorn.run(
        "huddle_dashboard.local_app:app",
        host="127.0.0.1",
        port=8080,
        reload=True,
    )


if __name__ == "__main__":
    run()
