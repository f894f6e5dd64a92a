"""Tests for the HTTP transport: auth headers, normalization, error mapping."""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from huddle_dashboard.errors import AccessDeniedError, NetworkError, TransportError
from huddle_dashboard.models import RemoteStatus, UploadRequest
from huddle_dashboard.transport import TransportClient


def _client(handler) -> TransportClient:
    return TransportClient(
        base_url="http://analysis.test/",
        token="secret-token",
        team_id="team-42",
        transport=httpx.MockTransport(handler),
    )


def _run(handler, call):
    async def scenario():
        async with _client(handler) as client:
            return await call(client)

    return asyncio.run(scenario())


def test_requests_carry_bearer_token_and_team_header():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers.get("authorization")
        seen["team"] = request.headers.get("x-team-id")
        seen["path"] = request.url.path
        seen["body"] = request.content
        return httpx.Response(200, json={"success": True, "job_id": "job-7"})

    upload = UploadRequest(file_name="minutes.txt", content=b"We agreed to migrate.")
    job_id = _run(handler, lambda client: client.submit_job(upload))

    assert job_id == "job-7"
    assert seen["auth"] == "Bearer secret-token"
    assert seen["team"] == "team-42"
    assert seen["path"] == "/api/teams/team-42/upload"
    assert b"minutes.txt" in seen["body"]
    assert b"We agreed to migrate." in seen["body"]


def test_submit_accepts_camel_case_job_id():
    def handler(request):
        return httpx.Response(200, json={"jobId": "abc"})

    upload = UploadRequest(file_name="a.txt", content=b"x")
    assert _run(handler, lambda client: client.submit_job(upload)) == "abc"


def test_submit_without_job_id_is_an_error():
    def handler(request):
        return httpx.Response(200, json={"success": True})

    upload = UploadRequest(file_name="a.txt", content=b"x")
    with pytest.raises(TransportError):
        _run(handler, lambda client: client.submit_job(upload))


@pytest.mark.parametrize(
    "payload, status, count, error",
    [
        ({"status": "pending"}, RemoteStatus.PROCESSING, None, None),
        ({"status": "processing"}, RemoteStatus.PROCESSING, None, None),
        ({"status": "something-new"}, RemoteStatus.PROCESSING, None, None),
        ({"status": "completed", "decisions_extracted": 4}, RemoteStatus.COMPLETED, 4, None),
        ({"status": "complete", "decisions_count": "2"}, RemoteStatus.COMPLETED, 2, None),
        ({"status": "failed", "error_message": "Unreadable PDF"}, RemoteStatus.FAILED, None, "Unreadable PDF"),
        ({"status": "failed", "error": "Timeout"}, RemoteStatus.FAILED, None, "Timeout"),
    ],
)
def test_job_status_is_normalized(payload, status, count, error):
    def handler(request):
        assert request.url.path == "/api/teams/team-42/upload/job-1/status"
        return httpx.Response(200, json=payload)

    result = _run(handler, lambda client: client.job_status("job-1"))

    assert result.status is status
    assert result.error == error
    if count is None:
        assert result.result is None
    else:
        assert result.result.decision_count == count


@pytest.mark.parametrize(
    "status_code, body",
    [
        (403, {"error": "Access denied"}),
        (401, {"error": "Invalid or expired token"}),
        (404, {"error": "Access denied: Not a member of this team"}),
    ],
)
def test_access_denied_is_classified(status_code, body):
    def handler(request):
        return httpx.Response(status_code, json=body)

    with pytest.raises(AccessDeniedError) as excinfo:
        _run(handler, lambda client: client.job_status("job-1"))
    assert excinfo.value.status_code == status_code
    assert excinfo.value.message == body["error"]


def test_server_error_is_plain_transport_error():
    def handler(request):
        return httpx.Response(500, json={"error": "Status check failed"})

    with pytest.raises(TransportError) as excinfo:
        _run(handler, lambda client: client.job_status("job-1"))

    assert not isinstance(excinfo.value, AccessDeniedError)
    assert excinfo.value.status_code == 500
    assert excinfo.value.message == "Status check failed"


def test_non_json_error_body_uses_text():
    def handler(request):
        return httpx.Response(502, text="Bad gateway")

    with pytest.raises(TransportError) as excinfo:
        _run(handler, lambda client: client.job_status("job-1"))
    assert excinfo.value.message == "Bad gateway"


def test_connection_failure_becomes_network_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(NetworkError):
        _run(handler, lambda client: client.job_status("job-1"))


def test_send_message_normalizes_exchange():
    def handler(request):
        assert json.loads(request.content) == {"message": "hello"}
        return httpx.Response(
            200,
            json={
                "success": True,
                "userMessage": {"id": "u1", "role": "user", "content": "hello", "created_at": "2025-01-01T00:00:00Z"},
                "assistantMessage": {"id": "a1", "content": "Hi", "sources": ["d-1"], "createdAt": "2025-01-01T00:00:01Z"},
            },
        )

    exchange = _run(handler, lambda client: client.send_message("hello"))

    assert exchange.user_message.id == "u1"
    assert exchange.user_message.created_at == "2025-01-01T00:00:00Z"
    assert exchange.assistant_message.role == "assistant"
    assert exchange.assistant_message.sources == ("d-1",)
    assert exchange.assistant_message.created_at == "2025-01-01T00:00:01Z"


def test_send_message_without_confirmed_pair_is_an_error():
    def handler(request):
        return httpx.Response(200, json={"success": True})

    with pytest.raises(TransportError):
        _run(handler, lambda client: client.send_message("hello"))


def test_list_files_accepts_alternate_field_names():
    def handler(request):
        return httpx.Response(
            200,
            json={
                "files": [
                    {"file_hash": "h1", "file_name": "plan.pdf", "decision_count": 3, "status": "completed"},
                    {"fileHash": "h2", "fileName": "notes.md", "decisionCount": 1, "status": "processing"},
                    {"file_name": "orphan.txt"},
                ]
            },
        )

    files = _run(handler, lambda client: client.list_files())

    assert [entry.file_hash for entry in files] == ["h1", "h2"]
    assert [entry.file_name for entry in files] == ["plan.pdf", "notes.md"]
    assert [entry.decision_count for entry in files] == [3, 1]
    assert files[1].status == "processing"


def test_reorder_sends_full_key_list():
    seen = {}

    def handler(request):
        seen["method"] = request.method
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"success": True})

    _run(handler, lambda client: client.reorder_files(["C", "A", "B", "D"]))

    assert seen == {
        "method": "PATCH",
        "path": "/api/teams/team-42/files/reorder",
        "body": {"files": ["C", "A", "B", "D"]},
    }


def test_clear_chat_and_history_paths():
    paths = []

    def handler(request):
        paths.append((request.method, request.url.path))
        if request.method == "GET":
            return httpx.Response(200, json={"messages": [{"id": "m1", "role": "user", "content": "hey"}]})
        return httpx.Response(200, json={"success": True})

    async def calls(client):
        history = await client.chat_history()
        await client.clear_chat()
        return history

    history = _run(handler, calls)

    assert [message.id for message in history] == ["m1"]
    assert paths == [
        ("GET", "/api/teams/team-42/chat/history"),
        ("DELETE", "/api/teams/team-42/chat/clear"),
    ]
