# tests/test_websocket.py - Collaboration socket, health, and security tests
import pytest
from httpx import AsyncClient
from starlette.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from auth import AuthService
from collaboration import hub
from main import app
from tests.conftest import create_report, get_auth_headers

SECTIONS = [
    {"title": "Summary", "type": "TEXT", "order": 0, "content": {"text": "<p>start</p>"}},
]


def _token(user):
    return get_auth_headers(user)["Authorization"].split(" ", 1)[1]


def _url(report_id, user):
    return f"/ws/reports/{report_id}?token={_token(user)}"


@pytest.mark.asyncio
async def test_health_endpoint(client: AsyncClient):
    """Health endpoint returns OK"""
    resp = await client.get("/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert data["version"] == "1.0.0"


@pytest.mark.asyncio
async def test_security_headers(client: AsyncClient):
    """Responses include security headers"""
    resp = await client.get("/health")
    assert resp.headers.get("X-Content-Type-Options") == "nosniff"
    assert resp.headers.get("X-Frame-Options") == "DENY"
    assert "style-src 'self' 'unsafe-inline'" in resp.headers.get("Content-Security-Policy")
    assert "x-request-id" in resp.headers
    assert "x-response-time" in resp.headers


@pytest.mark.asyncio
async def test_request_id_propagated(client: AsyncClient):
    resp = await client.get("/", headers={"X-Request-ID": "req-123"})
    assert resp.headers["x-request-id"] == "req-123"
    assert resp.headers["x-correlation-id"] == "req-123"


@pytest.mark.asyncio
async def test_ws_stats(client: AsyncClient):
    resp = await client.get("/ws/stats")
    assert resp.status_code == 200
    assert set(resp.json()) == {"rooms", "connections", "typing"}


# ── Collaboration socket ─────────────────────────────────────

@pytest.mark.asyncio
async def test_ws_rejects_bad_token(db_engine):
    with TestClient(app) as tc:
        with pytest.raises(WebSocketDisconnect) as exc:
            with tc.websocket_connect("/ws/reports/anything?token=not-a-jwt"):
                pass
    assert exc.value.code == 4001


@pytest.mark.asyncio
async def test_ws_rejects_foreign_report(db_session, test_user, other_user):
    report = await create_report(db_session, test_user, sections=SECTIONS)
    with TestClient(app) as tc:
        with pytest.raises(WebSocketDisconnect) as exc:
            with tc.websocket_connect(_url(report.id, other_user)):
                pass
    assert exc.value.code == 4004


@pytest.mark.asyncio
async def test_ws_rejects_viewer(db_session, test_user, viewer_user):
    report = await create_report(db_session, test_user, sections=SECTIONS)
    with TestClient(app) as tc:
        with pytest.raises(WebSocketDisconnect) as exc:
            with tc.websocket_connect(_url(report.id, viewer_user)):
                pass
    assert exc.value.code == 4001


@pytest.mark.asyncio
async def test_ws_collaboration_session(db_session, test_user, second_user):
    report = await create_report(db_session, test_user, sections=SECTIONS)
    await db_session.refresh(report, ["sections"])
    section_id = report.sections[0].id

    with TestClient(app) as tc:
        with tc.websocket_connect(_url(report.id, test_user)) as amina:
            first = amina.receive_json()
            assert first["type"] == "current-collaborators"
            assert [c["name"] for c in first["collaborators"]] == ["Amina Okafor"]

            with tc.websocket_connect(_url(report.id, second_user)) as jon:
                assert jon.receive_json()["type"] == "current-collaborators"
                joined = amina.receive_json()
                assert joined["type"] == "collaborator-joined"
                assert joined["user"]["name"] == "Jon Berg"
                assert len(joined["collaborators"]) == 2

                amina.send_json({"type": "edit-section", "sectionId": section_id, "content": {"text": "<p>v2</p>"}})
                update = jon.receive_json()
                assert update["type"] == "section-updated"
                assert update["sectionId"] == section_id
                assert update["content"] == {"text": "<p>v2</p>"}
                assert update["userName"] == "Amina Okafor"

                amina.send_json({"type": "edit-section", "sectionId": "missing", "content": {}})
                assert amina.receive_json() == {"type": "error", "message": "Section not found"}

                jon.send_json({"type": "typing-start", "sectionId": section_id})
                typing = amina.receive_json()
                assert typing == {
                    "type": "typing-start",
                    "sectionId": section_id,
                    "user": {"id": second_user.id, "name": "Jon Berg", "email": second_user.email},
                }
                jon.send_json({"type": "typing-stop", "sectionId": section_id})
                assert amina.receive_json()["type"] == "typing-stop"

                jon.send_json({"type": "ping"})
                assert jon.receive_json() == {"type": "pong"}

            left = amina.receive_json()
            assert left == {"type": "collaborator-left", "userId": second_user.id, "userName": "Jon Berg"}

    assert hub.get_stats()["connections"] == 0

    # Broadcast edits are not persisted
    await db_session.refresh(report.sections[0])
    assert report.sections[0].content == {"text": "<p>start</p>"}


@pytest.mark.asyncio
async def test_ws_typing_expires(db_session, test_user, second_user, monkeypatch):
    monkeypatch.setattr(hub, "typing_timeout", 0.05)
    report = await create_report(db_session, test_user, sections=SECTIONS)
    await db_session.refresh(report, ["sections"])
    section_id = report.sections[0].id

    with TestClient(app) as tc:
        with tc.websocket_connect(_url(report.id, test_user)) as amina:
            amina.receive_json()
            with tc.websocket_connect(_url(report.id, second_user)) as jon:
                jon.receive_json()
                amina.receive_json()

                jon.send_json({"type": "typing-start", "sectionId": section_id})
                assert amina.receive_json()["type"] == "typing-start"
                # No explicit stop: the hub expires the indicator
                expired = amina.receive_json()
                assert expired["type"] == "typing-stop"
                assert expired["sectionId"] == section_id


@pytest.mark.asyncio
async def test_ws_malformed_json_keeps_session_open(db_session, test_user):
    report = await create_report(db_session, test_user, sections=SECTIONS)

    with TestClient(app) as tc:
        with tc.websocket_connect(_url(report.id, test_user)) as amina:
            assert amina.receive_json()["type"] == "current-collaborators"

            amina.send_text("{not json")
            assert amina.receive_json() == {"type": "error", "message": "Invalid JSON"}

            amina.send_json({"type": "ping"})
            assert amina.receive_json() == {"type": "pong"}

    assert hub.get_stats()["connections"] == 0


def test_access_token_roundtrip():
    token = AuthService.create_access_token({"sub": "user-1"})
    assert AuthService.decode_access_token(token)["sub"] == "user-1"
    assert AuthService.decode_access_token("garbage") is None
