# tests/test_reports.py - Report and section management
import re

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from models import AuditLog, ReportSection, ReportStatus
from routers.reports import make_slug
from tests.conftest import create_report, get_auth_headers

TEXT = {"text": "<p>Body</p>"}


def test_make_slug():
    assert make_slug("Flood Response: Week 3!", now_ms=1700000000000) == "flood-response-week-3-1700000000000"
    assert make_slug("  Déjà   vu  ", now_ms=1) == "dj-vu-1"


async def _create_sections(client, report_id, headers, titles):
    ids = []
    for title in titles:
        resp = await client.post(
            f"/api/v1/reports/{report_id}/sections",
            json={"title": title, "type": "TEXT", "content": TEXT},
            headers=headers,
        )
        assert resp.status_code == 201
        ids.append(resp.json()["id"])
    return ids


async def _orders(client, report_id, headers):
    resp = await client.get(f"/api/v1/reports/{report_id}", headers=headers)
    return [(s["title"], s["order"]) for s in resp.json()["sections"]]


@pytest.mark.asyncio
async def test_create_report(client: AsyncClient, db_session, test_user):
    resp = await client.post(
        "/api/v1/reports/",
        json={"title": "Drought Assessment 2024", "description": "Northern region"},
        headers=get_auth_headers(test_user),
    )
    assert resp.status_code == 201
    data = resp.json()
    assert data["status"] == "DRAFT"
    assert data["is_public"] is False
    assert data["author_id"] == test_user.id
    assert re.fullmatch(r"drought-assessment-2024-\d{13}", data["slug"])

    audit = await db_session.execute(select(AuditLog).where(AuditLog.action == "CREATE_REPORT"))
    row = audit.scalars().one()
    assert row.entity_id == data["id"]
    assert row.organisation_id == test_user.organisation_id


@pytest.mark.asyncio
async def test_slug_is_stable_on_rename(client: AsyncClient, test_user):
    headers = get_auth_headers(test_user)
    created = (await client.post("/api/v1/reports/", json={"title": "Original"}, headers=headers)).json()

    resp = await client.patch(f"/api/v1/reports/{created['id']}", json={"title": "Renamed"}, headers=headers)
    assert resp.status_code == 200
    assert resp.json()["title"] == "Renamed"
    assert resp.json()["slug"] == created["slug"]


@pytest.mark.asyncio
async def test_update_report_rejects_explicit_nulls(client: AsyncClient, test_user):
    headers = get_auth_headers(test_user)
    created = (await client.post("/api/v1/reports/", json={"title": "Original", "description": "d"}, headers=headers)).json()
    url = f"/api/v1/reports/{created['id']}"

    for field in ("title", "status", "is_public"):
        resp = await client.patch(url, json={field: None}, headers=headers)
        assert resp.status_code == 422, field

    # description is nullable
    resp = await client.patch(url, json={"description": None}, headers=headers)
    assert resp.status_code == 200
    assert resp.json()["title"] == "Original"
    assert resp.json()["description"] is None


@pytest.mark.asyncio
async def test_list_reports_scoped_to_organisation(client: AsyncClient, db_session, test_user, other_user):
    await create_report(db_session, test_user, title="Ours")
    await create_report(db_session, other_user, title="Theirs")

    resp = await client.get("/api/v1/reports/", headers=get_auth_headers(test_user))
    assert resp.status_code == 200
    assert resp.json()["total"] == 1
    assert [r["title"] for r in resp.json()["reports"]] == ["Ours"]


@pytest.mark.asyncio
async def test_list_reports_status_filter(client: AsyncClient, db_session, test_user):
    await create_report(db_session, test_user, title="Draft One")
    await create_report(db_session, test_user, title="Published One", status=ReportStatus.PUBLISHED)

    resp = await client.get("/api/v1/reports/", params={"status": "PUBLISHED"}, headers=get_auth_headers(test_user))
    assert [r["title"] for r in resp.json()["reports"]] == ["Published One"]


@pytest.mark.asyncio
async def test_get_report_includes_hidden_sections(client: AsyncClient, db_session, test_user):
    report = await create_report(db_session, test_user, sections=[
        {"title": "Shown", "type": "TEXT", "order": 1, "content": TEXT},
        {"title": "Hidden", "type": "TEXT", "order": 0, "content": TEXT, "is_visible": False},
    ])
    resp = await client.get(f"/api/v1/reports/{report.id}", headers=get_auth_headers(test_user))
    assert resp.status_code == 200
    assert [(s["title"], s["is_visible"]) for s in resp.json()["sections"]] == [("Hidden", False), ("Shown", True)]


@pytest.mark.asyncio
async def test_get_other_organisation_report_not_found(client: AsyncClient, db_session, test_user, other_user):
    report = await create_report(db_session, test_user)
    resp = await client.get(f"/api/v1/reports/{report.id}", headers=get_auth_headers(other_user))
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_requires_authentication(client: AsyncClient):
    resp = await client.get("/api/v1/reports/")
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_invalid_token_rejected(client: AsyncClient):
    resp = await client.get("/api/v1/reports/", headers={"Authorization": "Bearer not-a-jwt"})
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_viewer_cannot_create(client: AsyncClient, viewer_user):
    resp = await client.post("/api/v1/reports/", json={"title": "Nope"}, headers=get_auth_headers(viewer_user))
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_delete_report_cascades(client: AsyncClient, db_session, test_user):
    report = await create_report(db_session, test_user, sections=[
        {"title": "A", "type": "TEXT", "order": 0, "content": TEXT},
    ])
    rid = report.id
    headers = get_auth_headers(test_user)
    await client.post(f"/api/v1/reports/{rid}/export/html", headers=headers)

    resp = await client.delete(f"/api/v1/reports/{rid}", headers=headers)
    assert resp.status_code == 204
    assert (await client.get(f"/api/v1/reports/{rid}", headers=headers)).status_code == 404

    db_session.expire_all()
    sections = await db_session.execute(select(ReportSection).where(ReportSection.report_id == rid))
    assert sections.scalars().all() == []
    audit = await db_session.execute(select(AuditLog).where(AuditLog.action == "DELETE_REPORT"))
    assert audit.scalars().one().entity_id == rid


@pytest.mark.asyncio
async def test_coordinator_cannot_delete(client: AsyncClient, db_session, test_user, second_user):
    report = await create_report(db_session, test_user)
    resp = await client.delete(f"/api/v1/reports/{report.id}", headers=get_auth_headers(second_user))
    assert resp.status_code == 403


# ── Sections ─────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_sections_append_in_order(client: AsyncClient, db_session, test_user):
    report = await create_report(db_session, test_user)
    headers = get_auth_headers(test_user)
    await _create_sections(client, report.id, headers, ["One", "Two", "Three"])
    assert await _orders(client, report.id, headers) == [("One", 0), ("Two", 1), ("Three", 2)]


@pytest.mark.asyncio
async def test_section_insert_at_position(client: AsyncClient, db_session, test_user):
    report = await create_report(db_session, test_user)
    headers = get_auth_headers(test_user)
    await _create_sections(client, report.id, headers, ["One", "Two"])

    resp = await client.post(
        f"/api/v1/reports/{report.id}/sections",
        json={"title": "Inserted", "type": "TEXT", "content": TEXT, "order": 1},
        headers=headers,
    )
    assert resp.status_code == 201
    assert await _orders(client, report.id, headers) == [("One", 0), ("Inserted", 1), ("Two", 2)]


@pytest.mark.asyncio
async def test_section_content_validated(client: AsyncClient, db_session, test_user):
    report = await create_report(db_session, test_user)
    resp = await client.post(
        f"/api/v1/reports/{report.id}/sections",
        json={"title": "Bad stats", "type": "STATISTICS", "content": {"statistics": [{"value": 1}]}},
        headers=get_auth_headers(test_user),
    )
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_update_section(client: AsyncClient, db_session, test_user):
    report = await create_report(db_session, test_user)
    headers = get_auth_headers(test_user)
    [section_id] = await _create_sections(client, report.id, headers, ["Draft"])

    resp = await client.patch(
        f"/api/v1/reports/{report.id}/sections/{section_id}",
        json={"title": "Final", "is_visible": False, "content": {"text": "<p>Done</p>"}},
        headers=headers,
    )
    assert resp.status_code == 200
    data = resp.json()
    assert (data["title"], data["is_visible"], data["content"]) == ("Final", False, {"text": "<p>Done</p>"})


@pytest.mark.asyncio
async def test_update_section_type_change_revalidates(client: AsyncClient, db_session, test_user):
    report = await create_report(db_session, test_user)
    headers = get_auth_headers(test_user)
    [section_id] = await _create_sections(client, report.id, headers, ["Figures"])

    resp = await client.patch(
        f"/api/v1/reports/{report.id}/sections/{section_id}",
        json={"type": "MAP", "content": {"map": {"locations": [{"name": "X"}]}}},
        headers=headers,
    )
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_update_section_rejects_explicit_nulls(client: AsyncClient, db_session, test_user):
    report = await create_report(db_session, test_user)
    headers = get_auth_headers(test_user)
    [section_id] = await _create_sections(client, report.id, headers, ["Draft"])
    url = f"/api/v1/reports/{report.id}/sections/{section_id}"

    for field in ("title", "type", "content", "is_visible"):
        resp = await client.patch(url, json={field: None}, headers=headers)
        assert resp.status_code == 422, field

    resp = await client.get(f"/api/v1/reports/{report.id}", headers=headers)
    [section] = resp.json()["sections"]
    assert section["title"] == "Draft"


@pytest.mark.asyncio
async def test_delete_section_resequences(client: AsyncClient, db_session, test_user):
    report = await create_report(db_session, test_user)
    headers = get_auth_headers(test_user)
    ids = await _create_sections(client, report.id, headers, ["One", "Two", "Three"])

    resp = await client.delete(f"/api/v1/reports/{report.id}/sections/{ids[0]}", headers=headers)
    assert resp.status_code == 204
    assert await _orders(client, report.id, headers) == [("Two", 0), ("Three", 1)]


@pytest.mark.asyncio
async def test_reorder_sections(client: AsyncClient, db_session, test_user):
    report = await create_report(db_session, test_user)
    headers = get_auth_headers(test_user)
    ids = await _create_sections(client, report.id, headers, ["One", "Two", "Three"])

    resp = await client.put(
        f"/api/v1/reports/{report.id}/sections/order",
        json={"section_ids": [ids[2], ids[0], ids[1]]},
        headers=headers,
    )
    assert resp.status_code == 200
    assert await _orders(client, report.id, headers) == [("Three", 0), ("One", 1), ("Two", 2)]

    audit = await db_session.execute(select(AuditLog).where(AuditLog.action == "REORDER_SECTIONS"))
    assert audit.scalars().one().details == {"section_ids": [ids[2], ids[0], ids[1]]}


@pytest.mark.asyncio
@pytest.mark.parametrize("pick", [
    lambda ids: ids[:2],                     # partial
    lambda ids: [ids[0], ids[0], ids[1]],    # duplicate
    lambda ids: ids[:2] + ["unknown"],       # foreign id
])
async def test_reorder_requires_every_section_once(client: AsyncClient, db_session, test_user, pick):
    report = await create_report(db_session, test_user)
    headers = get_auth_headers(test_user)
    ids = await _create_sections(client, report.id, headers, ["One", "Two", "Three"])

    resp = await client.put(
        f"/api/v1/reports/{report.id}/sections/order",
        json={"section_ids": pick(ids)},
        headers=headers,
    )
    assert resp.status_code == 400
    assert await _orders(client, report.id, headers) == [("One", 0), ("Two", 1), ("Three", 2)]


@pytest.mark.asyncio
async def test_section_of_other_report_not_found(client: AsyncClient, db_session, test_user):
    first = await create_report(db_session, test_user, title="First")
    second = await create_report(db_session, test_user, title="Second")
    headers = get_auth_headers(test_user)
    [section_id] = await _create_sections(client, first.id, headers, ["Only"])

    resp = await client.patch(
        f"/api/v1/reports/{second.id}/sections/{section_id}", json={"title": "X"}, headers=headers,
    )
    assert resp.status_code == 404

