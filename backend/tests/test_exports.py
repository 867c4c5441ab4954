# tests/test_exports.py - Export endpoint, export records, audit trail, batch ZIP
import io
import json
import zipfile

import pytest
from docx import Document
from httpx import AsyncClient
from openpyxl import load_workbook
from sqlalchemy import select

from models import AuditLog, ExportStatus, ReportExport
from tests.conftest import create_report, get_auth_headers

XLSX = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"

SECTIONS = [
    {"title": "Key Figures", "type": "STATISTICS", "order": 1,
     "content": {"statistics": [{"label": "Beneficiaries", "value": 1200, "unit": "people"}]}},
    {"title": "Draft Notes", "type": "TEXT", "order": 0, "content": {"text": "<p>internal</p>"}, "is_visible": False},
]

BAD_CHART = [
    {"title": "Trend", "type": "CHART", "order": 0,
     "content": {"chart": {"xAxisKey": "month", "dataKey": "total", "data": [{"month": "Jan"}]}}},
]


async def _exports(db_session, report_id):
    result = await db_session.execute(select(ReportExport).where(ReportExport.report_id == report_id))
    return result.scalars().all()


async def _audit_rows(db_session, action):
    result = await db_session.execute(select(AuditLog).where(AuditLog.action == action))
    return result.scalars().all()


@pytest.mark.asyncio
async def test_export_excel(client: AsyncClient, db_session, test_user):
    report = await create_report(db_session, test_user, sections=SECTIONS)
    resp = await client.post(f"/api/v1/reports/{report.id}/export/excel", headers=get_auth_headers(test_user))

    assert resp.status_code == 200
    assert resp.headers["content-type"] == XLSX
    assert resp.headers["content-disposition"] == f'attachment; filename="{report.slug}.xlsx"'

    wb = load_workbook(io.BytesIO(resp.content))
    assert wb.sheetnames == ["Overview", "Statistics 1"]
    assert [c.value for c in wb["Statistics 1"][4]] == ["Beneficiaries", 1200, "people"]
    assert wb["Overview"]["B3"].value == "Relief Coordination Unit"
    assert wb["Overview"]["B4"].value == "Amina Okafor"


@pytest.mark.asyncio
async def test_export_word(client: AsyncClient, db_session, test_user):
    report = await create_report(db_session, test_user, sections=SECTIONS)
    resp = await client.post(f"/api/v1/reports/{report.id}/export/word", headers=get_auth_headers(test_user))

    assert resp.status_code == 200
    assert resp.headers["content-type"] == DOCX
    assert resp.headers["content-disposition"].endswith(f'filename="{report.slug}.docx"')
    doc = Document(io.BytesIO(resp.content))
    headings = [p.text for p in doc.paragraphs if p.style.name == "Heading 1"]
    assert headings == ["Key Figures"]


@pytest.mark.asyncio
async def test_export_html(client: AsyncClient, db_session, test_user):
    report = await create_report(db_session, test_user, sections=SECTIONS)
    resp = await client.post(f"/api/v1/reports/{report.id}/export/HTML", headers=get_auth_headers(test_user))

    assert resp.status_code == 200
    assert resp.headers["content-type"] == "text/html; charset=utf-8"
    assert resp.headers["content-disposition"].endswith(f'filename="{report.slug}.html"')
    assert "Key Figures" in resp.text
    assert "internal" not in resp.text


@pytest.mark.asyncio
async def test_successful_export_completes_record_and_audits(client: AsyncClient, db_session, test_user):
    report = await create_report(db_session, test_user, sections=SECTIONS)
    resp = await client.post(f"/api/v1/reports/{report.id}/export/excel", headers=get_auth_headers(test_user))
    assert resp.status_code == 200

    records = await _exports(db_session, report.id)
    assert len(records) == 1
    assert records[0].status == ExportStatus.COMPLETED
    assert records[0].completed_at is not None
    assert records[0].requested_by == test_user.id
    assert resp.headers["x-export-id"] == records[0].id

    audits = await _audit_rows(db_session, "EXPORT_REPORT")
    assert len(audits) == 1
    assert audits[0].entity == "Report"
    assert audits[0].entity_id == report.id
    assert audits[0].details == {"format": "EXCEL"}
    assert audits[0].user_id == test_user.id


@pytest.mark.asyncio
@pytest.mark.parametrize("fmt", ["excel", "word", "html"])
async def test_render_failure_marks_record_failed(client: AsyncClient, db_session, test_user, fmt):
    report = await create_report(db_session, test_user, sections=BAD_CHART)
    resp = await client.post(f"/api/v1/reports/{report.id}/export/{fmt}", headers=get_auth_headers(test_user))

    assert resp.status_code == 500
    body = resp.json()
    assert body["detail"] == f"Failed to generate {fmt} export"
    assert "total" not in body["detail"]
    assert "request_id" in body

    records = await _exports(db_session, report.id)
    assert len(records) == 1
    assert records[0].status == ExportStatus.FAILED
    assert "total" in records[0].error
    assert await _audit_rows(db_session, "EXPORT_REPORT") == []


@pytest.mark.asyncio
async def test_export_other_organisation_is_not_found(client: AsyncClient, db_session, test_user, other_user):
    report = await create_report(db_session, test_user, sections=SECTIONS)
    resp = await client.post(f"/api/v1/reports/{report.id}/export/excel", headers=get_auth_headers(other_user))

    assert resp.status_code == 404
    assert await _exports(db_session, report.id) == []


@pytest.mark.asyncio
async def test_export_missing_report_is_not_found(client: AsyncClient, test_user):
    resp = await client.post("/api/v1/reports/does-not-exist/export/word", headers=get_auth_headers(test_user))
    assert resp.status_code == 404


@pytest.mark.asyncio
@pytest.mark.parametrize("fmt", ["pdf", "docx", "csv"])
async def test_unsupported_formats_rejected(client: AsyncClient, db_session, test_user, fmt):
    report = await create_report(db_session, test_user, sections=SECTIONS)
    resp = await client.post(f"/api/v1/reports/{report.id}/export/{fmt}", headers=get_auth_headers(test_user))
    assert resp.status_code == 400
    assert await _exports(db_session, report.id) == []


@pytest.mark.asyncio
async def test_export_requires_authentication(client: AsyncClient, db_session, test_user):
    report = await create_report(db_session, test_user, sections=SECTIONS)
    resp = await client.post(f"/api/v1/reports/{report.id}/export/excel")
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_viewer_can_export(client: AsyncClient, db_session, test_user, viewer_user):
    report = await create_report(db_session, test_user, sections=SECTIONS)
    resp = await client.post(f"/api/v1/reports/{report.id}/export/html", headers=get_auth_headers(viewer_user))
    assert resp.status_code == 200


@pytest.mark.asyncio
async def test_export_history(client: AsyncClient, db_session, test_user):
    report = await create_report(db_session, test_user, sections=SECTIONS)
    headers = get_auth_headers(test_user)
    await client.post(f"/api/v1/reports/{report.id}/export/excel", headers=headers)
    await client.post(f"/api/v1/reports/{report.id}/export/word", headers=headers)

    resp = await client.get(f"/api/v1/reports/{report.id}/exports", headers=headers)
    assert resp.status_code == 200
    exports = resp.json()["exports"]
    assert [e["format"] for e in exports] == ["WORD", "EXCEL"]
    assert all(e["status"] == "COMPLETED" for e in exports)


@pytest.mark.asyncio
async def test_batch_export_zip(client: AsyncClient, db_session, test_user):
    first = await create_report(db_session, test_user, title="Flood Update", sections=SECTIONS)
    second = await create_report(db_session, test_user, title="Cholera Watch", sections=SECTIONS)

    resp = await client.post(
        "/api/v1/reports/batch-export",
        json={"reportIds": [first.id, second.id], "format": "excel"},
        headers=get_auth_headers(test_user),
    )
    assert resp.status_code == 200
    assert resp.headers["content-type"] == "application/zip"

    archive = zipfile.ZipFile(io.BytesIO(resp.content))
    names = set(archive.namelist())
    assert names == {
        f"{first.slug}_{first.id[-6:]}.xlsx",
        f"{second.slug}_{second.id[-6:]}.xlsx",
        "manifest.json",
    }
    manifest = json.loads(archive.read("manifest.json"))
    assert manifest["reportCount"] == 2
    assert manifest["organization"] == "Relief Coordination Unit"
    assert [r["title"] for r in manifest["reports"]] == ["Flood Update", "Cholera Watch"]

    wb = load_workbook(io.BytesIO(archive.read(f"{first.slug}_{first.id[-6:]}.xlsx")))
    assert "Statistics 1" in wb.sheetnames

    assert len(await _exports(db_session, first.id)) == 1
    assert len(await _exports(db_session, second.id)) == 1
    assert len(await _audit_rows(db_session, "EXPORT_REPORT")) == 2


@pytest.mark.asyncio
async def test_batch_export_rejects_foreign_reports(client: AsyncClient, db_session, test_user, other_user):
    mine = await create_report(db_session, test_user, title="Flood Update", sections=SECTIONS)
    theirs = await create_report(db_session, other_user, title="Their Report", sections=SECTIONS)

    resp = await client.post(
        "/api/v1/reports/batch-export",
        json={"reportIds": [mine.id, theirs.id], "format": "html"},
        headers=get_auth_headers(test_user),
    )
    assert resp.status_code == 404
    assert await _exports(db_session, mine.id) == []


@pytest.mark.asyncio
async def test_batch_export_unknown_format(client: AsyncClient, db_session, test_user):
    report = await create_report(db_session, test_user, sections=SECTIONS)
    resp = await client.post(
        "/api/v1/reports/batch-export",
        json={"reportIds": [report.id], "format": "pdf"},
        headers=get_auth_headers(test_user),
    )
    assert resp.status_code == 400
