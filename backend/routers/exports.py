"""
Exports Router - authenticated downloads, public share view, export history,
batch ZIP export.

Authenticated exports go through `export_service.export_report`, so each one
leaves a terminal ReportExport row. The public share view renders HTML only
and records nothing.
"""

import io
import json
import time
import logging
import zipfile
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import Response
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from auth import CurrentUser, require_permission
from database import get_db_session
from export_service import (
    EXPORT_FORMATS, UnsupportedExportFormat, export_report, parse_export_format, render_report,
)
from html_renderer import HTML_MIME_TYPE
from models import ExportFormat, Report, ReportExport, ReportStatus
from routers.reports import get_org_report
from share_links import resolve_share_token

router = APIRouter(prefix="/api/v1/reports", tags=["Exports"])
logger = logging.getLogger("humanitarian-reports.exports")


class BatchExportRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    report_ids: List[str] = Field(..., alias="reportIds", min_length=1, max_length=100)
    format: str


def _format_or_400(raw: str) -> ExportFormat:
    try:
        return parse_export_format(raw)
    except UnsupportedExportFormat as e:
        raise HTTPException(status_code=400, detail=str(e))


def _client_ip(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


# ── Batch export ─────────────────────────────────────────────
# Declared before the per-report routes so "batch-export" never binds to {report_id}.

@router.post("/batch-export")
async def batch_export(
    body: BatchExportRequest,
    request: Request,
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(require_permission("reports:export")),
):
    export_format = _format_or_400(body.format)
    report_ids = list(dict.fromkeys(body.report_ids))

    result = await db.execute(
        select(Report)
        .options(selectinload(Report.author), selectinload(Report.organisation))
        .where(Report.id.in_(report_ids), Report.organisation_id == user.organisation_id)
    )
    reports = {r.id: r for r in result.scalars().all()}
    if len(reports) != len(report_ids):
        raise HTTPException(status_code=404, detail="Some reports were not found or you do not have access")

    extension = EXPORT_FORMATS[export_format].extension
    manifest_entries = []
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for report_id in report_ids:
            report = reports[report_id]
            artifact = await export_report(
                db, report_id, export_format, user,
                ip_address=_client_ip(request),
                user_agent=request.headers.get("user-agent"),
            )
            member = f"{report.slug}_{report.id[-6:]}.{extension}"
            archive.writestr(member, artifact.content)
            manifest_entries.append({
                "id": report.id,
                "title": report.title,
                "status": report.status.value if isinstance(report.status, ReportStatus) else report.status,
                "author": report.author.display_name if report.author else "",
                "file": member,
                "exportId": artifact.export_id,
            })

        organisation = next(iter(reports.values())).organisation
        manifest = {
            "exportDate": datetime.now(timezone.utc).isoformat(),
            "organization": organisation.name if organisation else "",
            "reportCount": len(manifest_entries),
            "format": export_format.value,
            "reports": manifest_entries,
        }
        archive.writestr("manifest.json", json.dumps(manifest, indent=2))

    logger.info(f"Batch export of {len(report_ids)} reports as {export_format.value}")
    filename = f"reports_export_{int(time.time() * 1000)}.zip"
    return Response(
        content=buf.getvalue(),
        media_type="application/zip",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# ── Single report ────────────────────────────────────────────

@router.post("/{report_id}/export/{export_format}")
async def export_single(
    report_id: str,
    export_format: str,
    request: Request,
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(require_permission("reports:export")),
):
    """Render one report and return the file as an attachment"""
    fmt = _format_or_400(export_format)
    artifact = await export_report(
        db, report_id, fmt, user,
        ip_address=_client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    return Response(
        content=artifact.content,
        media_type=artifact.media_type,
        headers={
            "Content-Disposition": artifact.content_disposition,
            "X-Export-Id": artifact.export_id or "",
        },
    )


@router.get("/{report_id}/export/html")
async def public_html_view(
    report_id: str,
    token: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db_session),
):
    """Anonymous share-link view. Unknown, private and wrong-token all look alike."""
    report = await resolve_share_token(db, report_id, token)
    content = render_report(report, ExportFormat.HTML)
    return Response(content=content, media_type=HTML_MIME_TYPE)


@router.get("/{report_id}/exports")
async def export_history(
    report_id: str,
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(require_permission("reports:read")),
):
    report = await get_org_report(db, report_id, user)
    result = await db.execute(
        select(ReportExport)
        .where(ReportExport.report_id == report.id)
        .order_by(ReportExport.created_at.desc())
        .limit(limit)
    )
    return {
        "exports": [
            {
                "id": e.id,
                "format": e.format.value,
                "status": e.status.value,
                "error": e.error,
                "requested_by": e.requested_by,
                "created_at": str(e.created_at),
                "completed_at": str(e.completed_at) if e.completed_at else None,
            }
            for e in result.scalars().all()
        ]
    }
