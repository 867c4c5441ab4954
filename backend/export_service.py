"""
Export orchestration - load a report, run exactly one renderer, track the attempt.

Every call creates one ReportExport row in PROCESSING before rendering and
moves it to COMPLETED or FAILED once the render has returned or raised.
A successful export also appends one EXPORT_REPORT audit row.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from auth import CurrentUser
from document_renderer import DOCX_MIME_TYPE, render_document
from html_renderer import HTML_MIME_TYPE, render_html
from logging_system import LogCategory, TimedOperation, get_logger, log_audit
from models import (
    AuditAction, AuditLog, ExportFormat, ExportStatus, Report, ReportExport, utcnow,
)
from section_model import ReportView, build_report_view
from spreadsheet_renderer import XLSX_MIME_TYPE, render_workbook
from telemetry import render_span

logger = logging.getLogger("humanitarian-reports.export")


class ReportNotFound(Exception):
    """Report missing, outside the caller's organisation, or not shared with this token"""


class UnsupportedExportFormat(ValueError):
    pass


class ExportRenderError(Exception):
    """Rendering failed; the underlying message is kept on the export record"""

    def __init__(self, export_format: ExportFormat, export_id: str, message: str):
        super().__init__(message)
        self.export_format = export_format
        self.export_id = export_id


@dataclass(frozen=True)
class FormatSpec:
    format: ExportFormat
    extension: str
    media_type: str
    render: Callable[[ReportView], bytes]


@dataclass(frozen=True)
class ExportArtifact:
    content: bytes
    media_type: str
    filename: str
    export_format: ExportFormat
    export_id: Optional[str] = None

    @property
    def content_disposition(self) -> str:
        return f'attachment; filename="{self.filename}"'


def _render_html_bytes(view: ReportView) -> bytes:
    return render_html(view).encode("utf-8")


EXPORT_FORMATS: Dict[ExportFormat, FormatSpec] = {
    ExportFormat.EXCEL: FormatSpec(ExportFormat.EXCEL, "xlsx", XLSX_MIME_TYPE, render_workbook),
    ExportFormat.WORD: FormatSpec(ExportFormat.WORD, "docx", DOCX_MIME_TYPE, render_document),
    ExportFormat.HTML: FormatSpec(ExportFormat.HTML, "html", HTML_MIME_TYPE, _render_html_bytes),
}


def parse_export_format(raw: str) -> ExportFormat:
    """Map a path/body value (excel, word, html; any case) to a renderable format"""
    try:
        export_format = ExportFormat(raw.upper())
    except ValueError:
        raise UnsupportedExportFormat(f"Unknown export format: {raw}")
    if export_format not in EXPORT_FORMATS:
        raise UnsupportedExportFormat(f"Export format not supported: {raw}")
    return export_format


def report_for_render_query():
    return select(Report).options(
        selectinload(Report.sections),
        selectinload(Report.assessments),
        selectinload(Report.organisation),
        selectinload(Report.author),
    )


async def load_report_for_render(db: AsyncSession, report_id: str, organisation_id: str) -> Report:
    result = await db.execute(
        report_for_render_query().where(
            Report.id == report_id,
            Report.organisation_id == organisation_id,
        )
    )
    report = result.scalar_one_or_none()
    if report is None:
        raise ReportNotFound(report_id)
    return report


def render_report(report: Report, export_format: ExportFormat) -> bytes:
    """Filter/sort once, then hand the view to the one renderer for this format."""
    fmt_spec = EXPORT_FORMATS[export_format]
    view = build_report_view(report)
    with render_span(export_format.value.lower(), report.id), TimedOperation(
        get_logger(),
        f"render {export_format.value}",
        category=LogCategory.EXPORT,
        metadata={"report_id": report.id, "sections": len(view.sections)},
    ):
        return fmt_spec.render(view)


async def export_report(
    db: AsyncSession,
    report_id: str,
    export_format: ExportFormat,
    user: CurrentUser,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> ExportArtifact:
    report = await load_report_for_render(db, report_id, user.organisation_id)
    fmt_spec = EXPORT_FORMATS[export_format]

    record = ReportExport(
        report_id=report.id,
        requested_by=user.id,
        format=export_format,
        status=ExportStatus.PROCESSING,
    )
    db.add(record)
    await db.commit()

    try:
        content = render_report(report, export_format)
    except Exception as e:
        record.status = ExportStatus.FAILED
        record.error = str(e) or type(e).__name__
        await db.commit()
        logger.error(
            f"Export {record.id[:8]} of report {report.id[:8]} as {export_format.value} failed: {e!r}"
        )
        raise ExportRenderError(export_format, record.id, record.error) from e

    record.status = ExportStatus.COMPLETED
    record.completed_at = utcnow()
    db.add(AuditLog(
        user_id=user.id,
        organisation_id=user.organisation_id,
        action=AuditAction.EXPORT_REPORT.value,
        entity="Report",
        entity_id=report.id,
        details={"format": export_format.value},
        ip_address=ip_address,
        user_agent=user_agent,
    ))
    await db.commit()

    log_audit(
        AuditAction.EXPORT_REPORT.value,
        "Report",
        metadata={"report_id": report.id, "format": export_format.value, "bytes": len(content)},
    )

    return ExportArtifact(
        content=content,
        media_type=fmt_spec.media_type,
        filename=f"{report.slug}.{fmt_spec.extension}",
        export_format=export_format,
        export_id=record.id,
    )
