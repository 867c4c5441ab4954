"""
Reports Router - report and section management, share links.

Every query is scoped to the caller's organisation; a report owned by
another organisation is reported as missing. Each mutation appends one
AuditLog row in the same transaction.
"""

import os
import re
import time
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field, ValidationError, field_validator
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from auth import CurrentUser, require_permission
from database import get_db_session
from models import (
    AuditAction, AuditLog, Report, ReportSection, ReportStatus,
)
from section_model import parse_section_content
from share_links import issue_share_token, rotate_share_token, share_url

router = APIRouter(prefix="/api/v1/reports", tags=["Reports"])
logger = logging.getLogger("humanitarian-reports.reports")

PUBLIC_APP_URL = os.getenv("PUBLIC_APP_URL", "")


# ── Schemas ──────────────────────────────────────────────────

class ReportCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=500)
    description: Optional[str] = None
    status: ReportStatus = ReportStatus.DRAFT
    is_public: bool = False


class ReportUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=500)
    description: Optional[str] = None
    status: Optional[ReportStatus] = None
    is_public: Optional[bool] = None

    @field_validator("title", "status", "is_public")
    @classmethod
    def not_null(cls, v):
        if v is None:
            raise ValueError("May be omitted but not null")
        return v


class SectionCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=500)
    type: str
    content: Dict[str, Any] = {}
    order: Optional[int] = Field(None, ge=0)
    is_visible: bool = True


class SectionUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=500)
    type: Optional[str] = None
    content: Optional[Dict[str, Any]] = None
    is_visible: Optional[bool] = None

    @field_validator("title", "type", "content", "is_visible")
    @classmethod
    def not_null(cls, v):
        if v is None:
            raise ValueError("May be omitted but not null")
        return v


class SectionOrder(BaseModel):
    section_ids: List[str]


# ── Helpers ──────────────────────────────────────────────────

def make_slug(title: str, now_ms: Optional[int] = None) -> str:
    """Lower-case, hyphenated, ASCII-only title plus a millisecond suffix"""
    base = re.sub(r"\s+", "-", title.strip().lower())
    base = re.sub(r"[^a-z0-9-]", "", base)
    stamp = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"{base}-{stamp}" if base else str(stamp)


def _validate_content(section_type: str, content: Dict[str, Any]) -> None:
    try:
        parse_section_content(section_type, content)
    except ValidationError as e:
        raise HTTPException(
            status_code=422,
            detail=[{"loc": list(err["loc"]), "msg": err["msg"], "type": err["type"]} for err in e.errors()],
        )


def _report_dict(report: Report) -> dict:
    return {
        "id": report.id,
        "title": report.title,
        "slug": report.slug,
        "description": report.description,
        "status": report.status.value if isinstance(report.status, ReportStatus) else report.status,
        "is_public": report.is_public,
        "author_id": report.author_id,
        "organisation_id": report.organisation_id,
        "created_at": str(report.created_at),
        "updated_at": str(report.updated_at),
    }


def _section_dict(section: ReportSection) -> dict:
    return {
        "id": section.id,
        "title": section.title,
        "type": section.type,
        "content": section.content,
        "order": section.order,
        "is_visible": section.is_visible,
    }


def _audit(request: Request, user: CurrentUser, action: AuditAction, entity: str, entity_id: str,
           details: Optional[dict] = None) -> AuditLog:
    return AuditLog(
        user_id=user.id,
        organisation_id=user.organisation_id,
        action=action.value,
        entity=entity,
        entity_id=entity_id,
        details=details or {},
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )


async def get_org_report(db: AsyncSession, report_id: str, user: CurrentUser) -> Report:
    result = await db.execute(
        select(Report).where(Report.id == report_id, Report.organisation_id == user.organisation_id)
    )
    report = result.scalar_one_or_none()
    if not report:
        raise HTTPException(status_code=404, detail="Report not found")
    return report


async def _ordered_sections(db: AsyncSession, report_id: str) -> List[ReportSection]:
    result = await db.execute(
        select(ReportSection).where(ReportSection.report_id == report_id).order_by(ReportSection.order)
    )
    return list(result.scalars().all())


async def _resequence(db: AsyncSession, sections: List[ReportSection]) -> None:
    """Assign dense orders 0..n-1 in list order.

    Two flushes: first to distinct negative placeholders, then to the final
    values, so (report_id, order) stays unique after every statement.
    Placeholders start below -len(sections) to stay clear of a freshly
    inserted section's temporary order.
    """
    for i, section in enumerate(sections):
        section.order = -(i + 1 + len(sections))
    await db.flush()
    for i, section in enumerate(sections):
        section.order = i
    await db.flush()


def _base_url(request: Request) -> str:
    return PUBLIC_APP_URL or str(request.base_url)


# ── Reports ──────────────────────────────────────────────────

@router.post("/", status_code=201)
async def create_report(
    body: ReportCreate,
    request: Request,
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(require_permission("reports:write")),
):
    report = Report(
        organisation_id=user.organisation_id,
        author_id=user.id,
        title=body.title,
        slug=make_slug(body.title),
        description=body.description,
        status=body.status,
        is_public=body.is_public,
    )
    db.add(report)
    await db.flush()
    db.add(_audit(request, user, AuditAction.CREATE_REPORT, "Report", report.id, {"title": body.title}))
    await db.commit()
    await db.refresh(report)
    logger.info(f"Report created: {report.id[:8]} slug={report.slug}")
    return _report_dict(report)


@router.get("/")
async def list_reports(
    status: Optional[ReportStatus] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(require_permission("reports:read")),
):
    query = select(Report).where(Report.organisation_id == user.organisation_id)
    if status:
        query = query.where(Report.status == status)

    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar()
    result = await db.execute(query.order_by(Report.updated_at.desc()).offset(skip).limit(limit))
    return {"reports": [_report_dict(r) for r in result.scalars().all()], "total": total}


@router.get("/{report_id}")
async def get_report(
    report_id: str,
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(require_permission("reports:read")),
):
    report = await get_org_report(db, report_id, user)
    sections = await _ordered_sections(db, report.id)
    return {**_report_dict(report), "sections": [_section_dict(s) for s in sections]}


@router.patch("/{report_id}")
async def update_report(
    report_id: str,
    body: ReportUpdate,
    request: Request,
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(require_permission("reports:write")),
):
    report = await get_org_report(db, report_id, user)
    changes = body.model_dump(exclude_unset=True)
    for field_name, value in changes.items():
        setattr(report, field_name, value)

    db.add(_audit(
        request, user, AuditAction.UPDATE_REPORT, "Report", report.id,
        {"fields": sorted(changes.keys())},
    ))
    await db.commit()
    await db.refresh(report)
    return _report_dict(report)


@router.delete("/{report_id}", status_code=204)
async def delete_report(
    report_id: str,
    request: Request,
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(require_permission("reports:delete")),
):
    report = await get_org_report(db, report_id, user)
    db.add(_audit(request, user, AuditAction.DELETE_REPORT, "Report", report.id, {"title": report.title}))
    await db.delete(report)
    await db.commit()
    logger.info(f"Report deleted: {report_id[:8]}")


# ── Sections ─────────────────────────────────────────────────

@router.post("/{report_id}/sections", status_code=201)
async def create_section(
    report_id: str,
    body: SectionCreate,
    request: Request,
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(require_permission("reports:write")),
):
    report = await get_org_report(db, report_id, user)
    _validate_content(body.type, body.content)

    existing = await _ordered_sections(db, report.id)
    section = ReportSection(
        report_id=report.id,
        title=body.title,
        type=body.type,
        content=body.content,
        is_visible=body.is_visible,
    )

    if body.order is None or body.order >= len(existing):
        section.order = existing[-1].order + 1 if existing else 0
        db.add(section)
        await db.flush()
    else:
        # Insert at the requested position and shift the rest down
        section.order = -(len(existing) + 1)
        db.add(section)
        await db.flush()
        existing.insert(body.order, section)
        await _resequence(db, existing)

    db.add(_audit(
        request, user, AuditAction.CREATE_SECTION, "ReportSection", section.id,
        {"report_id": report.id, "type": body.type},
    ))
    await db.commit()
    await db.refresh(section)
    return _section_dict(section)


@router.patch("/{report_id}/sections/{section_id}")
async def update_section(
    report_id: str,
    section_id: str,
    body: SectionUpdate,
    request: Request,
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(require_permission("reports:write")),
):
    report = await get_org_report(db, report_id, user)
    result = await db.execute(
        select(ReportSection).where(ReportSection.id == section_id, ReportSection.report_id == report.id)
    )
    section = result.scalar_one_or_none()
    if not section:
        raise HTTPException(status_code=404, detail="Section not found")

    changes = body.model_dump(exclude_unset=True)
    if "type" in changes or "content" in changes:
        new_type = changes.get("type", section.type)
        new_content = changes.get("content", section.content)
        _validate_content(new_type, new_content or {})

    for field_name, value in changes.items():
        setattr(section, field_name, value)

    db.add(_audit(
        request, user, AuditAction.UPDATE_SECTION, "ReportSection", section.id,
        {"report_id": report.id, "fields": sorted(changes.keys())},
    ))
    await db.commit()
    await db.refresh(section)
    return _section_dict(section)


@router.delete("/{report_id}/sections/{section_id}", status_code=204)
async def delete_section(
    report_id: str,
    section_id: str,
    request: Request,
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(require_permission("reports:write")),
):
    report = await get_org_report(db, report_id, user)
    sections = await _ordered_sections(db, report.id)
    target = next((s for s in sections if s.id == section_id), None)
    if target is None:
        raise HTTPException(status_code=404, detail="Section not found")

    await db.delete(target)
    await db.flush()
    await _resequence(db, [s for s in sections if s.id != section_id])

    db.add(_audit(
        request, user, AuditAction.DELETE_SECTION, "ReportSection", section_id,
        {"report_id": report.id, "title": target.title},
    ))
    await db.commit()


@router.put("/{report_id}/sections/order")
async def reorder_sections(
    report_id: str,
    body: SectionOrder,
    request: Request,
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(require_permission("reports:write")),
):
    report = await get_org_report(db, report_id, user)
    sections = await _ordered_sections(db, report.id)
    by_id = {s.id: s for s in sections}

    if len(body.section_ids) != len(by_id) or set(body.section_ids) != set(by_id):
        raise HTTPException(
            status_code=400,
            detail="section_ids must list every section of the report exactly once",
        )

    ordered = [by_id[sid] for sid in body.section_ids]
    await _resequence(db, ordered)
    db.add(_audit(
        request, user, AuditAction.REORDER_SECTIONS, "Report", report.id,
        {"section_ids": body.section_ids},
    ))
    await db.commit()
    return {"sections": [_section_dict(s) for s in ordered]}


# ── Share links ──────────────────────────────────────────────

@router.get("/{report_id}/share")
async def get_share_link(
    report_id: str,
    request: Request,
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(require_permission("reports:share")),
):
    report = await get_org_report(db, report_id, user)
    had_token = bool(report.share_token)
    token = await issue_share_token(db, report)
    if not had_token:
        db.add(_audit(request, user, AuditAction.SHARE_REPORT, "Report", report.id))
        await db.commit()
    return {"shareUrl": share_url(_base_url(request), report.id, token), "shareToken": token}


@router.post("/{report_id}/share/rotate")
async def rotate_share_link(
    report_id: str,
    request: Request,
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(require_permission("reports:share")),
):
    report = await get_org_report(db, report_id, user)
    db.add(_audit(request, user, AuditAction.ROTATE_SHARE_TOKEN, "Report", report.id))
    token = await rotate_share_token(db, report)
    logger.info(f"Share token rotated for report {report.id[:8]}")
    return {"shareUrl": share_url(_base_url(request), report.id, token), "shareToken": token}
