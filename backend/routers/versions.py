"""
Versions Router - report snapshots, comparison and restore.

A version is a whole copy of the report and its sections at save time.
Restoring never rewrites history: the current state is saved as a backup
version first, then the target is applied and recorded as a new version.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from auth import CurrentUser, require_permission
from database import get_db_session
from models import AuditAction, Report, ReportSection, ReportStatus, ReportVersion, User
from routers.reports import _audit, _ordered_sections, _report_dict, _section_dict, get_org_report
from version_history import (
    ChangeType, calculate_diff, compare_snapshots, content_hash, restored_sections, snapshot_report,
)

router = APIRouter(prefix="/api/v1/reports", tags=["Versions"])
logger = logging.getLogger("humanitarian-reports.versions")

HISTORY_LIMIT = 50


# ── Schemas ──────────────────────────────────────────────────

class VersionCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: Optional[str] = Field(None, max_length=500)
    auto_save: bool = Field(False, alias="autoSave")


# ── Helpers ──────────────────────────────────────────────────

def _author(user: Optional[User]) -> Optional[Dict[str, str]]:
    if user is None:
        return None
    return {"id": user.id, "name": user.display_name, "email": user.email}


def _version_dict(version: ReportVersion, author: Optional[User] = None, include_data: bool = False) -> dict:
    data = {
        "id": version.id,
        "report_id": version.report_id,
        "version": version.version,
        "change_type": version.change_type,
        "message": version.message,
        "changes": version.changes,
        "content_hash": version.content_hash,
        "created_by": version.created_by,
        "created_by_user": _author(author),
        "created_at": str(version.created_at),
    }
    if include_data:
        data["data"] = version.data
    return data


async def _latest_version(db: AsyncSession, report_id: str) -> Optional[ReportVersion]:
    result = await db.execute(
        select(ReportVersion)
        .where(ReportVersion.report_id == report_id)
        .order_by(ReportVersion.version.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def record_version(
    db: AsyncSession,
    report: Report,
    sections: List[ReportSection],
    user: CurrentUser,
    change_type: ChangeType,
    message: Optional[str] = None,
    changes: Optional[Dict[str, Any]] = None,
) -> ReportVersion:
    """Snapshot the report as the next version number; the summary defaults to a diff against the latest"""
    data = snapshot_report(report, sections)
    latest = await _latest_version(db, report.id)
    if changes is None and latest is not None:
        changes = calculate_diff(latest.data, data)

    version = ReportVersion(
        report_id=report.id,
        version=(latest.version if latest else 0) + 1,
        change_type=change_type.value,
        data=data,
        changes=changes,
        message=message,
        content_hash=content_hash(data),
        created_by=user.id,
    )
    db.add(version)
    await db.flush()
    return version


async def _get_version(db: AsyncSession, report_id: str, version_id: str) -> ReportVersion:
    result = await db.execute(
        select(ReportVersion).where(ReportVersion.id == version_id, ReportVersion.report_id == report_id)
    )
    version = result.scalar_one_or_none()
    if not version:
        raise HTTPException(status_code=404, detail="Version not found")
    return version


# ── Routes ───────────────────────────────────────────────────

@router.get("/{report_id}/versions")
async def list_versions(
    report_id: str,
    limit: int = Query(HISTORY_LIMIT, ge=1, le=200),
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(require_permission("reports:read")),
):
    """Versions newest first"""
    report = await get_org_report(db, report_id, user)
    result = await db.execute(
        select(ReportVersion, User)
        .outerjoin(User, ReportVersion.created_by == User.id)
        .where(ReportVersion.report_id == report.id)
        .order_by(ReportVersion.version.desc())
        .limit(limit)
    )
    return {"versions": [_version_dict(v, author) for v, author in result.all()]}


@router.post("/{report_id}/versions", status_code=201)
async def create_version(
    report_id: str,
    body: VersionCreate,
    request: Request,
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(require_permission("reports:write")),
):
    report = await get_org_report(db, report_id, user)
    sections = await _ordered_sections(db, report.id)
    change_type = ChangeType.AUTO_SAVE if body.auto_save else ChangeType.SAVE
    version = await record_version(db, report, sections, user, change_type, body.message)

    action = AuditAction.AUTO_SAVE_VERSION if body.auto_save else AuditAction.CREATE_VERSION
    db.add(_audit(
        request, user, action, "ReportVersion", version.id,
        {"report_id": report.id, "version": version.version, "message": body.message},
    ))
    await db.commit()
    logger.info(f"Version saved: report={report.id[:8]} v{version.version} type={change_type.value}")
    return _version_dict(version, include_data=True)


@router.get("/{report_id}/versions/compare")
async def compare_versions(
    report_id: str,
    from_version: Optional[int] = Query(None, alias="from"),
    to_version: Optional[int] = Query(None, alias="to"),
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(require_permission("reports:read")),
):
    if from_version is None or to_version is None:
        raise HTTPException(status_code=400, detail="Both from and to version parameters are required")
    report = await get_org_report(db, report_id, user)

    result = await db.execute(
        select(ReportVersion).where(
            ReportVersion.report_id == report.id,
            ReportVersion.version.in_([from_version, to_version]),
        )
    )
    by_number = {v.version: v for v in result.scalars().all()}
    if from_version not in by_number or to_version not in by_number:
        raise HTTPException(status_code=404, detail="One or both versions not found")

    older, newer = by_number[from_version], by_number[to_version]

    def ref(v: ReportVersion) -> dict:
        return {"version": v.version, "created_at": str(v.created_at), "created_by": v.created_by}

    return {"from": ref(older), "to": ref(newer), "comparison": compare_snapshots(older.data, newer.data)}


@router.get("/{report_id}/versions/{version_id}")
async def get_version(
    report_id: str,
    version_id: str,
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(require_permission("reports:read")),
):
    report = await get_org_report(db, report_id, user)
    version = await _get_version(db, report.id, version_id)
    return _version_dict(version, include_data=True)


@router.post("/{report_id}/versions/{version_id}/restore")
async def restore_version(
    report_id: str,
    version_id: str,
    request: Request,
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(require_permission("reports:write")),
):
    """Replace the report's metadata and whole section list with a stored version"""
    report = await get_org_report(db, report_id, user)
    target = await _get_version(db, report.id, version_id)
    sections = await _ordered_sections(db, report.id)

    await record_version(
        db, report, sections, user, ChangeType.BACKUP,
        f"Backup before restoring version {target.version}",
        changes={"type": ChangeType.BACKUP.value, "restored_from": target.version},
    )

    data = target.data
    report.title = data["title"]
    report.description = data.get("description")
    report.status = ReportStatus(data["status"])

    for section in sections:
        await db.delete(section)
    await db.flush()

    # Stored orders may have gaps; the restored list is renumbered 0..n-1
    restored = [
        ReportSection(
            id=s["id"],
            report_id=report.id,
            title=s["title"],
            type=s["type"],
            content=s.get("content") or {},
            order=s["order"],
            is_visible=s.get("is_visible", True),
        )
        for s in restored_sections(data)
    ]
    db.add_all(restored)
    await db.flush()

    version = await record_version(
        db, report, restored, user, ChangeType.RESTORE,
        f"Restored from version {target.version}",
        changes={"type": ChangeType.RESTORE.value, "restored_from": target.version},
    )
    db.add(_audit(
        request, user, AuditAction.RESTORE_VERSION, "Report", report.id,
        {"version_id": target.id, "restored_version": target.version, "new_version": version.version},
    ))
    await db.commit()
    await db.refresh(report)
    logger.info(f"Version restored: report={report.id[:8]} v{target.version} -> v{version.version}")
    return {
        **_report_dict(report),
        "sections": [_section_dict(s) for s in restored],
        "version": _version_dict(version),
    }
