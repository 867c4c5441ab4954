"""
Share links - opaque capability tokens for anonymous read of a report's HTML view.

A token is valid while it matches the stored one and the report is public.
There is no expiry; rotating the token or clearing `is_public` revokes access.
"""

import hmac
import secrets
import string
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from export_service import ReportNotFound, report_for_render_query
from models import Report

TOKEN_LENGTH = 32
TOKEN_ALPHABET = string.ascii_letters + string.digits


def generate_share_token() -> str:
    return "".join(secrets.choice(TOKEN_ALPHABET) for _ in range(TOKEN_LENGTH))


async def issue_share_token(db: AsyncSession, report: Report) -> str:
    """Return the report's token, creating it on first use. Never rotates."""
    if report.share_token:
        return report.share_token
    report.share_token = generate_share_token()
    await db.commit()
    return report.share_token


async def rotate_share_token(db: AsyncSession, report: Report) -> str:
    report.share_token = generate_share_token()
    await db.commit()
    return report.share_token


def share_url(base_url: str, report_id: str, token: str) -> str:
    return f"{base_url.rstrip('/')}/api/v1/reports/{report_id}/export/html?token={token}"


async def resolve_share_token(db: AsyncSession, report_id: str, token: Optional[str]) -> Report:
    """Load a report for public viewing, or raise ReportNotFound.

    Unknown report, private report and wrong token are indistinguishable.
    """
    if not token:
        raise ReportNotFound(report_id)
    result = await db.execute(
        report_for_render_query().where(Report.id == report_id, Report.is_public.is_(True))
    )
    report = result.scalar_one_or_none()
    if report is None or not report.share_token:
        raise ReportNotFound(report_id)
    if not hmac.compare_digest(report.share_token.encode(), token.encode()):
        raise ReportNotFound(report_id)
    return report
