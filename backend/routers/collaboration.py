# routers/collaboration.py - WebSocket transport for the collaborative edit channel
import json
import uuid
import logging
from typing import Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, Query
from sqlalchemy import select

from auth import AuthService, CurrentUser
from collaboration import Collaborator, hub
from database import get_db_context
from models import Report, ReportSection

router = APIRouter(tags=["Collaboration"])
logger = logging.getLogger("humanitarian-reports.ws")

CLOSE_AUTH_FAILED = 4001
CLOSE_REPORT_NOT_FOUND = 4004


async def _authenticate(token: Optional[str]) -> Optional[CurrentUser]:
    payload = AuthService.decode_access_token(token) if token else None
    if not payload:
        return None
    async with get_db_context() as db:
        return await AuthService.load_principal(payload["sub"], db)


async def _report_in_org(report_id: str, organisation_id: str) -> bool:
    async with get_db_context() as db:
        result = await db.execute(
            select(Report.id).where(Report.id == report_id, Report.organisation_id == organisation_id)
        )
        return result.scalar_one_or_none() is not None


async def _section_in_report(section_id: str, report_id: str) -> bool:
    async with get_db_context() as db:
        result = await db.execute(
            select(ReportSection.id).where(ReportSection.id == section_id, ReportSection.report_id == report_id)
        )
        return result.scalar_one_or_none() is not None


@router.websocket("/ws/reports/{report_id}")
async def report_channel(
    websocket: WebSocket,
    report_id: str,
    token: Optional[str] = Query(None),
):
    """Live editing room for one report"""
    user = await _authenticate(token)
    if user is None or "reports:collaborate" not in user.permissions:
        await websocket.close(code=CLOSE_AUTH_FAILED, reason="Authentication failed")
        return

    if not await _report_in_org(report_id, user.organisation_id):
        await websocket.close(code=CLOSE_REPORT_NOT_FOUND, reason="Report not found")
        return

    await websocket.accept()
    connection_id = str(uuid.uuid4())
    collaborator = Collaborator(user_id=user.id, name=user.display_name, email=user.email)
    await hub.join(connection_id, report_id, collaborator, websocket.send_json)

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                data = json.loads(raw)
            except ValueError:
                await websocket.send_json({"type": "error", "message": "Invalid JSON"})
                continue
            msg_type = data.get("type", "") if isinstance(data, dict) else ""
            section_id = data.get("sectionId") if isinstance(data, dict) else None

            if msg_type == "ping":
                await websocket.send_json({"type": "pong"})

            elif msg_type == "edit-section":
                if not section_id or not await _section_in_report(section_id, report_id):
                    await websocket.send_json({"type": "error", "message": "Section not found"})
                    continue
                await hub.edit_section(connection_id, section_id, data.get("content"))

            elif msg_type == "typing-start" and section_id:
                await hub.start_typing(connection_id, section_id)

            elif msg_type == "typing-stop" and section_id:
                await hub.stop_typing(connection_id, section_id)

            else:
                await websocket.send_json({"type": "error", "message": f"Unsupported message: {msg_type or 'unknown'}"})

    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error(f"WebSocket error: user={user.id[:8]} report={report_id[:8]}: {e}")
    finally:
        await hub.leave(connection_id)
        logger.info(f"WS closed: user={user.id[:8]} report={report_id[:8]}")


@router.get("/ws/stats")
async def ws_stats():
    return hub.get_stats()
