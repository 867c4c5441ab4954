"""
Collaborative edit channel - publish/subscribe per report room.

A room exists while at least one connection is joined to it. Edits are
fanned out to every other connection in the room and applied by receivers
as last-writer-wins overwrites; nothing here persists content. Typing
indicators expire on their own after `typing_timeout` seconds.

Transport-agnostic: each participant registers an async `send` callable,
so the WebSocket router and the tests drive the same hub.
"""

import os
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

logger = logging.getLogger("humanitarian-reports.collaboration")

TYPING_TIMEOUT_SECONDS = float(os.getenv("TYPING_TIMEOUT_SECONDS", "1.0"))

Send = Callable[[Dict[str, Any]], Awaitable[None]]


@dataclass(frozen=True)
class Collaborator:
    user_id: str
    name: str
    email: str = ""

    def to_dict(self) -> Dict[str, str]:
        return {"id": self.user_id, "name": self.name, "email": self.email}


@dataclass
class Participant:
    connection_id: str
    report_id: str
    collaborator: Collaborator
    send: Send
    joined_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class Room:
    report_id: str
    participants: Dict[str, Participant] = field(default_factory=dict)
    # (connection_id, section_id) -> expiry task
    typing: Dict[Tuple[str, str], asyncio.Task] = field(default_factory=dict)

    def collaborators(self) -> List[Dict[str, str]]:
        """Distinct users in join order; a user with two sockets is listed once"""
        seen: Dict[str, Dict[str, str]] = {}
        for participant in self.participants.values():
            seen.setdefault(participant.collaborator.user_id, participant.collaborator.to_dict())
        return list(seen.values())


class CollaborationHub:
    """Rooms keyed by report id, participants keyed by connection id"""

    def __init__(self, typing_timeout: float = TYPING_TIMEOUT_SECONDS):
        self.typing_timeout = typing_timeout
        self._rooms: Dict[str, Room] = {}
        self._connections: Dict[str, Participant] = {}

    # ── Presence ─────────────────────────────────────────────

    async def join(self, connection_id: str, report_id: str, collaborator: Collaborator, send: Send) -> None:
        room = self._rooms.setdefault(report_id, Room(report_id=report_id))
        already_present = self._user_connected(room, collaborator.user_id)
        participant = Participant(connection_id, report_id, collaborator, send)
        room.participants[connection_id] = participant
        self._connections[connection_id] = participant
        logger.info(
            f"Collaborator joined: user={collaborator.user_id[:8]} report={report_id[:8]} "
            f"connections={len(room.participants)}"
        )

        collaborators = room.collaborators()
        if not await self._deliver(participant, {"type": "current-collaborators", "collaborators": collaborators}):
            # Never announced to the room, so nobody is told it left
            self._discard(connection_id)
            return
        if already_present:
            return
        await self._broadcast(room, {
            "type": "collaborator-joined",
            "user": collaborator.to_dict(),
            "collaborators": collaborators,
        }, exclude=connection_id)

    async def leave(self, connection_id: str) -> None:
        """Remove a connection; safe to call more than once"""
        participant = self._connections.get(connection_id)
        room = self._discard(connection_id)
        if participant is None or room is None:
            return

        for key in [k for k in room.typing if k[0] == connection_id]:
            room.typing.pop(key).cancel()
            await self._broadcast(room, self._typing_frame("typing-stop", key[1], participant))

        # Another tab of the same user keeps them in the room
        if self._user_connected(room, participant.collaborator.user_id):
            return
        await self._broadcast(room, {
            "type": "collaborator-left",
            "userId": participant.collaborator.user_id,
            "userName": participant.collaborator.name,
        })

    def _discard(self, connection_id: str) -> Optional[Room]:
        """Drop a connection without telling anyone; returns its room if still open"""
        participant = self._connections.pop(connection_id, None)
        if participant is None:
            return None
        room = self._rooms.get(participant.report_id)
        if room is None:
            return None
        room.participants.pop(connection_id, None)
        if not room.participants:
            for task in room.typing.values():
                task.cancel()
            del self._rooms[participant.report_id]
            logger.info(f"Room closed: report={participant.report_id[:8]}")
            return None
        return room

    @staticmethod
    def _user_connected(room: Room, user_id: str) -> bool:
        return any(p.collaborator.user_id == user_id for p in room.participants.values())

    # ── Edits ────────────────────────────────────────────────

    async def edit_section(self, connection_id: str, section_id: str, content: Any) -> Dict[str, Any]:
        """Fan an edit out to everyone else in the room; returns the frame sent"""
        participant, room = self._lookup(connection_id)
        frame = {
            "type": "section-updated",
            "sectionId": section_id,
            "content": content,
            "userId": participant.collaborator.user_id,
            "userName": participant.collaborator.name,
            "timestamp": int(datetime.now(timezone.utc).timestamp() * 1000),
        }
        await self._broadcast(room, frame, exclude=connection_id)
        return frame

    # ── Typing indicators ────────────────────────────────────

    async def start_typing(self, connection_id: str, section_id: str) -> None:
        participant, room = self._lookup(connection_id)
        key = (connection_id, section_id)
        existing = room.typing.pop(key, None)
        if existing is not None:
            existing.cancel()
        else:
            await self._broadcast(room, self._typing_frame("typing-start", section_id, participant), exclude=connection_id)
        room.typing[key] = asyncio.create_task(self._expire_typing(room, key, participant))

    async def stop_typing(self, connection_id: str, section_id: str) -> None:
        participant, room = self._lookup(connection_id)
        task = room.typing.pop((connection_id, section_id), None)
        if task is None:
            return
        task.cancel()
        await self._broadcast(room, self._typing_frame("typing-stop", section_id, participant), exclude=connection_id)

    async def _expire_typing(self, room: Room, key: Tuple[str, str], participant: Participant) -> None:
        await asyncio.sleep(self.typing_timeout)
        if room.typing.get(key) is not asyncio.current_task():
            return
        del room.typing[key]
        await self._broadcast(room, self._typing_frame("typing-stop", key[1], participant), exclude=key[0])

    def is_typing(self, connection_id: str, section_id: str) -> bool:
        participant = self._connections.get(connection_id)
        if participant is None:
            return False
        room = self._rooms.get(participant.report_id)
        return room is not None and (connection_id, section_id) in room.typing

    @staticmethod
    def _typing_frame(kind: str, section_id: str, participant: Participant) -> Dict[str, Any]:
        return {"type": kind, "sectionId": section_id, "user": participant.collaborator.to_dict()}

    # ── Delivery ─────────────────────────────────────────────

    def _lookup(self, connection_id: str) -> Tuple[Participant, Room]:
        participant = self._connections.get(connection_id)
        if participant is None:
            raise KeyError(f"Connection {connection_id} is not in a report room")
        return participant, self._rooms[participant.report_id]

    async def _deliver(self, participant: Participant, frame: Dict[str, Any]) -> bool:
        try:
            await participant.send(frame)
            return True
        except Exception as e:
            logger.warning(f"Dropping connection {participant.connection_id[:8]}: {e!r}")
            return False

    async def _broadcast(self, room: Room, frame: Dict[str, Any], exclude: Optional[str] = None) -> None:
        failed = []
        for connection_id, participant in list(room.participants.items()):
            if connection_id == exclude:
                continue
            if not await self._deliver(participant, frame):
                failed.append(connection_id)
        for connection_id in failed:
            await self.leave(connection_id)

    # ── Introspection ────────────────────────────────────────

    def collaborators(self, report_id: str) -> List[Dict[str, str]]:
        room = self._rooms.get(report_id)
        return room.collaborators() if room else []

    def get_stats(self) -> Dict[str, int]:
        return {
            "rooms": len(self._rooms),
            "connections": len(self._connections),
            "typing": sum(len(room.typing) for room in self._rooms.values()),
        }


class ReportReplica:
    """A participant's local copy of section content.

    Applies `section-updated` frames in arrival order; the last one applied
    for a section wins. Other frame types are ignored.
    """

    def __init__(self, sections: Optional[Dict[str, Any]] = None):
        self.sections: Dict[str, Any] = dict(sections or {})
        self.last_editor: Dict[str, str] = {}

    def apply(self, frame: Dict[str, Any]) -> bool:
        if frame.get("type") != "section-updated" or "sectionId" not in frame:
            return False
        section_id = frame["sectionId"]
        self.sections[section_id] = frame.get("content")
        if frame.get("userId"):
            self.last_editor[section_id] = frame["userId"]
        return True


# Global hub
hub = CollaborationHub()
