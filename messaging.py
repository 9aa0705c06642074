"""
Chat and discussion-board store operations.

Two room kinds share one message shape:
- "chats": one chat per volunteered request, two participants
- "boards": topic boards anyone may create and join

Messages for a room live in "<room collection>.messages" keyed by room_id.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Dict, List, NamedTuple, Optional

from database import create_document, get_document, get_documents, update_document
from errors import InvalidFieldError, MissingFieldsError, NotFoundError, PermissionDeniedError
from realtime import Snapshot, Unsubscribe, hub
from schemas import DiscussionBoard, Identity, Message

logger = logging.getLogger(__name__)


class RoomKind(NamedTuple):
    name: str
    collection: str
    members_only: bool  # list only rooms the viewer belongs to, and only let members post

    @property
    def messages(self) -> str:
        return f"{self.collection}.messages"


ROOM_KINDS: Dict[str, RoomKind] = {
    "chats": RoomKind("chats", "chats", True),
    "boards": RoomKind("boards", "discussionBoards", False),
}

MESSAGE_ORDER = [("timestamp", 1), ("_id", 1)]


def room_kind(kind: str) -> RoomKind:
    try:
        return ROOM_KINDS[kind]
    except KeyError:
        raise NotFoundError(f"Unknown room kind: {kind}")


def _room_filter(kind: RoomKind, identity: Identity) -> dict:
    return {"participants": identity.email} if kind.members_only else {}


def list_rooms(kind: str, identity: Identity) -> List[dict]:
    rk = room_kind(kind)
    return get_documents(rk.collection, _room_filter(rk, identity), sort=[("_id", 1)])


def subscribe_rooms(kind: str, identity: Identity, callback: Callable[[Snapshot], None]) -> Unsubscribe:
    rk = room_kind(kind)
    return hub.subscribe(rk.collection, _room_filter(rk, identity), callback, sort=[("_id", 1)])


def get_room(kind: str, room_id: str) -> dict:
    room = get_document(room_kind(kind).collection, room_id)
    if not room:
        raise NotFoundError("Room not found")
    return room


def list_messages(kind: str, room_id: str) -> List[dict]:
    return get_documents(room_kind(kind).messages, {"room_id": room_id}, sort=MESSAGE_ORDER)


def subscribe_messages(kind: str, room_id: str, callback: Callable[[Snapshot], None]) -> Unsubscribe:
    return hub.subscribe(room_kind(kind).messages, {"room_id": room_id}, callback, sort=MESSAGE_ORDER)


def send_message(kind: str, room_id: str, identity: Identity, text: Optional[str]) -> Optional[str]:
    """Append a message to a room. Blank text is ignored and returns None."""
    if not text or not text.strip():
        return None
    rk = room_kind(kind)
    room = get_room(kind, room_id)
    if rk.members_only and identity.email not in room.get("participants", []):
        raise PermissionDeniedError("Sender not in conversation")
    try:
        message = Message(
            room_id=room["id"],
            text=text,
            sender_email=identity.email,
            timestamp=datetime.now(timezone.utc),
        )
    except ValueError as e:
        raise InvalidFieldError(str(e)) from e
    return create_document(rk.messages, message)


def join_board(board_id: str, identity: Identity) -> List[str]:
    """Add the caller to a board's participants unless already there.

    The whole list is rewritten, so two simultaneous joins can drop one of
    them.
    """
    board = get_room("boards", board_id)
    participants = list(board.get("participants") or [])
    if identity.email in participants:
        return participants
    participants.append(identity.email)
    update_document(ROOM_KINDS["boards"].collection, board_id, {"participants": participants})
    logger.info("%s joined board %s", identity.email, board_id)
    return participants


def create_board(identity: Identity, title: Optional[str], description: Optional[str] = "") -> dict:
    """Create a board with the creator as its only participant.

    Returns the board as known locally, without waiting for a read back.
    """
    if not title or not title.strip():
        raise MissingFieldsError("Please fill out the required fields.")
    board = DiscussionBoard(
        title=title,
        description=description or "",
        participants=[identity.email],
        created_by=identity.email,
    )
    board_id = create_document(ROOM_KINDS["boards"].collection, board)
    logger.info("Board %s created by %s", board_id, identity.email)
    return {"id": board_id, **board.model_dump()}
