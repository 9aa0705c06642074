"""Make sure every volunteered request has exactly one chat."""

import logging
from typing import List, Optional

import repository
from database import create_document, get_documents
from messaging import ROOM_KINDS
from schemas import ChatRoom, Identity

logger = logging.getLogger(__name__)

CHATS = ROOM_KINDS["chats"].collection


def ensure_chat_exists(request: dict) -> Optional[str]:
    """Get or create the chat for a volunteered request, returning its id.

    Check-then-create: two callers racing on the same request can both see
    no chat and both create one.
    """
    volunteer = request.get("volunteer_email")
    if not volunteer:
        return None
    existing = get_documents(CHATS, {"request_id": request["id"]}, limit=1)
    if existing:
        return existing[0]["id"]
    chat = ChatRoom(
        request_id=request["id"],
        request_title=request.get("title") or "",
        participants=[request["requester_email"], volunteer],
    )
    chat_id = create_document(CHATS, chat)
    logger.info("Chat %s created for request %s", chat_id, request["id"])
    return chat_id


def reconcile_owner_requests(identity: Identity) -> List[str]:
    """Open chats for the viewer's own requests that picked up a volunteer."""
    chat_ids = []
    for request in repository.list_by_owner(identity.uid):
        if request.get("volunteer_email"):
            chat_ids.append(ensure_chat_exists(request))
    return chat_ids
