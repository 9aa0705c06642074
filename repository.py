"""Request repository: CRUD over the "requests" collection."""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from database import create_document, get_document, get_documents, update_document
from errors import InvalidFieldError, MissingFieldsError, NotFoundError
from schemas import STATUSES, Identity, Request

logger = logging.getLogger(__name__)

COLLECTION = "requests"


def parse_requested_at(value: Optional[str]) -> Optional[datetime]:
    """Parse a local-datetime form value such as ``2026-10-14T09:30``.

    Naive values are kept as wall-clock time and tagged UTC so the weekday
    the requester picked survives the round trip through the store.
    """
    if value is None or not str(value).strip():
        return None
    try:
        parsed = datetime.fromisoformat(str(value).strip())
    except ValueError:
        raise InvalidFieldError(f"Invalid requested_at: {value!r}")
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def create(identity: Identity, fields: Dict[str, Any]) -> str:
    title = (fields.get("title") or "").strip()
    description = (fields.get("description") or "").strip()
    if not title or not description:
        raise MissingFieldsError("Please fill out the required fields.")

    data = {k: v for k, v in fields.items() if k in ("category", "urgency", "contact") and v is not None}
    if isinstance(data.get("urgency"), str):
        data["urgency"] = data["urgency"].lower()
    try:
        request = Request(
            title=fields["title"],
            description=fields["description"],
            requester_id=identity.uid,
            requester_name=identity.display_name,
            requester_email=identity.email,
            status="pending",
            requested_at=parse_requested_at(fields.get("requested_at")),
            **data,
        )
    except ValueError as e:
        raise InvalidFieldError(str(e)) from e
    request_id = create_document(COLLECTION, request)
    logger.info("Request %s created by %s", request_id, identity.email)
    return request_id


def list_all() -> List[dict]:
    return get_documents(COLLECTION, {}, sort=[("created_at", 1), ("_id", 1)])


def list_by_owner(user_id: str) -> List[dict]:
    return get_documents(COLLECTION, {"requester_id": user_id}, sort=[("created_at", 1), ("_id", 1)])


def get(request_id: str) -> dict:
    doc = get_document(COLLECTION, request_id)
    if not doc:
        raise NotFoundError("Request not found")
    return doc


def set_status(request_id: str, status: str) -> None:
    if status not in STATUSES:
        raise InvalidFieldError(f"Invalid status: {status!r}")
    if not update_document(COLLECTION, request_id, {"status": status}):
        raise NotFoundError("Request not found")


def set_volunteer(request_id: str, email: str) -> None:
    # Last write wins; claims are not version-checked
    if not update_document(COLLECTION, request_id, {"volunteer_email": email}):
        raise NotFoundError("Request not found")
