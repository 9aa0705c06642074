"""
Passwordless sign-in.

A one-time code is issued per email; verifying it creates (or reuses) the
user profile and opens a bearer session. The resulting Identity is what
every protected endpoint hands to the repository and messaging layers.
"""

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

import config
from database import (
    create_document,
    delete_documents,
    find_document,
    get_documents,
    normalize_timestamp,
    update_document,
)
from schemas import AuthCode, Identity, Session, UserProfile

logger = logging.getLogger(__name__)


def _now():
    return datetime.now(timezone.utc)


def _expired(value) -> bool:
    exp = normalize_timestamp(value)
    return exp is None or exp < _now()


def request_code(email: str) -> str:
    # generate 6-digit code
    code = f"{secrets.randbelow(1000000):06d}"
    expires_at = _now() + timedelta(minutes=config.CODE_TTL_MINUTES)
    create_document("authcodes", AuthCode(email=email, code=code, expires_at=expires_at, used=False))
    # In a real deployment the code goes out by email.
    return code


def consume_code(email: str, code: str) -> bool:
    """Mark the newest matching unexpired, unused code as used."""
    codes = get_documents("authcodes", {"email": email}, limit=50, sort=[("created_at", -1)])
    for c in codes:
        if c.get("used") or _expired(c.get("expires_at")):
            continue
        if c.get("code") == code:
            update_document("authcodes", c["id"], {"used": True})
            return True
    return False


def _identity(profile: dict) -> Identity:
    return Identity(
        uid=profile["id"],
        display_name=profile.get("display_name"),
        email=profile["email"],
        photo_url=profile.get("photo_url"),
    )


def sign_in(email: str, display_name: Optional[str] = None, photo_url: Optional[str] = None) -> Tuple[str, Identity]:
    email = email.lower()
    profile = find_document("users", {"email": email})
    if not profile:
        new = UserProfile(display_name=display_name or email.split("@")[0], email=email, photo_url=photo_url)
        user_id = create_document("users", new)
        profile = {"id": user_id, **new.model_dump()}
        logger.info("Created user %s", email)
    else:
        changes = {k: v for k, v in (("display_name", display_name), ("photo_url", photo_url)) if v}
        if changes:
            update_document("users", profile["id"], changes)
            profile.update(changes)

    token = secrets.token_urlsafe(32)
    session = Session(
        user_id=profile["id"],
        email=email,
        token=token,
        expires_at=_now() + timedelta(minutes=config.SESSION_TTL_MINUTES),
    )
    create_document("sessions", session)
    return token, _identity(profile)


def identity_for_token(token: Optional[str]) -> Optional[Identity]:
    if not token:
        return None
    sess = find_document("sessions", {"token": token})
    if not sess or _expired(sess.get("expires_at")):
        return None
    profile = find_document("users", {"email": sess.get("email")})
    if not profile:
        return None
    return _identity(profile)


def sign_out(token: str) -> bool:
    return delete_documents("sessions", {"token": token}) > 0
