# enrolment_waitlist/utils/offer_tokens.py
"""
Signed accept/decline links for slot offer emails.

Tokens are HS256 JWTs carrying the entry id, the tenant and the intended
action. They expire together with the offer itself.
"""

from datetime import datetime, timezone
from typing import Optional

import jwt

from enrolment_waitlist.core.config import settings

ALGORITHM = "HS256"
VALID_ACTIONS = ("accept", "decline")


def generate_offer_token(
    waitlist_id: str,
    org_id: str,
    action: str,
    expires_at: datetime,
) -> str:
    """
    Generate a response token for one action on one offer.

    Args:
        waitlist_id: Waitlist entry ID
        org_id: Organization that owns the entry
        action: 'accept' or 'decline'
        expires_at: The offer deadline; the token dies with it

    Returns:
        Encoded JWT
    """
    if action not in VALID_ACTIONS:
        raise ValueError(f"Unknown offer action: {action}")

    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)

    return jwt.encode(
        {
            "waitlist_id": waitlist_id,
            "org_id": org_id,
            "action": action,
            "exp": expires_at,
            "iat": datetime.now(timezone.utc),
        },
        settings.OFFER_LINK_SECRET,
        algorithm=ALGORITHM,
    )


def verify_offer_token(token: str, action: str) -> Optional[dict]:
    """
    Decode a response token and check it was issued for `action`.

    Returns:
        The payload, or None if the token is expired, tampered with,
        or was issued for the other action.
    """
    try:
        payload = jwt.decode(token, settings.OFFER_LINK_SECRET, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        return None
    except jwt.InvalidTokenError:
        return None

    if payload.get("action") != action:
        return None
    if not payload.get("waitlist_id") or not payload.get("org_id"):
        return None

    return payload
