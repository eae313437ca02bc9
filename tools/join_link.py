"""Shareable join links.

A link carries the session identifier and the role the person opening it
will take, which is always the counterpart of whoever shared it.
"""

from typing import Tuple
from urllib.parse import parse_qs, urlencode, urlsplit

from negotiator.error_handling import ValidationError
from negotiator.models import ROLES, counterpart


SESSION_PARAM = "session"
ROLE_PARAM = "role"


def build_join_link(base_url: str, session_id: str, inviter_role: str) -> str:
    """Build the link a party shares so the other side can join.

    Args:
        base_url: Public URL of the join endpoint or dashboard
        session_id: Session to join
        inviter_role: Role of the party sharing the link

    Returns:
        URL with the session id and the counterpart role as query parameters
    """
    query = urlencode({SESSION_PARAM: session_id, ROLE_PARAM: counterpart(inviter_role)})
    separator = "&" if "?" in base_url else "?"
    return f"{base_url}{separator}{query}"


def parse_join_link(url: str) -> Tuple[str, str]:
    """Extract (session_id, role) from a shareable link.

    A link without a role joins as party_b, the respondent.

    Raises:
        ValidationError: If the session parameter is missing or the role is unknown
    """
    params = parse_qs(urlsplit(url).query)
    session_id = (params.get(SESSION_PARAM) or [""])[0].strip()
    role = (params.get(ROLE_PARAM) or ["party_b"])[0].strip()

    if not session_id:
        raise ValidationError("Join link has no session parameter")
    if role not in ROLES:
        raise ValidationError(f"Unknown role in join link: {role}")

    return session_id, role
