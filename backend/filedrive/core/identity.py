"""Owner identity, exposed as a FastAPI dependency.

Authentication happens upstream: a gateway verifies the caller and forwards
the owner id in ``settings.owner_header``. This module only reads that
header. Every tree operation is scoped by the id it returns.
"""

import logging

from fastapi import Request

from .config import settings
from ..exceptions import AuthenticationError

logger = logging.getLogger(__name__)

# Matches the owner_id column width.
MAX_OWNER_ID_LENGTH = 100


def require_owner(request: Request) -> str:
    """Return the caller's owner id or raise 401."""
    owner_id = (request.headers.get(settings.owner_header) or "").strip()
    if not owner_id:
        raise AuthenticationError(f"Missing {settings.owner_header} header")
    if len(owner_id) > MAX_OWNER_ID_LENGTH:
        logger.warning("Rejected oversized owner id", extra={"path": request.url.path})
        raise AuthenticationError("Invalid owner identity")
    return owner_id
