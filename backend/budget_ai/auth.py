from typing import Optional

from fastapi import Header

from .errors import Unauthorized


async def get_current_user_id(
    x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
) -> str:
    """Resolve the authenticated user.

    Authentication happens upstream (gateway / session middleware), which
    forwards the verified user id in the ``X-User-Id`` header.
    """
    if not x_user_id or not x_user_id.strip():
        raise Unauthorized("Unauthorized")
    return x_user_id.strip()
