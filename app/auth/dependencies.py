# app/auth/dependencies.py - get_connected_identity -> IdentityContext

from fastapi import Header

from app.auth.models import IdentityContext


async def get_connected_identity(
    x_identity: str | None = Header(default=None),
) -> IdentityContext:
    """
    Resolve the connected account from the X-Identity header.

    A missing header is not rejected here; operations that need a
    connected identity report NotConnected themselves.
    """
    cleaned = x_identity.strip() if x_identity else ""
    return IdentityContext(identity=cleaned or None)
