# app/auth/__init__.py - Identity module

from app.auth.dependencies import get_connected_identity
from app.auth.models import IdentityContext

__all__ = [
    "get_connected_identity",
    "IdentityContext",
]
