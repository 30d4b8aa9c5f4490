# app/auth/models.py - Connected identity context

from pydantic import BaseModel


class IdentityContext(BaseModel):
    identity: str | None = None

    @property
    def is_connected(self) -> bool:
        return bool(self.identity)
