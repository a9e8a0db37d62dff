from __future__ import annotations

from pydantic import BaseModel


class AuthContext(BaseModel):
    """Dev auth context extracted from request headers."""

    actor_id: str
    role: str = "employee"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"
