"""Platform users (assessors and reviewers)."""
from enum import Enum
from typing import Optional

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import BaseModel


class UserRole(str, Enum):
    ASSESSOR = "ASSESSOR"
    REVIEWER = "REVIEWER"


class User(BaseModel):
    """A signed-in staff member. Identity comes from Keycloak, role lives here."""

    __tablename__ = "users"

    # Keycloak subject claim
    external_id: Mapped[Optional[str]] = mapped_column(
        String(255), unique=True, nullable=True, index=True
    )
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    @property
    def is_reviewer(self) -> bool:
        return self.role == UserRole.REVIEWER.value

    @property
    def is_assessor(self) -> bool:
        return self.role == UserRole.ASSESSOR.value
