from __future__ import annotations

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from backend.app.db import Base


class TypingStatus(Base):
    __tablename__ = "typing"

    user_id: Mapped[str] = mapped_column(String, primary_key=True)
    last_typing_at: Mapped[str | None] = mapped_column(String, nullable=True)
