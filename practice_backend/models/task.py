from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column

from practice_backend.models.base import Base, TimestampMixin


class Task(Base, TimestampMixin):
    __tablename__ = "tasks"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    lemma: Mapped[str] = mapped_column(String(255), nullable=False)
    pos: Mapped[str] = mapped_column(String(20), nullable=False, default="verb")  # verb, noun, adjective
    level: Mapped[str | None] = mapped_column(String(10), nullable=True)  # CEFR: A1-C2
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
