"""
models/chat.py
--------------
A conversation thread, tagged with the expert persona it was started with.
"""

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from expert_chat.db.base import Base, TimestampMixin


class ChatRecord(Base, TimestampMixin):
    __tablename__ = "chat"

    chat_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    coach_type: Mapped[str] = mapped_column(String(32), nullable=False)

    def __repr__(self) -> str:
        return f"<ChatRecord id={self.chat_id} coach_type={self.coach_type}>"
