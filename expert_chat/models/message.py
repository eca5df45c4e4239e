"""
models/message.py
-----------------
Persisted chat message.

message_id is generated client-side before the insert, so the same id keys
both the insert and any later update of the like column. An assistant reply
is written once, whole, after its stream has finished: there is never more
than one row per message_id.
"""

from sqlalchemy import Integer, SmallInteger, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from expert_chat.db.base import Base, TimestampMixin


class MessageRecord(Base, TimestampMixin):
    __tablename__ = "message"

    message_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    order: Mapped[int] = mapped_column(Integer, nullable=False)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    chat_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    like: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<MessageRecord id={self.message_id} chat_id={self.chat_id} order={self.order}>"
