"""
models/__init__.py
------------------
Re-export all models so table creation can discover every table via a
single import:

    from expert_chat.models import Base
"""

from expert_chat.db.base import Base
from expert_chat.models.chat import ChatRecord
from expert_chat.models.message import MessageRecord

__all__ = ["Base", "ChatRecord", "MessageRecord"]
