"""
schemas/message.py
------------------
Pydantic models for the conversation transcript and the assistant request.
"""

import uuid
from datetime import datetime
from enum import Enum as PyEnum
from typing import Optional

from pydantic import BaseModel, Field


class Role(str, PyEnum):
    user = "user"
    assistant = "assistant"
    # Reserved, never produced by the engine
    system = "system"


class ExpertPersona(str, PyEnum):
    general = "General"
    real_estate = "Real Estate"
    sales = "Sales"
    marketing = "Marketing"
    negotiation = "Negotiation"
    motivation = "Motivation"

    @property
    def slug(self) -> str:
        return self.value.lower()


def new_message_id() -> str:
    return str(uuid.uuid4())


class Message(BaseModel):
    role: Role
    content: str = ""
    order: int
    user_id: str
    chat_id: str
    message_id: str = Field(default_factory=new_message_id)
    like: int = Field(default=0, ge=-1, le=1)
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class ChatTurn(BaseModel):
    role: Role
    content: str

    model_config = {"extra": "ignore"}


class ChatRequest(BaseModel):
    messages: list[ChatTurn] = Field(..., min_length=1)
    chatbot: Optional[str] = Field(
        default=None,
        description="Lower-cased persona name; informational only",
    )
    expert: ExpertPersona = ExpertPersona.general
