"""Pydantic schemas for the AI assistant."""

from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field


class ChatTurn(BaseModel):
    role: Literal["user", "assistant", "model"]
    content: str = Field(..., min_length=1, max_length=4000)


class ChatRequest(BaseModel):
    """Conversation so far; the last turn is the donor's question."""

    messages: list[ChatTurn] = Field(..., min_length=1, max_length=50)


class ChatReplyRead(BaseModel):
    message: str
    source: Literal["ai", "fallback"]
    recommended_project_ids: list[UUID] = Field(default_factory=list)
