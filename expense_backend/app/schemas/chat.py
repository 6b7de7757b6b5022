from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class ChatHistoryItem(BaseModel):
    role: Literal["user", "assistant"]
    content: str = ""


class ChatRequest(BaseModel):
    message: str = ""
    history: List[ChatHistoryItem] = Field(default_factory=list)


class ChatResponse(BaseModel):
    response: str = ""
    success: bool
    error: Optional[str] = None


class ChatStatusResponse(BaseModel):
    configured: bool
    model_name: Optional[str] = None
    endpoint: Optional[str] = None
    message: str
