"""Pydantic schemas for the chat proxy.

Fields are deliberately loose: message and history shape are validated by
citypulse.services.chat so the error messages match the chat contract.
"""

from typing import Any

from pydantic import AliasChoices, BaseModel, Field


class ChatRequest(BaseModel):
    message: Any = None
    conversation_history: Any = Field(
        default_factory=list,
        validation_alias=AliasChoices("conversation_history", "conversationHistory"),
    )


class ChatResponse(BaseModel):
    message: str
