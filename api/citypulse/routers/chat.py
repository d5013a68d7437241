"""Rate-limited AI support chat.

POST /api/v1/chat -- 10 requests per minute per client identity by default
"""

from fastapi import APIRouter

from citypulse.dependencies import Chat
from citypulse.middleware.rate_limiter import ChatRateLimit
from citypulse.schemas.chat import ChatRequest, ChatResponse

router = APIRouter(prefix="/api/v1", tags=["chat"])


@router.post("/chat", response_model=ChatResponse)
async def chat(body: ChatRequest, service: Chat, _rate: ChatRateLimit) -> ChatResponse:
    answer = await service.reply(body.message, body.conversation_history)
    return ChatResponse(message=answer)
