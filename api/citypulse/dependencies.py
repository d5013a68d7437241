import hashlib
from typing import Annotated

from fastapi import Depends, HTTPException, Request, Security
from fastapi.security import APIKeyHeader
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from citypulse.config import settings
from citypulse.database import get_db
from citypulse.models.user import User
from citypulse.services.blob_store import BlobStore
from citypulse.services.chat import ChatService

DbSession = Annotated[AsyncSession, Depends(get_db)]

# API key security scheme, registered in the OpenAPI security definition
api_key_header = APIKeyHeader(name=settings.api_key_header_name, auto_error=True)


def hash_api_key(raw_key: str) -> str:
    return hashlib.sha256(raw_key.encode()).hexdigest()


async def get_current_user(
    raw_key: str = Security(api_key_header),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Authenticate a request via X-API-Key header.

    Computes SHA-256 hash of the raw key and looks it up in users.api_key_hash.
    Raises 401 for both missing and invalid keys, with no distinction between them.
    Every ledger, vote and redemption endpoint takes its user_id from here only.
    """
    result = await db.execute(select(User).where(User.api_key_hash == hash_api_key(raw_key)))
    user = result.scalar_one_or_none()
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid API key")
    return user


async def require_admin(user: User = Depends(get_current_user)) -> User:
    """Gate: admin endpoints (adjustments, fulfilment, reconciliation)."""
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user


def get_chat_service(request: Request) -> ChatService:
    """Shared ChatService on app.state, created on first use."""
    service = getattr(request.app.state, "chat_service", None)
    if service is None:
        service = ChatService()
        request.app.state.chat_service = service
    return service


def get_blob_store(request: Request) -> BlobStore:
    store = getattr(request.app.state, "blob_store", None)
    if store is None:
        store = BlobStore()
        request.app.state.blob_store = store
    return store


# Annotated type aliases for clean endpoint signatures
CurrentUser = Annotated[User, Depends(get_current_user)]
RequireAdmin = Annotated[User, Depends(require_admin)]
Chat = Annotated[ChatService, Depends(get_chat_service)]
Blobs = Annotated[BlobStore, Depends(get_blob_store)]
