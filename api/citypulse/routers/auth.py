"""API key generation and authentication verification endpoints.

POST /api/v1/keys  -- generate a new API key (no auth required)
GET  /api/v1/keys/verify -- verify an existing API key (auth required)
"""

import secrets

from fastapi import APIRouter, HTTPException
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from citypulse.dependencies import CurrentUser, DbSession, hash_api_key
from citypulse.models.user import User
from citypulse.schemas.auth import APIKeyCreate, APIKeyResponse, KeyVerification

router = APIRouter(prefix="/api/v1", tags=["auth"])


@router.post("/keys", response_model=APIKeyResponse, status_code=201)
async def generate_api_key(body: APIKeyCreate, db: DbSession) -> APIKeyResponse:
    """Generate a new API key and register a user account.

    The raw API key is returned exactly once in this response. Only its
    SHA-256 hash is stored in the database; it cannot be retrieved again.

    If an email is provided and already exists in the database, a 409
    Conflict is returned. On a hash collision one automatic retry is
    performed with a freshly generated key.
    """
    if body.email:
        result = await db.execute(select(User).where(User.email == body.email))
        if result.scalar_one_or_none() is not None:
            raise HTTPException(status_code=409, detail="Email already registered")

    def _make_user(raw_key: str) -> User:
        return User(
            api_key_hash=hash_api_key(raw_key),
            email=body.email,
            display_name=body.display_name,
        )

    raw_key = secrets.token_urlsafe(32)
    user = _make_user(raw_key)
    db.add(user)

    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raw_key = secrets.token_urlsafe(32)
        user = _make_user(raw_key)
        db.add(user)
        await db.commit()

    return APIKeyResponse(api_key=raw_key, user_id=user.id)


@router.get("/keys/verify", response_model=KeyVerification)
async def verify_api_key(user: CurrentUser) -> KeyVerification:
    """Confirm the key and report whether it carries admin rights."""
    return KeyVerification(user_id=user.id, is_admin=user.is_admin)
