# api/app/dependencies.py
from __future__ import annotations

import hmac
import uuid
from collections.abc import AsyncGenerator

from fastapi import Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from api.app.config import get_settings
from db.session import get_db


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async for session in get_db():
        yield session


async def get_current_owner(
    x_owner_id: str = Header(..., alias="X-Owner-Id"),
) -> uuid.UUID:
    """
    Resolve the calling user. The header is set by the auth gateway in
    front of this service after it has verified the user's session.
    """
    try:
        return uuid.UUID(x_owner_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid owner id",
        )


async def require_service_key(
    x_service_key: str = Header(..., alias="X-Service-Key"),
) -> None:
    """Gate for scheduler endpoints that act across every owner."""
    expected = get_settings().service_api_key
    if not hmac.compare_digest(x_service_key.encode(), expected.encode()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid service key",
        )
