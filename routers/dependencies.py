from __future__ import annotations

from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from infrastructure.context import RequestContextBundle, ThreadScope
from infrastructure.database.database import get_db
from infrastructure.database.repositories import ThreadRepository
from config import settings
import hmac


async def get_thread_context_bundle(
    thread_id: str,
    db: AsyncSession = Depends(get_db),
) -> RequestContextBundle:
    thread = await ThreadRepository(db).get_thread(thread_id)
    if thread is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Thread not found")
    return RequestContextBundle(db=db, scope=ThreadScope.of(thread))


async def require_api_key(x_api_key: Optional[str] = Header(None, alias="X-API-Key")) -> None:
    expected_raw = settings.API_AUTH_TOKEN
    expected = expected_raw.strip().strip('"') if expected_raw else ""
    if not expected:
        # No API key configured; allow all requests.
        return
    provided = x_api_key.strip().strip('"') if x_api_key else ""
    if not provided or not hmac.compare_digest(provided, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
        )
