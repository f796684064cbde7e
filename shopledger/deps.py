"""Type aliases for the dependencies every router needs.

Usage:
    from shopledger.deps import CurrentUserId, DbSession

    async def endpoint(db: DbSession, user_id: CurrentUserId): ...
"""

from typing import Annotated
from uuid import UUID

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from shopledger.auth import get_current_user_id
from shopledger.database import get_db

DbSession = Annotated[AsyncSession, Depends(get_db)]
CurrentUserId = Annotated[UUID, Depends(get_current_user_id)]

__all__ = ["CurrentUserId", "DbSession"]
