"""Row lookups and writes for media availability records."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .db_models import MediaRecord
from .models import MediaType


class MediaRepository:
    """Session-scoped access to :class:`MediaRecord` rows."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def find_by_tmdb_id(
        self, tmdb_id: int, media_type: MediaType
    ) -> MediaRecord | None:
        stmt = select(MediaRecord).where(
            MediaRecord.tmdb_id == tmdb_id,
            MediaRecord.media_type == media_type.value,
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def find_by_tvdb_id(self, tvdb_id: int) -> MediaRecord | None:
        stmt = (
            select(MediaRecord)
            .where(
                MediaRecord.tvdb_id == tvdb_id,
                MediaRecord.media_type == MediaType.TV.value,
            )
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def save(self, record: MediaRecord) -> MediaRecord:
        self._session.add(record)
        await self._session.commit()
        return record
