"""SQLAlchemy ORM models backing the persistent availability state."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base
from .models import MediaStatus, MediaType
from .utils import utcnow


class MediaRecord(Base):
    """One row per title, keyed by TMDB ID and media type."""

    __tablename__ = "media"
    __table_args__ = (
        UniqueConstraint("tmdb_id", "media_type", name="uq_media_tmdb_type"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    media_type: Mapped[str] = mapped_column(String(16))
    tmdb_id: Mapped[int] = mapped_column(Integer, index=True)
    tvdb_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    imdb_id: Mapped[str | None] = mapped_column(String(32), nullable=True, index=True)
    title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[int] = mapped_column(Integer, default=MediaStatus.UNKNOWN)
    status_4k: Mapped[int] = mapped_column(Integer, default=MediaStatus.UNKNOWN)
    service_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    service_id_4k: Mapped[int | None] = mapped_column(Integer, nullable=True)
    external_service_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    external_service_id_4k: Mapped[int | None] = mapped_column(Integer, nullable=True)
    external_service_slug: Mapped[str | None] = mapped_column(String(255), nullable=True)
    external_service_slug_4k: Mapped[str | None] = mapped_column(
        String(255), nullable=True
    )
    media_added_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    last_season_change: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )

    seasons: Mapped[list["Season"]] = relationship(
        back_populates="media",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="Season.season_number",
    )

    def get_status(self, is_4k: bool) -> MediaStatus:
        return MediaStatus(self.status_4k if is_4k else self.status)

    def set_status(self, status: MediaStatus, is_4k: bool) -> None:
        if is_4k:
            self.status_4k = status
        else:
            self.status = status

    def find_season(self, season_number: int) -> "Season | None":
        for season in self.seasons:
            if season.season_number == season_number:
                return season
        return None

    def to_payload(self) -> dict[str, object]:
        return {
            "id": self.id,
            "mediaType": self.media_type,
            "tmdbId": self.tmdb_id,
            "tvdbId": self.tvdb_id,
            "imdbId": self.imdb_id,
            "title": self.title,
            "status": MediaStatus(self.status).name,
            "status4k": MediaStatus(self.status_4k).name,
            "serviceId": self.service_id,
            "serviceId4k": self.service_id_4k,
            "externalServiceId": self.external_service_id,
            "externalServiceId4k": self.external_service_id_4k,
            "externalServiceSlug": self.external_service_slug,
            "externalServiceSlug4k": self.external_service_slug_4k,
            "mediaAddedAt": (
                self.media_added_at.isoformat() if self.media_added_at else None
            ),
            "lastSeasonChange": (
                self.last_season_change.isoformat() if self.last_season_change else None
            ),
            "seasons": [season.to_payload() for season in self.seasons]
            if self.media_type == MediaType.TV.value
            else [],
        }


class Season(Base):
    """Per-season availability of a series."""

    __tablename__ = "seasons"
    __table_args__ = (
        UniqueConstraint("media_id", "season_number", name="uq_season_media_number"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    media_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("media.id", ondelete="CASCADE")
    )
    season_number: Mapped[int] = mapped_column(Integer)
    status: Mapped[int] = mapped_column(Integer, default=MediaStatus.UNKNOWN)
    status_4k: Mapped[int] = mapped_column(Integer, default=MediaStatus.UNKNOWN)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )

    media: Mapped[MediaRecord] = relationship(back_populates="seasons")

    def get_status(self, is_4k: bool) -> MediaStatus:
        return MediaStatus(self.status_4k if is_4k else self.status)

    def set_status(self, status: MediaStatus, is_4k: bool) -> None:
        if is_4k:
            self.status_4k = status
        else:
            self.status = status

    def to_payload(self) -> dict[str, object]:
        return {
            "seasonNumber": self.season_number,
            "status": MediaStatus(self.status).name,
            "status4k": MediaStatus(self.status_4k).name,
        }
