"""Translate DVR observations into persisted availability states."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable, Sequence

from ..database import Database
from ..db_models import MediaRecord, Season
from ..models import MediaStatus, MediaType, ProcessableSeason
from ..repository import MediaRepository
from ..utils import utcnow
from .async_lock import KeyedLock

logger = logging.getLogger(__name__)

_KNOWN_STATUSES = (
    MediaStatus.PENDING,
    MediaStatus.PROCESSING,
    MediaStatus.PARTIALLY_AVAILABLE,
    MediaStatus.AVAILABLE,
)


def season_status(
    available: int, total: int, *, processing: bool = False
) -> MediaStatus:
    """Status implied by one season's episode counts on a DVR server."""

    if total <= 0:
        return MediaStatus.UNKNOWN
    if available == total:
        return MediaStatus.AVAILABLE
    if available > 0:
        return MediaStatus.PARTIALLY_AVAILABLE
    if processing:
        return MediaStatus.PROCESSING
    return MediaStatus.UNKNOWN


def next_status(current: MediaStatus, observed: MediaStatus) -> MediaStatus:
    """Apply an observation to a stored status.

    AVAILABLE never moves on a scan; only an explicit deletion lowers it.
    A DELETED title stays deleted until the DVR actually has content again.
    """

    if current == MediaStatus.AVAILABLE:
        return MediaStatus.AVAILABLE
    if current == MediaStatus.DELETED and observed in (
        MediaStatus.UNKNOWN,
        MediaStatus.PROCESSING,
    ):
        return MediaStatus.DELETED
    return observed


def aggregate_show_status(
    current: MediaStatus,
    seasons: Sequence[MediaStatus],
    *,
    new_seasons: Iterable[MediaStatus] = (),
) -> MediaStatus:
    """Roll season states up into the show-level status."""

    if seasons and all(status == MediaStatus.AVAILABLE for status in seasons):
        return MediaStatus.AVAILABLE
    if current == MediaStatus.AVAILABLE and not any(
        status in _KNOWN_STATUSES for status in new_seasons
    ):
        return MediaStatus.AVAILABLE
    if any(
        status in (MediaStatus.AVAILABLE, MediaStatus.PARTIALLY_AVAILABLE)
        for status in seasons
    ):
        return MediaStatus.PARTIALLY_AVAILABLE
    if any(status == MediaStatus.PROCESSING for status in seasons):
        return MediaStatus.PROCESSING
    if current == MediaStatus.DELETED:
        return MediaStatus.DELETED
    return MediaStatus.UNKNOWN


@dataclass(slots=True)
class ReconcileResult:
    """What a reconciliation pass did to a title."""

    tmdb_id: int
    media_type: MediaType
    created: bool = False
    changed: bool = False
    became_available: bool = False
    became_available_4k: bool = False


class AvailabilityReconciler:
    """Apply DVR state to media rows under the per-title lock."""

    def __init__(
        self,
        database: Database,
        lock: KeyedLock | None = None,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._database = database
        self._lock = lock or KeyedLock()
        self._clock = clock

    @property
    def lock(self) -> KeyedLock:
        return self._lock

    async def get_media(
        self, tmdb_id: int, media_type: MediaType
    ) -> MediaRecord | None:
        async with self._database.session() as session:
            return await MediaRepository(session).find_by_tmdb_id(tmdb_id, media_type)

    async def find_tmdb_id_by_tvdb_id(self, tvdb_id: int) -> int | None:
        async with self._database.session() as session:
            record = await MediaRepository(session).find_by_tvdb_id(tvdb_id)
        return record.tmdb_id if record is not None else None

    async def reconcile_movie(
        self,
        tmdb_id: int,
        *,
        is_4k: bool = False,
        enable_4k: bool = False,
        processing: bool = False,
        media_added_at: datetime | None = None,
        imdb_id: str | None = None,
        service_id: int | None = None,
        external_service_id: int | None = None,
        external_service_slug: str | None = None,
        title: str = "Unknown Title",
    ) -> ReconcileResult:
        """Record that a DVR server holds (or is fetching) a movie."""

        async def _apply() -> ReconcileResult:
            async with self._database.session() as session:
                repository = MediaRepository(session)
                record = await repository.find_by_tmdb_id(tmdb_id, MediaType.MOVIE)
                result = ReconcileResult(tmdb_id=tmdb_id, media_type=MediaType.MOVIE)
                observed = (
                    MediaStatus.PROCESSING if processing else MediaStatus.AVAILABLE
                )
                writable = not is_4k or enable_4k

                if record is None:
                    record = MediaRecord(
                        media_type=MediaType.MOVIE.value,
                        tmdb_id=tmdb_id,
                        imdb_id=imdb_id,
                        title=title,
                        status=MediaStatus.UNKNOWN,
                        status_4k=MediaStatus.UNKNOWN,
                        media_added_at=media_added_at,
                        last_season_change=self._clock(),
                    )
                    if writable:
                        record.set_status(observed, is_4k)
                        self._apply_service_fields(
                            record,
                            is_4k,
                            service_id=service_id,
                            external_service_id=external_service_id,
                            external_service_slug=external_service_slug,
                        )
                    await repository.save(record)
                    result.created = True
                    result.changed = True
                    result.became_available = record.status == MediaStatus.AVAILABLE
                    result.became_available_4k = (
                        record.status_4k == MediaStatus.AVAILABLE
                    )
                    logger.info("Saved new media: %s", title)
                    return result

                changed = False
                if writable:
                    current = record.get_status(is_4k)
                    updated = next_status(current, observed)
                    if updated != current:
                        record.set_status(updated, is_4k)
                        changed = True
                        if updated == MediaStatus.AVAILABLE:
                            if is_4k:
                                result.became_available_4k = True
                            else:
                                result.became_available = True
                        if media_added_at:
                            record.media_added_at = media_added_at

                if not record.media_added_at and media_added_at:
                    record.media_added_at = media_added_at
                    changed = True
                if imdb_id and record.imdb_id != imdb_id:
                    record.imdb_id = imdb_id
                    changed = True
                if title and title != "Unknown Title" and record.title != title:
                    record.title = title
                    changed = True
                if writable and self._apply_service_fields(
                    record,
                    is_4k,
                    service_id=service_id,
                    external_service_id=external_service_id,
                    external_service_slug=external_service_slug,
                ):
                    changed = True

                if changed:
                    await repository.save(record)
                    logger.info(
                        "Media for %s exists. Changes were detected and the title "
                        "will be updated.",
                        title,
                    )
                else:
                    logger.debug(
                        "Title already exists and no changes detected for %s", title
                    )
                result.changed = changed
                return result

        return await self._lock.dispatch(tmdb_id, _apply)

    async def reconcile_series(
        self,
        tmdb_id: int,
        tvdb_id: int | None,
        seasons: Sequence[ProcessableSeason],
        *,
        is_4k: bool = False,
        enable_4k: bool = False,
        media_added_at: datetime | None = None,
        service_id: int | None = None,
        external_service_id: int | None = None,
        external_service_slug: str | None = None,
        title: str = "Unknown Title",
    ) -> ReconcileResult:
        """Recompute season and show states from one server's episode counts.

        Only the variant observed on this server (standard or 4k) is touched;
        the other variant keeps whatever another server reported for it.
        """

        incoming = [season for season in seasons if season.season_number != 0]

        async def _apply() -> ReconcileResult:
            async with self._database.session() as session:
                repository = MediaRepository(session)
                record = await repository.find_by_tmdb_id(tmdb_id, MediaType.TV)
                result = ReconcileResult(tmdb_id=tmdb_id, media_type=MediaType.TV)
                writable = not is_4k or enable_4k

                created = record is None
                if record is None:
                    record = MediaRecord(
                        media_type=MediaType.TV.value,
                        tmdb_id=tmdb_id,
                        tvdb_id=tvdb_id,
                        title=title,
                        status=MediaStatus.UNKNOWN,
                        status_4k=MediaStatus.UNKNOWN,
                        media_added_at=media_added_at,
                        last_season_change=self._clock(),
                        seasons=[],
                    )

                changed = False
                show_before = record.get_status(is_4k)
                available_before = self._count_available(record.seasons, is_4k)
                new_seasons: list[Season] = []

                if writable:
                    for processable in incoming:
                        observed = season_status(
                            processable.episodes_4k if is_4k else processable.episodes,
                            processable.total_episodes,
                            processing=processable.processing,
                        )
                        existing = record.find_season(processable.season_number)
                        if existing is None:
                            season = Season(
                                season_number=processable.season_number,
                                status=MediaStatus.UNKNOWN,
                                status_4k=MediaStatus.UNKNOWN,
                            )
                            season.set_status(observed, is_4k)
                            record.seasons.append(season)
                            new_seasons.append(season)
                            changed = True
                            continue
                        current = existing.get_status(is_4k)
                        updated = next_status(current, observed)
                        if updated != current:
                            existing.set_status(updated, is_4k)
                            changed = True

                    show_after = aggregate_show_status(
                        show_before,
                        [season.get_status(is_4k) for season in record.seasons],
                        new_seasons=[season.get_status(is_4k) for season in new_seasons],
                    )
                    if show_after != show_before:
                        record.set_status(show_after, is_4k)
                        changed = True
                        if show_after == MediaStatus.AVAILABLE:
                            if is_4k:
                                result.became_available_4k = True
                            else:
                                result.became_available = True

                available_after = self._count_available(record.seasons, is_4k)
                if available_after > available_before:
                    logger.debug(
                        "Detected %s new %s season(s) for %s",
                        available_after - available_before,
                        "4K" if is_4k else "standard",
                        title,
                    )
                    record.last_season_change = self._clock()
                    if media_added_at and record.media_added_at != media_added_at:
                        record.media_added_at = media_added_at
                    changed = True

                if not record.media_added_at and media_added_at:
                    record.media_added_at = media_added_at
                    changed = True
                if tvdb_id is not None and record.tvdb_id != tvdb_id:
                    record.tvdb_id = tvdb_id
                    changed = True
                if title and title != "Unknown Title" and record.title != title:
                    record.title = title
                    changed = True
                if writable and self._apply_service_fields(
                    record,
                    is_4k,
                    service_id=service_id,
                    external_service_id=external_service_id,
                    external_service_slug=external_service_slug,
                ):
                    changed = True

                if changed or created:
                    await repository.save(record)
                    if created:
                        logger.info("Saved %s", title)
                    else:
                        logger.info("Updating existing title: %s", title)
                else:
                    logger.debug(
                        "Title already exists and no changes detected for %s", title
                    )

                result.created = created
                result.changed = changed or created
                return result

        return await self._lock.dispatch(tmdb_id, _apply)

    async def mark_available(
        self, tmdb_id: int, media_type: MediaType, *, is_4k: bool = False
    ) -> MediaRecord:
        """Force a title (and its seasons) to AVAILABLE for one variant."""

        return await self._set_everywhere(
            tmdb_id, media_type, MediaStatus.AVAILABLE, is_4k=is_4k
        )

    async def mark_deleted(
        self, tmdb_id: int, media_type: MediaType, *, is_4k: bool = False
    ) -> MediaRecord:
        """Record that a title was removed; the only way AVAILABLE is lowered."""

        return await self._set_everywhere(
            tmdb_id, media_type, MediaStatus.DELETED, is_4k=is_4k
        )

    async def _set_everywhere(
        self,
        tmdb_id: int,
        media_type: MediaType,
        status: MediaStatus,
        *,
        is_4k: bool,
    ) -> MediaRecord:
        async def _apply() -> MediaRecord:
            async with self._database.session() as session:
                repository = MediaRepository(session)
                record = await repository.find_by_tmdb_id(tmdb_id, media_type)
                if record is None:
                    raise KeyError(f"Media {media_type.value}/{tmdb_id} not found")
                record.set_status(status, is_4k)
                for season in record.seasons:
                    season.set_status(status, is_4k)
                await repository.save(record)
                logger.info(
                    "Marked %s %s as %s%s",
                    media_type.value,
                    tmdb_id,
                    status.name,
                    " (4K)" if is_4k else "",
                )
                return record

        return await self._lock.dispatch(tmdb_id, _apply)

    @staticmethod
    def _count_available(seasons: Iterable[Season], is_4k: bool) -> int:
        return sum(
            1 for season in seasons if season.get_status(is_4k) == MediaStatus.AVAILABLE
        )

    @staticmethod
    def _apply_service_fields(
        record: MediaRecord,
        is_4k: bool,
        *,
        service_id: int | None,
        external_service_id: int | None,
        external_service_slug: str | None,
    ) -> bool:
        suffix = "_4k" if is_4k else ""
        changed = False
        for name, value in (
            ("service_id", service_id),
            ("external_service_id", external_service_id),
            ("external_service_slug", external_service_slug),
        ):
            if value is None:
                continue
            attribute = f"{name}{suffix}"
            if getattr(record, attribute) != value:
                setattr(record, attribute, value)
                changed = True
        return changed
