"""Tests for availability reconciliation against a temporary SQLite database."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta

import pytest

from app.database import Database
from app.models import MediaStatus, MediaType, ProcessableSeason
from app.services.availability import (
    AvailabilityReconciler,
    aggregate_show_status,
    next_status,
    season_status,
)


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO tests to run on asyncio without requiring trio."""

    return "asyncio"


class SteppingClock:
    def __init__(self) -> None:
        self.now = datetime(2024, 1, 1, 12, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


async def open_database(tmp_path) -> Database:
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'media.db'}")
    await database.create_all()
    return database


def test_season_status_from_episode_counts() -> None:
    assert season_status(10, 10) == MediaStatus.AVAILABLE
    assert season_status(4, 10) == MediaStatus.PARTIALLY_AVAILABLE
    assert season_status(0, 10, processing=True) == MediaStatus.PROCESSING
    assert season_status(0, 10) == MediaStatus.UNKNOWN
    assert season_status(0, 0) == MediaStatus.UNKNOWN


def test_available_status_never_moves_on_observation() -> None:
    for observed in MediaStatus:
        assert next_status(MediaStatus.AVAILABLE, observed) == MediaStatus.AVAILABLE


def test_deleted_status_waits_for_content() -> None:
    assert next_status(MediaStatus.DELETED, MediaStatus.UNKNOWN) == MediaStatus.DELETED
    assert next_status(MediaStatus.DELETED, MediaStatus.PROCESSING) == MediaStatus.DELETED
    assert (
        next_status(MediaStatus.DELETED, MediaStatus.PARTIALLY_AVAILABLE)
        == MediaStatus.PARTIALLY_AVAILABLE
    )


def test_show_status_rolls_up_seasons() -> None:
    available = MediaStatus.AVAILABLE
    partial = MediaStatus.PARTIALLY_AVAILABLE
    unknown = MediaStatus.UNKNOWN

    assert aggregate_show_status(unknown, [available, available]) == available
    assert aggregate_show_status(unknown, [available, unknown]) == partial
    assert aggregate_show_status(unknown, [MediaStatus.PROCESSING]) == MediaStatus.PROCESSING
    assert aggregate_show_status(unknown, []) == unknown
    assert aggregate_show_status(available, [available, unknown], new_seasons=[unknown]) == available
    assert aggregate_show_status(available, [available, partial], new_seasons=[partial]) == partial


@pytest.mark.anyio("asyncio")
async def test_movie_is_created_and_availability_is_sticky(tmp_path) -> None:
    database = await open_database(tmp_path)
    try:
        reconciler = AvailabilityReconciler(database)

        created = await reconciler.reconcile_movie(
            550,
            media_added_at=datetime(2024, 2, 1),
            imdb_id="tt0137523",
            service_id=0,
            external_service_id=12,
            external_service_slug="fight-club-550",
            title="Fight Club",
        )
        again = await reconciler.reconcile_movie(
            550,
            processing=True,
            service_id=0,
            external_service_id=12,
            external_service_slug="fight-club-550",
            title="Fight Club",
        )

        record = await reconciler.get_media(550, MediaType.MOVIE)
    finally:
        await database.dispose()

    assert created.created and created.became_available
    assert not again.changed
    assert record is not None
    assert record.status == MediaStatus.AVAILABLE
    assert record.status_4k == MediaStatus.UNKNOWN
    assert record.imdb_id == "tt0137523"
    assert record.external_service_slug == "fight-club-550"
    assert record.media_added_at == datetime(2024, 2, 1)


@pytest.mark.anyio("asyncio")
async def test_processing_movie_becomes_available(tmp_path) -> None:
    database = await open_database(tmp_path)
    try:
        reconciler = AvailabilityReconciler(database)
        await reconciler.reconcile_movie(603, processing=True, title="The Matrix")
        result = await reconciler.reconcile_movie(603, title="The Matrix")
        record = await reconciler.get_media(603, MediaType.MOVIE)
    finally:
        await database.dispose()

    assert result.changed and result.became_available
    assert record is not None and record.status == MediaStatus.AVAILABLE


@pytest.mark.anyio("asyncio")
async def test_4k_variant_only_written_when_enabled(tmp_path) -> None:
    database = await open_database(tmp_path)
    try:
        reconciler = AvailabilityReconciler(database)
        await reconciler.reconcile_movie(
            1, is_4k=True, enable_4k=False, service_id=3, title="Ignored"
        )
        ignored = await reconciler.get_media(1, MediaType.MOVIE)

        await reconciler.reconcile_movie(
            2, is_4k=True, enable_4k=True, service_id=3, title="Tracked"
        )
        tracked = await reconciler.get_media(2, MediaType.MOVIE)
    finally:
        await database.dispose()

    assert ignored is not None
    assert ignored.status == MediaStatus.UNKNOWN
    assert ignored.status_4k == MediaStatus.UNKNOWN
    assert ignored.service_id_4k is None
    assert tracked is not None
    assert tracked.status == MediaStatus.UNKNOWN
    assert tracked.status_4k == MediaStatus.AVAILABLE
    assert tracked.service_id_4k == 3
    assert tracked.service_id is None


@pytest.mark.anyio("asyncio")
async def test_concurrent_reconciles_create_a_single_row(tmp_path) -> None:
    database = await open_database(tmp_path)
    try:
        reconciler = AvailabilityReconciler(database)
        results = await asyncio.gather(
            reconciler.reconcile_movie(27205, title="Inception"),
            reconciler.reconcile_movie(27205, title="Inception"),
        )
    finally:
        await database.dispose()

    assert sorted(result.created for result in results) == [False, True]


@pytest.mark.anyio("asyncio")
async def test_series_seasons_progress_and_stay_available(tmp_path) -> None:
    database = await open_database(tmp_path)
    clock = SteppingClock()
    try:
        reconciler = AvailabilityReconciler(database, clock=clock)

        first = await reconciler.reconcile_series(
            1399,
            121361,
            [
                ProcessableSeason(season_number=0, total_episodes=5, episodes=5),
                ProcessableSeason(season_number=1, total_episodes=10, episodes=10),
                ProcessableSeason(season_number=2, total_episodes=10, episodes=4),
            ],
            title="Game of Thrones",
        )
        partial = await reconciler.get_media(1399, MediaType.TV)

        clock.advance(days=1)
        second = await reconciler.reconcile_series(
            1399,
            121361,
            [
                ProcessableSeason(season_number=1, total_episodes=10, episodes=10),
                ProcessableSeason(season_number=2, total_episodes=10, episodes=10),
            ],
            media_added_at=datetime(2024, 1, 2),
            title="Game of Thrones",
        )
        complete = await reconciler.get_media(1399, MediaType.TV)

        clock.advance(days=1)
        third = await reconciler.reconcile_series(
            1399,
            121361,
            [
                ProcessableSeason(season_number=1, total_episodes=10, episodes=10),
                ProcessableSeason(season_number=2, total_episodes=10, episodes=0),
            ],
            title="Game of Thrones",
        )
        final = await reconciler.get_media(1399, MediaType.TV)
        tmdb_id = await reconciler.find_tmdb_id_by_tvdb_id(121361)
    finally:
        await database.dispose()

    assert first.created
    assert partial is not None
    assert [season.season_number for season in partial.seasons] == [1, 2]
    assert partial.status == MediaStatus.PARTIALLY_AVAILABLE
    assert partial.find_season(2).status == MediaStatus.PARTIALLY_AVAILABLE

    assert second.became_available
    assert complete is not None
    assert complete.status == MediaStatus.AVAILABLE
    assert complete.last_season_change == datetime(2024, 1, 2, 12, 0)
    assert complete.media_added_at == datetime(2024, 1, 2)

    assert not third.changed
    assert final is not None
    assert final.status == MediaStatus.AVAILABLE
    assert final.find_season(2).status == MediaStatus.AVAILABLE
    assert final.last_season_change == datetime(2024, 1, 2, 12, 0)
    assert tmdb_id == 1399


@pytest.mark.anyio("asyncio")
async def test_repeated_identical_series_pass_changes_nothing(tmp_path) -> None:
    database = await open_database(tmp_path)
    clock = SteppingClock()
    seasons = [
        ProcessableSeason(season_number=1, total_episodes=10, episodes=10),
        ProcessableSeason(season_number=2, total_episodes=10, episodes=4),
    ]
    try:
        reconciler = AvailabilityReconciler(database, clock=clock)

        first = await reconciler.reconcile_series(1399, 121361, seasons, title="Game of Thrones")
        before = await reconciler.get_media(1399, MediaType.TV)

        clock.advance(hours=6)
        second = await reconciler.reconcile_series(1399, 121361, seasons, title="Game of Thrones")
        after = await reconciler.get_media(1399, MediaType.TV)
    finally:
        await database.dispose()

    assert first.created and first.changed
    assert second.changed is False
    assert not second.created and not second.became_available
    assert before is not None and after is not None
    assert after.last_season_change == before.last_season_change
    assert after.status == before.status == MediaStatus.PARTIALLY_AVAILABLE
    assert [(season.season_number, season.status) for season in after.seasons] == [
        (1, MediaStatus.AVAILABLE),
        (2, MediaStatus.PARTIALLY_AVAILABLE),
    ]


@pytest.mark.anyio("asyncio")
async def test_4k_series_pass_leaves_standard_status(tmp_path) -> None:
    database = await open_database(tmp_path)
    try:
        reconciler = AvailabilityReconciler(database)
        await reconciler.reconcile_series(
            1, 10, [ProcessableSeason(season_number=1, total_episodes=8, episodes=8)]
        )
        await reconciler.reconcile_series(
            1,
            10,
            [ProcessableSeason(season_number=1, total_episodes=8, episodes_4k=2)],
            is_4k=True,
            enable_4k=True,
            service_id=5,
        )
        record = await reconciler.get_media(1, MediaType.TV)
    finally:
        await database.dispose()

    assert record is not None
    assert record.status == MediaStatus.AVAILABLE
    assert record.status_4k == MediaStatus.PARTIALLY_AVAILABLE
    assert record.find_season(1).status == MediaStatus.AVAILABLE
    assert record.find_season(1).status_4k == MediaStatus.PARTIALLY_AVAILABLE
    assert record.service_id_4k == 5


@pytest.mark.anyio("asyncio")
async def test_mark_deleted_lowers_available_until_content_returns(tmp_path) -> None:
    database = await open_database(tmp_path)
    try:
        reconciler = AvailabilityReconciler(database)
        await reconciler.reconcile_series(
            2, 20, [ProcessableSeason(season_number=1, total_episodes=3, episodes=3)]
        )

        deleted = await reconciler.mark_deleted(2, MediaType.TV)
        await reconciler.reconcile_series(
            2,
            20,
            [
                ProcessableSeason(
                    season_number=1, total_episodes=3, episodes=0, processing=True
                )
            ],
        )
        still_deleted = await reconciler.get_media(2, MediaType.TV)

        await reconciler.reconcile_series(
            2, 20, [ProcessableSeason(season_number=1, total_episodes=3, episodes=3)]
        )
        restored = await reconciler.get_media(2, MediaType.TV)

        with pytest.raises(KeyError):
            await reconciler.mark_deleted(999, MediaType.MOVIE)
    finally:
        await database.dispose()

    assert deleted.status == MediaStatus.DELETED
    assert deleted.find_season(1).status == MediaStatus.DELETED
    assert still_deleted is not None
    assert still_deleted.status == MediaStatus.DELETED
    assert restored is not None
    assert restored.status == MediaStatus.AVAILABLE


@pytest.mark.anyio("asyncio")
async def test_mark_available_sets_every_season(tmp_path) -> None:
    database = await open_database(tmp_path)
    try:
        reconciler = AvailabilityReconciler(database)
        await reconciler.reconcile_series(
            3,
            30,
            [
                ProcessableSeason(season_number=1, total_episodes=3, episodes=1),
                ProcessableSeason(season_number=2, total_episodes=3),
            ],
        )
        record = await reconciler.mark_available(3, MediaType.TV, is_4k=True)
    finally:
        await database.dispose()

    assert record.status_4k == MediaStatus.AVAILABLE
    assert {season.status_4k for season in record.seasons} == {MediaStatus.AVAILABLE}
    assert record.status == MediaStatus.PARTIALLY_AVAILABLE
