"""Pydantic models describing DVR and metadata payloads."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum, IntEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .utils import parse_timestamp


class MediaStatus(IntEnum):
    UNKNOWN = 1
    PENDING = 2
    PROCESSING = 3
    PARTIALLY_AVAILABLE = 4
    AVAILABLE = 5
    DELETED = 6


class MediaType(str, Enum):
    MOVIE = "movie"
    TV = "tv"


class ArrModel(BaseModel):
    """Base for camelCase payloads returned by Radarr and Sonarr."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="ignore"
    )


class MovieFile(ArrModel):
    id: int | None = None
    date_added: datetime | None = None

    @field_validator("date_added", mode="before")
    @classmethod
    def _parse_date(cls, value: Any) -> datetime | None:
        return parse_timestamp(value)


class RadarrMovie(ArrModel):
    id: int
    title: str = "Unknown Title"
    monitored: bool = False
    has_file: bool = False
    tmdb_id: int | None = None
    imdb_id: str | None = None
    title_slug: str | None = None
    movie_file: MovieFile | None = None

    @property
    def added_at(self) -> datetime | None:
        if self.movie_file is None:
            return None
        return self.movie_file.date_added


class SeasonStatistics(ArrModel):
    episode_file_count: int = 0
    episode_count: int = 0
    total_episode_count: int = 0


class SonarrSeason(ArrModel):
    season_number: int
    monitored: bool = False
    statistics: SeasonStatistics | None = None


class SonarrSeries(ArrModel):
    id: int
    title: str = "Unknown Title"
    tvdb_id: int
    monitored: bool = False
    title_slug: str | None = None
    added: datetime | None = None
    seasons: list[SonarrSeason] = Field(default_factory=list)

    @field_validator("added", mode="before")
    @classmethod
    def _parse_added(cls, value: Any) -> datetime | None:
        return parse_timestamp(value)


class QueueEpisode(ArrModel):
    id: int
    season_number: int
    episode_number: int
    absolute_episode_number: int | None = None


class QueueItem(ArrModel):
    """Fields shared by Radarr and Sonarr queue records."""

    id: int
    title: str = ""
    size: float = 0
    sizeleft: float = Field(default=0, alias="sizeleft")
    timeleft: str | None = Field(default=None, alias="timeleft")
    estimated_completion_time: datetime | None = None
    status: str = "unknown"

    @field_validator("estimated_completion_time", mode="before")
    @classmethod
    def _parse_completion(cls, value: Any) -> datetime | None:
        return parse_timestamp(value)


class RadarrQueueItem(QueueItem):
    movie_id: int


class SonarrQueueItem(QueueItem):
    series_id: int
    episode: QueueEpisode | None = None


class QualityProfile(ArrModel):
    id: int
    name: str


class RootFolder(ArrModel):
    id: int
    path: str
    free_space: int | None = None


class Tag(ArrModel):
    id: int
    label: str


class TagCreate(BaseModel):
    label: str = Field(min_length=1)


class TmdbSeason(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int | None = None
    season_number: int
    episode_count: int = 0
    name: str | None = None


class TmdbMovieDetails(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    title: str | None = None
    imdb_id: str | None = None


class TmdbTvDetails(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    name: str | None = None
    seasons: list[TmdbSeason] = Field(default_factory=list)

    def has_season(self, season_number: int) -> bool:
        return any(season.season_number == season_number for season in self.seasons)


class TmdbFindResult(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int


class TmdbExternalIdResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    movie_results: list[TmdbFindResult] = Field(default_factory=list)
    tv_results: list[TmdbFindResult] = Field(default_factory=list)


@dataclass(slots=True)
class ProcessableSeason:
    """Episode counts observed for one season on one DVR server."""

    season_number: int
    total_episodes: int
    episodes: int = 0
    episodes_4k: int = 0
    processing: bool = False


@dataclass(slots=True)
class DownloadingItem:
    """Normalised snapshot of an in-progress download."""

    media_type: MediaType
    external_id: int
    size: float
    size_left: float
    status: str
    time_left: str | None
    estimated_completion_time: datetime | None
    title: str
    episode: QueueEpisode | None = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "mediaType": self.media_type.value,
            "externalId": self.external_id,
            "size": self.size,
            "sizeLeft": self.size_left,
            "status": self.status,
            "timeLeft": self.time_left,
            "estimatedCompletionTime": (
                self.estimated_completion_time.isoformat()
                if self.estimated_completion_time
                else None
            ),
            "title": self.title,
            "episode": (
                self.episode.model_dump(by_alias=True) if self.episode else None
            ),
        }
