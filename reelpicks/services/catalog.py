from abc import ABC, abstractmethod
from typing import Any

from reelpicks.models.candidate import CandidateDetails, CastMember, Genre, RawCandidate
from reelpicks.models.discovery import ProviderAvailability
from reelpicks.models.media import CandidateSource, MediaType
from reelpicks.services.tmdb.genre import genres_from_ids, genres_from_names
from reelpicks.services.tmdb.service import TMDBService, get_tmdb_service
from reelpicks.services.trakt.service import TraktService, get_trakt_service

TOP_CAST_LIMIT = 10


def _year(date_str: str | None) -> int | None:
    if not date_str or len(date_str) < 4 or not date_str[:4].isdigit():
        return None
    return int(date_str[:4])


def candidate_from_tmdb(
    item: dict[str, Any], media_type: MediaType, source: CandidateSource, seed_id: int | None = None
) -> RawCandidate | None:
    """Build a candidate from a TMDB list entry (discover, recommendations, similar)."""
    tmdb_id = item.get("id")
    title = item.get("title") or item.get("name")
    if not isinstance(tmdb_id, int) or not title:
        return None
    if media_type is MediaType.MOVIE:
        original_title = item.get("original_title")
        release = item.get("release_date")
    else:
        original_title = item.get("original_name")
        release = item.get("first_air_date")
    return RawCandidate(
        tmdb_id=tmdb_id,
        media_type=media_type,
        title=title,
        source=source,
        original_title=original_title,
        original_language=item.get("original_language") or None,
        overview=item.get("overview") or None,
        release_year=_year(release),
        poster_path=item.get("poster_path"),
        backdrop_path=item.get("backdrop_path"),
        genres=genres_from_ids(media_type, item.get("genre_ids")),
        vote_average=item.get("vote_average"),
        vote_count=item.get("vote_count"),
        popularity=float(item.get("popularity") or 0.0),
        source_media_id=seed_id,
    )


def candidate_from_trakt(entry: dict[str, Any], media_type: MediaType, source: CandidateSource) -> RawCandidate | None:
    """
    Build a candidate from a Trakt entry.

    Trending entries wrap the item and carry a watcher count, which stands in for
    popularity. Trakt never returns artwork.
    """
    item = entry.get(media_type.trakt_item_key, entry)
    ids = item.get("ids") or {}
    tmdb_id = ids.get("tmdb")
    title = item.get("title")
    if not isinstance(tmdb_id, int) or not title:
        return None
    return RawCandidate(
        tmdb_id=tmdb_id,
        media_type=media_type,
        title=title,
        source=source,
        imdb_id=ids.get("imdb"),
        original_language=item.get("language") or None,
        overview=item.get("overview") or None,
        release_year=item.get("year"),
        genres=genres_from_names(media_type, item.get("genres")),
        vote_average=item.get("rating"),
        vote_count=item.get("votes"),
        popularity=float(entry.get("watchers") or 0),
    )


def details_from_tmdb(data: dict[str, Any], media_type: MediaType) -> CandidateDetails:
    if media_type is MediaType.MOVIE:
        imdb_id = data.get("imdb_id")
        runtime = data.get("runtime")
        original_title = data.get("original_title")
        release = data.get("release_date")
        directors: tuple[str, ...] = ()
    else:
        imdb_id = (data.get("external_ids") or {}).get("imdb_id")
        run_times = data.get("episode_run_time") or []
        runtime = run_times[0] if run_times else None
        original_title = data.get("original_name")
        release = data.get("first_air_date")
        directors = tuple(dict.fromkeys(c["name"] for c in data.get("created_by") or [] if c.get("name")))
    return CandidateDetails(
        poster_path=data.get("poster_path"),
        backdrop_path=data.get("backdrop_path"),
        original_language=data.get("original_language") or None,
        overview=data.get("overview") or None,
        imdb_id=imdb_id or None,
        original_title=original_title,
        release_year=_year(release),
        genres=tuple(Genre(id=g["id"], name=g.get("name", "")) for g in data.get("genres") or [] if "id" in g),
        directors=directors,
        runtime_minutes=runtime or None,
        tagline=data.get("tagline") or None,
        vote_average=data.get("vote_average"),
        vote_count=data.get("vote_count"),
    )


def credits_from_tmdb(data: dict[str, Any]) -> CandidateDetails:
    cast = tuple(
        CastMember(
            id=member["id"],
            name=member.get("name", ""),
            character=member.get("character"),
            profile_path=member.get("profile_path"),
        )
        for member in (data.get("cast") or [])[:TOP_CAST_LIMIT]
        if "id" in member
    )
    directors = tuple(
        dict.fromkeys(c["name"] for c in data.get("crew") or [] if c.get("job") == "Director" and c.get("name"))
    )
    return CandidateDetails(cast=cast, directors=directors)


class MediaCatalog(ABC):
    """
    Catalog capability shared by movies and series.

    Every call takes the media type; variant-specific queries stay inside the
    implementation. Methods raise on transport errors, callers decide how to degrade.
    """

    @abstractmethod
    def availability(self) -> ProviderAvailability:
        """Report which providers are configured."""

    @abstractmethod
    async def fetch_discover(
        self, media_type: MediaType, page: int, min_vote_count: int, min_vote_average: float
    ) -> list[RawCandidate]:
        pass

    @abstractmethod
    async def fetch_trending(self, media_type: MediaType, limit: int) -> list[RawCandidate]:
        pass

    @abstractmethod
    async def fetch_popular(self, media_type: MediaType, limit: int) -> list[RawCandidate]:
        pass

    @abstractmethod
    async def fetch_recommendations_for(self, media_type: MediaType, seed_id: int, page: int) -> list[RawCandidate]:
        pass

    @abstractmethod
    async def fetch_similar_to(self, media_type: MediaType, seed_id: int, page: int) -> list[RawCandidate]:
        pass

    @abstractmethod
    async def fetch_user_recommendations(
        self, media_type: MediaType, access_token: str, limit: int
    ) -> list[RawCandidate]:
        pass

    @abstractmethod
    async def fetch_details(self, media_type: MediaType, tmdb_id: int) -> CandidateDetails:
        pass

    @abstractmethod
    async def fetch_credits(self, media_type: MediaType, tmdb_id: int) -> CandidateDetails:
        pass


class ProviderCatalog(MediaCatalog):
    """MediaCatalog backed by TMDB (discover, seeds, details) and Trakt (feeds)."""

    def __init__(self, tmdb_service: TMDBService | None = None, trakt_service: TraktService | None = None):
        self.tmdb_service = tmdb_service or get_tmdb_service()
        self.trakt_service = trakt_service or get_trakt_service()

    def availability(self) -> ProviderAvailability:
        return ProviderAvailability(tmdb=self.tmdb_service.is_configured, trakt=self.trakt_service.is_configured)

    @staticmethod
    def _from_page(
        data: dict[str, Any], media_type: MediaType, source: CandidateSource, seed_id: int | None = None
    ) -> list[RawCandidate]:
        results = data.get("results") if isinstance(data, dict) else None
        candidates = (candidate_from_tmdb(item, media_type, source, seed_id) for item in results or [])
        return [c for c in candidates if c is not None]

    @staticmethod
    def _from_trakt(
        entries: list[dict[str, Any]], media_type: MediaType, source: CandidateSource
    ) -> list[RawCandidate]:
        candidates = (candidate_from_trakt(entry, media_type, source) for entry in entries or [])
        return [c for c in candidates if c is not None]

    async def fetch_discover(
        self, media_type: MediaType, page: int, min_vote_count: int, min_vote_average: float
    ) -> list[RawCandidate]:
        data = await self.tmdb_service.get_discover(
            media_type, page=page, min_vote_count=min_vote_count, min_vote_average=min_vote_average
        )
        return self._from_page(data, media_type, CandidateSource.TMDB_DISCOVER)

    async def fetch_trending(self, media_type: MediaType, limit: int) -> list[RawCandidate]:
        entries = await self.trakt_service.get_trending(media_type, limit)
        return self._from_trakt(entries, media_type, CandidateSource.TRAKT_TRENDING)

    async def fetch_popular(self, media_type: MediaType, limit: int) -> list[RawCandidate]:
        entries = await self.trakt_service.get_popular(media_type, limit)
        return self._from_trakt(entries, media_type, CandidateSource.TRAKT_POPULAR)

    async def fetch_recommendations_for(self, media_type: MediaType, seed_id: int, page: int) -> list[RawCandidate]:
        data = await self.tmdb_service.get_recommendations(seed_id, media_type, page)
        return self._from_page(data, media_type, CandidateSource.TMDB_RECOMMENDATIONS, seed_id)

    async def fetch_similar_to(self, media_type: MediaType, seed_id: int, page: int) -> list[RawCandidate]:
        data = await self.tmdb_service.get_similar(seed_id, media_type, page)
        return self._from_page(data, media_type, CandidateSource.TMDB_SIMILAR, seed_id)

    async def fetch_user_recommendations(
        self, media_type: MediaType, access_token: str, limit: int
    ) -> list[RawCandidate]:
        entries = await self.trakt_service.get_recommendations(media_type, access_token, limit)
        return self._from_trakt(entries, media_type, CandidateSource.TRAKT_RECOMMENDATIONS)

    async def fetch_details(self, media_type: MediaType, tmdb_id: int) -> CandidateDetails:
        data = await self.tmdb_service.get_details(tmdb_id, media_type)
        return details_from_tmdb(data or {}, media_type)

    async def fetch_credits(self, media_type: MediaType, tmdb_id: int) -> CandidateDetails:
        data = await self.tmdb_service.get_credits(tmdb_id, media_type)
        return credits_from_tmdb(data or {})

    async def close(self):
        await self.tmdb_service.close()
        await self.trakt_service.close()
