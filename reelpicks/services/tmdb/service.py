import functools
from typing import Any

from async_lru import alru_cache

from reelpicks.core.config import settings
from reelpicks.models.media import MediaType
from reelpicks.services.tmdb.client import TMDBClient


class TMDBService:
    """
    Service for The Movie Database (TMDB) API.

    Returns raw JSON payloads. Conversion into candidates happens in the catalog layer.
    """

    def __init__(self, api_key: str | None, language: str = "en-US", **client_kwargs):
        self.api_key = api_key
        self.client = TMDBClient(
            api_key=api_key or "",
            language=language,
            timeout=settings.HTTP_TIMEOUT_SECONDS,
            max_retries=settings.HTTP_MAX_RETRIES,
            **client_kwargs,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def close(self):
        await self.client.close()

    @alru_cache(maxsize=1000, ttl=1800)  # 30 mins
    async def get_discover(
        self,
        media_type: MediaType,
        page: int = 1,
        sort_by: str = "popularity.desc",
        min_vote_count: int | None = None,
        min_vote_average: float | None = None,
    ) -> dict[str, Any]:
        """Get one page of discover results."""
        params: dict[str, Any] = {"page": page, "sort_by": sort_by}
        if min_vote_count is not None:
            params["vote_count.gte"] = min_vote_count
        if min_vote_average is not None:
            params["vote_average.gte"] = min_vote_average
        return await self.client.get(f"/discover/{media_type.tmdb_path}", params=params)

    @alru_cache(maxsize=1000, ttl=21600)  # 6 hours
    async def get_recommendations(self, tmdb_id: int, media_type: MediaType, page: int = 1) -> dict[str, Any]:
        params = {"page": page}
        return await self.client.get(f"/{media_type.tmdb_path}/{tmdb_id}/recommendations", params=params)

    @alru_cache(maxsize=1000, ttl=21600)
    async def get_similar(self, tmdb_id: int, media_type: MediaType, page: int = 1) -> dict[str, Any]:
        params = {"page": page}
        return await self.client.get(f"/{media_type.tmdb_path}/{tmdb_id}/similar", params=params)

    @alru_cache(maxsize=5000)
    async def get_details(self, tmdb_id: int, media_type: MediaType) -> dict[str, Any]:
        """Get item details. Series also carry their external ids (IMDb)."""
        params = {"append_to_response": "external_ids"} if media_type is MediaType.SERIES else None
        return await self.client.get(f"/{media_type.tmdb_path}/{tmdb_id}", params=params)

    @alru_cache(maxsize=5000)
    async def get_credits(self, tmdb_id: int, media_type: MediaType) -> dict[str, Any]:
        return await self.client.get(f"/{media_type.tmdb_path}/{tmdb_id}/credits")


@functools.lru_cache(maxsize=16)
def get_tmdb_service(language: str | None = None) -> TMDBService:
    return TMDBService(api_key=settings.TMDB_API_KEY, language=language or settings.TMDB_LANGUAGE)
