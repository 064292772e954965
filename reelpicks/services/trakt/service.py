import functools
from typing import Any

from async_lru import alru_cache

from reelpicks.core.config import settings
from reelpicks.models.media import MediaType
from reelpicks.services.trakt.client import TraktClient


class TraktService:
    """Trending, popular and per-user recommendation feeds from Trakt."""

    def __init__(self, client_id: str | None, **client_kwargs):
        self.client_id = client_id
        self.client = TraktClient(
            client_id=client_id or "",
            timeout=settings.HTTP_TIMEOUT_SECONDS,
            max_retries=settings.HTTP_MAX_RETRIES,
            **client_kwargs,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id)

    async def close(self):
        await self.client.close()

    @alru_cache(maxsize=50, ttl=3600)  # 1 hour
    async def get_trending(self, media_type: MediaType, limit: int) -> list[dict[str, Any]]:
        """Entries look like ``{"watchers": 12, "movie": {...}}``."""
        params = {"limit": limit, "extended": "full"}
        return await self.client.get(f"/{media_type.trakt_path}/trending", params=params) or []

    @alru_cache(maxsize=50, ttl=3600)
    async def get_popular(self, media_type: MediaType, limit: int) -> list[dict[str, Any]]:
        """Entries are bare item objects."""
        params = {"limit": limit, "extended": "full"}
        return await self.client.get(f"/{media_type.trakt_path}/popular", params=params) or []

    async def get_recommendations(self, media_type: MediaType, access_token: str, limit: int) -> list[dict[str, Any]]:
        # Personal feed, not cached across users
        params = {"limit": limit, "ignore_collected": "true", "extended": "full"}
        return await self.client.get_as_user(f"/recommendations/{media_type.trakt_path}", access_token, params) or []


@functools.lru_cache(maxsize=1)
def get_trakt_service() -> TraktService:
    return TraktService(client_id=settings.TRAKT_CLIENT_ID)
