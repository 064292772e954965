from typing import Any

from reelpicks.core.base_client import BaseClient
from reelpicks.core.version import __version__


class TraktClient(BaseClient):
    """
    Client for the Trakt v2 API.

    Public endpoints only need the client id. User endpoints also take the user's
    OAuth access token, passed per call.
    """

    def __init__(self, client_id: str, timeout: float = 10.0, max_retries: int = 3, **kwargs):
        headers = {
            "User-Agent": f"Reelpicks/{__version__}",
            "Content-Type": "application/json",
            "trakt-api-version": "2",
            "trakt-api-key": client_id,
        }
        super().__init__(
            base_url="https://api.trakt.tv", timeout=timeout, max_retries=max_retries, headers=headers, **kwargs
        )

    async def get_as_user(self, url: str, access_token: str, params: dict[str, Any] | None = None) -> Any:
        return await self.get(url, params=params, headers={"Authorization": f"Bearer {access_token}"})
