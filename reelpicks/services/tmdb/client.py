from typing import Any

from reelpicks.core.base_client import BaseClient
from reelpicks.core.version import __version__


class TMDBClient(BaseClient):
    """
    Client for the TMDB v3 API. Injects the API key and language into every request.
    """

    def __init__(self, api_key: str, language: str = "en-US", timeout: float = 10.0, max_retries: int = 3, **kwargs):
        headers = {
            "User-Agent": f"Reelpicks/{__version__}",
            "Accept": "application/json",
        }
        super().__init__(
            base_url="https://api.themoviedb.org/3",
            timeout=timeout,
            max_retries=max_retries,
            headers=headers,
            **kwargs,
        )
        self.api_key = api_key
        self.language = language

    async def _request(self, method: str, url: str, **kwargs) -> Any:
        params = dict(kwargs.get("params") or {})
        params["api_key"] = self.api_key
        params["language"] = self.language
        kwargs["params"] = params
        return await super()._request(method, url, **kwargs)
