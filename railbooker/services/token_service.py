"""
Pre-authentication token fetching and caching
"""

import logging
import time
from typing import Callable, Optional

import httpx

from ..exceptions import NetworkError
from ..models.booking import TokenConfig


class TokenService:
    """Fetches a token from a configured endpoint and caches it until refresh"""

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None, timeout: float = 30.0,
                 clock: Callable[[], float] = time.time):
        self.transport = transport
        self.timeout = timeout
        self._clock = clock
        self._token: Optional[str] = None
        self._expires_at = 0.0
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    def get_cached_token(self) -> Optional[str]:
        if self._token and self._clock() < self._expires_at:
            return self._token
        return None

    def clear(self):
        self._token = None
        self._expires_at = 0.0

    def _cache(self, token: str, config: TokenConfig) -> str:
        self._token = token
        self._expires_at = self._clock() + config.refresh_interval_seconds
        return token

    async def fetch_token(self, config: Optional[TokenConfig]) -> Optional[str]:
        """
        Return a usable token for ``config``

        A token given directly in the config wins; otherwise the API is called.
        Returns None when tokens are disabled.

        Raises:
            NetworkError: the token endpoint failed or returned no token
        """
        if config is None or not config.use_token:
            return None

        cached = self.get_cached_token()
        if cached:
            return cached

        if config.token:
            return self._cache(config.token, config)

        headers = {}
        if config.auth_header_name and config.auth_header_value:
            headers[config.auth_header_name] = config.auth_header_value

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.get(config.api_url, headers=headers)
        except httpx.HTTPError as e:
            raise NetworkError(f"Token request failed: {e}", config.api_url) from e

        if response.status_code != 200:
            raise NetworkError("Token endpoint returned an error", config.api_url, response.status_code)

        token = self._parse_token(response)
        if not token:
            raise NetworkError("Token endpoint returned no token", config.api_url, response.status_code)

        self.logger.info("Fetched new auth token")
        return self._cache(token, config)

    @staticmethod
    def _parse_token(response: httpx.Response) -> Optional[str]:
        try:
            data = response.json()
        except ValueError:
            return response.text.strip() or None

        if isinstance(data, dict):
            nested = data.get("data")
            token = data.get("token") or data.get("Token")
            if not token and isinstance(nested, dict):
                token = nested.get("token")
            return token
        if isinstance(data, str):
            return data.strip() or None
        return None
