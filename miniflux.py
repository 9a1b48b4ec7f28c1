#!/usr/bin/env python3
"""
Minimal async client for the Miniflux feed aggregator API.

Only the two calls the pretranslate scheduler needs are implemented: listing
feeds (with their categories) and listing entries with filters.
"""

from typing import Any, Dict, List, Optional

from aiohttp import BasicAuth, ClientError, ClientSession, ClientTimeout

from config import config, get_logger
from errors import FeedClientError

logger = get_logger("miniflux")


class MinifluxClient:
    """Thin wrapper over the Miniflux v1 REST API.

    Authenticates with an API token when one is configured, otherwise with
    HTTP basic auth.
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        session: Optional[ClientSession] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.username = username
        self.password = password
        self._session = session
        self._owns_session = session is None

    def _get_session(self) -> ClientSession:
        if self._session is None or self._session.closed:
            headers = {"User-Agent": config.USER_AGENT, "Accept": "application/json"}
            auth = None
            if self.api_key:
                headers["X-Auth-Token"] = self.api_key
            elif self.username and self.password:
                auth = BasicAuth(self.username, self.password)
            self._session = ClientSession(
                headers=headers,
                auth=auth,
                timeout=ClientTimeout(total=config.HTTP_TIMEOUT),
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    async def _get_json(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Any:
        url = f"{self.base_url}/v1/{endpoint}"
        try:
            async with self._get_session().get(url, params=params) as resp:
                if resp.status >= 400:
                    body = await resp.text()
                    raise FeedClientError(
                        f"Miniflux {endpoint} returned HTTP {resp.status}: {body[:200]}",
                        status_code=resp.status,
                    )
                return await resp.json()
        except ClientError as e:
            raise FeedClientError(f"Miniflux {endpoint} request failed: {e}") from e

    async def get_feeds(self) -> List[Dict[str, Any]]:
        return await self._get_json("feeds") or []

    async def get_entries(self, **filters: Any) -> Dict[str, Any]:
        """List entries; filters map to query parameters (status, order, direction, limit, after...)."""
        params = {k: str(v) for k, v in filters.items() if v is not None}
        return await self._get_json("entries", params=params) or {}


def create_client_from_config() -> Optional[MinifluxClient]:
    """Build a client from MINIFLUX_* settings, or None if the aggregator is not configured."""
    if not config.MINIFLUX_URL:
        logger.debug("MINIFLUX_URL not set; feed aggregator unavailable")
        return None
    if not (config.MINIFLUX_API_KEY or (config.MINIFLUX_USERNAME and config.MINIFLUX_PASSWORD)):
        logger.warning("MINIFLUX_URL set without MINIFLUX_API_KEY or MINIFLUX_USERNAME/MINIFLUX_PASSWORD")
        return None
    return MinifluxClient(
        config.MINIFLUX_URL,
        api_key=config.MINIFLUX_API_KEY,
        username=config.MINIFLUX_USERNAME,
        password=config.MINIFLUX_PASSWORD,
    )
