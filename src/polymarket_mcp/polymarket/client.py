import logging
from typing import Any, Dict, List
from urllib.parse import quote

import httpx

from ..errors import PolymarketApiError, PolymarketNotFound
from ..settings import get_settings

logger = logging.getLogger(__name__)


def _query(**params: Any) -> Dict[str, str]:
    """Drop unset parameters and render the rest the way the Gamma API expects."""
    query: Dict[str, str] = {}
    for key, value in params.items():
        if value is None or value == "":
            continue
        if isinstance(value, bool):
            query[key] = "true" if value else "false"
        else:
            query[key] = str(value)
    return query


class PolymarketClient:
    """Async client for the read-only Polymarket Gamma and Data APIs."""

    def __init__(
        self,
        gamma_base: str | None = None,
        data_base: str | None = None,
        timeout: float | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        settings = get_settings()
        self.gamma_base = (gamma_base or settings.gamma_api_base).rstrip("/")
        self.data_base = (data_base or settings.data_api_base).rstrip("/")
        self._http = http_client or httpx.AsyncClient(
            timeout=timeout or settings.polymarket_request_timeout_seconds,
            headers={"accept": "application/json"},
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "PolymarketClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def _get_json(
        self,
        url: str,
        params: Dict[str, str] | None = None,
        api_name: str = "Polymarket API",
        not_found: str | None = None,
    ) -> Any:
        logger.debug("GET %s params=%s", url, params)
        try:
            response = await self._http.get(url, params=params)
        except httpx.HTTPError as e:
            raise PolymarketApiError(f"{api_name} request failed: {e}") from e

        if response.status_code == 404 and not_found:
            raise PolymarketNotFound(not_found, status_code=404)
        if response.is_error:
            raise PolymarketApiError(
                f"{api_name} error: {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
            )
        return response.json()

    async def search_markets(
        self,
        limit: int | None = None,
        offset: int | None = None,
        closed: bool | None = None,
        tag_id: int | None = None,
        liquidity_min: float | None = None,
        volume_min: float | None = None,
        order: str | None = None,
        ascending: bool | None = None,
    ) -> List[Dict[str, Any]]:
        params = _query(
            limit=limit,
            offset=offset,
            closed=closed,
            tag_id=tag_id,
            liquidity_num_min=liquidity_min,
            volume_num_min=volume_min,
            order=order,
            ascending=ascending,
        )
        return await self._get_json(f"{self.gamma_base}/markets", params)

    async def get_market(self, slug: str) -> Dict[str, Any]:
        return await self._get_json(
            f"{self.gamma_base}/markets/slug/{quote(slug, safe='')}",
            not_found=f"Market not found: {slug}",
        )

    async def search_events(
        self,
        limit: int | None = None,
        offset: int | None = None,
        closed: bool | None = None,
        tag_id: int | None = None,
        featured: bool | None = None,
        order: str | None = None,
        ascending: bool | None = None,
    ) -> List[Dict[str, Any]]:
        params = _query(
            limit=limit,
            offset=offset,
            closed=closed,
            tag_id=tag_id,
            featured=featured,
            order=order,
            ascending=ascending,
        )
        return await self._get_json(f"{self.gamma_base}/events", params)

    async def get_event(self, slug: str) -> Dict[str, Any]:
        return await self._get_json(
            f"{self.gamma_base}/events/slug/{quote(slug, safe='')}",
            not_found=f"Event not found: {slug}",
        )

    async def list_tags(
        self, limit: int | None = None, offset: int | None = None
    ) -> List[Dict[str, Any]]:
        return await self._get_json(
            f"{self.gamma_base}/tags", _query(limit=limit, offset=offset)
        )

    async def get_trades(
        self,
        limit: int | None = None,
        offset: int | None = None,
        market: str | None = None,
        event_id: str | None = None,
        side: str | None = None,
    ) -> List[Dict[str, Any]]:
        params = _query(
            limit=limit,
            offset=offset,
            market=market,
            eventId=event_id,
            side=side,
        )
        return await self._get_json(
            f"{self.data_base}/trades", params, api_name="Polymarket Data API"
        )
