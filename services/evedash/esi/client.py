"""EVE Swagger Interface (ESI) client.

Thin async wrapper over the ESI REST endpoints the dashboard reads. One
client is opened per request with the caller's validated bearer token; it
is only attached to endpoints that need it; public universe lookups go
out anonymously.
"""

from types import TracebackType
from typing import Any

import httpx

from evedash.config import ESIConfig
from evedash.logging_config import get_logger

logger = get_logger(__name__)

USER_AGENT = "evedash/0.1.0"

# ESI refuses /universe/names/ requests with more ids than this.
NAMES_BATCH_LIMIT = 1000


class ESIError(Exception):
    """ESI answered with a non-success status, or could not be reached."""

    def __init__(self, status_code: int, path: str, body: str = "") -> None:
        self.status_code = status_code
        self.path = path
        self.body = body
        super().__init__(f"ESI {path} failed with HTTP {status_code}")


class ESIClient:
    """Async ESI client bound to one character's access token.

    Usage:
        async with ESIClient(config, access_token) as esi:
            character = await esi.get_character(character_id)
    """

    def __init__(self, config: ESIConfig, access_token: str) -> None:
        self._config = config
        self._access_token = access_token
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "ESIClient":
        self._client = httpx.AsyncClient(
            base_url=self._config.base_url.rstrip("/"),
            timeout=self._config.timeout_seconds,
            headers={"Accept": "application/json", "User-Agent": USER_AGENT},
            params={"datasource": self._config.datasource},
        )
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("ESIClient used outside of 'async with'")
        return self._client

    async def _request(
        self,
        method: str,
        path: str,
        authenticated: bool = False,
        json_body: Any = None,
    ) -> Any:
        headers = {"Authorization": f"Bearer {self._access_token}"} if authenticated else None
        try:
            resp = await self._http().request(method, path, headers=headers, json=json_body)
        except httpx.RequestError as e:
            logger.warning("ESI unreachable", path=path, error=type(e).__name__)
            raise ESIError(502, path, str(e)) from e

        if not resp.is_success:
            logger.warning("ESI request failed", path=path, status_code=resp.status_code)
            raise ESIError(resp.status_code, path, resp.text[:500])

        try:
            return resp.json()
        except ValueError as e:
            logger.warning(
                "ESI returned an unreadable body", path=path, status_code=resp.status_code
            )
            raise ESIError(502, path, resp.text[:500]) from e

    # --- Character ---

    async def get_character(self, character_id: int) -> dict[str, Any]:
        return await self._request("GET", f"/characters/{character_id}/", authenticated=True)

    async def get_online(self, character_id: int) -> dict[str, Any]:
        return await self._request("GET", f"/characters/{character_id}/online/", authenticated=True)

    async def get_ship(self, character_id: int) -> dict[str, Any]:
        return await self._request("GET", f"/characters/{character_id}/ship/", authenticated=True)

    async def get_location(self, character_id: int) -> dict[str, Any]:
        return await self._request(
            "GET", f"/characters/{character_id}/location/", authenticated=True
        )

    async def get_skills(self, character_id: int) -> dict[str, Any]:
        return await self._request("GET", f"/characters/{character_id}/skills/", authenticated=True)

    async def get_skillqueue(self, character_id: int) -> list[dict[str, Any]]:
        return await self._request(
            "GET", f"/characters/{character_id}/skillqueue/", authenticated=True
        )

    # --- Corporation / alliance ---

    async def get_corporation(self, corporation_id: int) -> dict[str, Any]:
        return await self._request("GET", f"/corporations/{corporation_id}/", authenticated=True)

    async def get_alliance(self, alliance_id: int) -> dict[str, Any]:
        return await self._request("GET", f"/alliances/{alliance_id}/", authenticated=True)

    # --- Universe ---

    async def get_type(self, type_id: int) -> dict[str, Any]:
        return await self._request("GET", f"/universe/types/{type_id}/")

    async def get_solar_system(self, system_id: int) -> dict[str, Any]:
        return await self._request("GET", f"/universe/systems/{system_id}/")

    async def get_station(self, station_id: int) -> dict[str, Any]:
        return await self._request("GET", f"/universe/stations/{station_id}/")

    async def get_structure(self, structure_id: int) -> dict[str, Any]:
        return await self._request(
            "GET", f"/universe/structures/{structure_id}/", authenticated=True
        )

    async def resolve_names(self, ids: list[int]) -> dict[int, str]:
        """Resolve type/character/etc ids to names in one call.

        Raises:
            ESIError: if the lookup fails. Callers decide on a fallback.
        """
        unique_ids = sorted(set(ids))
        names: dict[int, str] = {}
        for start in range(0, len(unique_ids), NAMES_BATCH_LIMIT):
            batch = unique_ids[start : start + NAMES_BATCH_LIMIT]
            entries = await self._request("POST", "/universe/names/", json_body=batch)
            try:
                names.update({int(e["id"]): str(e["name"]) for e in entries})
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Unusable name lookup response", error=str(e))
                raise ESIError(502, "/universe/names/", str(e)) from e
        return names
