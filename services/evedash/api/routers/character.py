"""Character data endpoints backed by ESI.

Every route requires a valid session holding the scopes it reads with.
Independent ESI lookups for one response are issued concurrently.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from fastapi import APIRouter, Depends, Response
from fastapi.responses import JSONResponse

from evedash.api.dependencies import get_esi_config, require_character
from evedash.auth.sessions import AuthenticatedCharacter
from evedash.config import ESIConfig
from evedash.esi.client import ESIClient, ESIError
from evedash.logging_config import get_logger

router = APIRouter(tags=["character"])
logger = get_logger(__name__)

T = TypeVar("T")

PUBLIC_DATA_SCOPE = "publicData"
LOCATION_SCOPE = "esi-location.read_location.v1"
SKILLS_SCOPE = "esi-skills.read_skills.v1"
SKILLQUEUE_SCOPE = "esi-skills.read_skillqueue.v1"


@router.get("/profile")
async def profile(
    character: AuthenticatedCharacter = Depends(require_character(PUBLIC_DATA_SCOPE)),
    esi_config: ESIConfig = Depends(get_esi_config),
) -> Response:
    """Character, corporation, alliance, current ship and online status."""
    character_id = character.character_id

    async with ESIClient(esi_config, character.access_token) as esi:
        try:
            details = await esi.get_character(character_id)
            # Siblings must finish before the client closes, even if one fails.
            corporation, online_status, ship = await asyncio.gather(
                esi.get_corporation(details["corporation_id"]),
                _online_status(esi, character_id),
                _ship(esi, character_id),
                return_exceptions=True,
            )
            if isinstance(corporation, BaseException):
                raise corporation
        except ESIError as e:
            logger.error("Failed to fetch profile data", path=e.path, status_code=e.status_code)
            return JSONResponse(status_code=500, content={"error": "Failed to fetch profile data"})

        # Online status and ship are best-effort and degrade to false / absent.
        if isinstance(online_status, BaseException):
            logger.warning("Online status unavailable", error=repr(online_status))
            online_status = False
        if isinstance(ship, BaseException):
            logger.warning("Ship details unavailable", error=repr(ship))
            ship = None

        alliance = None
        if corporation.get("alliance_id"):
            try:
                alliance = await esi.get_alliance(corporation["alliance_id"])
            except ESIError as e:
                logger.warning(
                    "Failed to fetch alliance details",
                    alliance_id=corporation["alliance_id"],
                    status_code=e.status_code,
                )

    return JSONResponse(
        content=_without_none(
            {
                "character": details,
                "corporation": corporation,
                "alliance": alliance,
                "ship": ship,
                "online_status": online_status,
            }
        )
    )


@router.get("/location")
async def location(
    character: AuthenticatedCharacter = Depends(require_character(LOCATION_SCOPE)),
    esi_config: ESIConfig = Depends(get_esi_config),
) -> Response:
    """Current solar system plus the station or structure the character is docked in."""
    async with ESIClient(esi_config, character.access_token) as esi:
        try:
            current = await esi.get_location(character.character_id)
        except ESIError as e:
            logger.error("EVE API location error", status_code=e.status_code, body=e.body)
            return JSONResponse(
                status_code=e.status_code,
                content={"error": "Failed to fetch location from EVE API"},
            )

        station_id = current.get("station_id")
        structure_id = current.get("structure_id")
        solar_system, station, structure = await asyncio.gather(
            _optional(esi.get_solar_system, current["solar_system_id"], "solar system"),
            _optional(esi.get_station, station_id, "station"),
            _optional(esi.get_structure, structure_id, "structure"),
        )

    return JSONResponse(
        content=_without_none(
            {
                "location": current,
                "solar_system": solar_system,
                "station": station,
                "structure": structure,
            }
        )
    )


@router.get("/character/skills")
async def skills(
    character: AuthenticatedCharacter = Depends(require_character(SKILLS_SCOPE)),
    esi_config: ESIConfig = Depends(get_esi_config),
) -> Response:
    """Trained skills with display names, total and unallocated SP."""
    async with ESIClient(esi_config, character.access_token) as esi:
        try:
            data = await esi.get_skills(character.character_id)
        except ESIError as e:
            logger.error("Error fetching character skills", status_code=e.status_code)
            return JSONResponse(
                status_code=500, content={"error": "Failed to fetch character skills"}
            )

        trained = data.get("skills") or []
        names = await resolve_names_or(
            esi, [s["skill_id"] for s in trained], fallback=fallback_skill_name
        )

    return JSONResponse(
        content={
            "skills": [{**s, "skill_name": names[s["skill_id"]]} for s in trained],
            "total_sp": data.get("total_sp") or 0,
            "unallocated_sp": data.get("unallocated_sp") or 0,
        }
    )


@router.get("/character/skillqueue")
async def skillqueue(
    character: AuthenticatedCharacter = Depends(require_character(SKILLQUEUE_SCOPE)),
    esi_config: ESIConfig = Depends(get_esi_config),
) -> Response:
    """Skill training queue in queue order, with display names."""
    async with ESIClient(esi_config, character.access_token) as esi:
        try:
            queue = await esi.get_skillqueue(character.character_id)
        except ESIError as e:
            logger.error("Error fetching skill queue", status_code=e.status_code)
            return JSONResponse(status_code=500, content={"error": "Failed to fetch skill queue"})

        queue = sorted(queue, key=lambda entry: entry.get("queue_position", 0))
        names = await resolve_names_or(
            esi, [entry["skill_id"] for entry in queue], fallback=fallback_skill_name
        )

    return JSONResponse(
        content={
            "queue": [{**entry, "skill_name": names[entry["skill_id"]]} for entry in queue],
            "queue_length": len(queue),
        }
    )


# --- Helpers ---


def fallback_skill_name(skill_id: int) -> str:
    return f"Skill {skill_id}"


async def resolve_names_or(
    esi: ESIClient,
    ids: list[int],
    fallback: Callable[[int], str],
) -> dict[int, str]:
    """Names for ``ids`` from one batched lookup, ``fallback(id)`` where missing.

    A failed lookup is logged and every id gets its fallback name.
    """
    try:
        names = await esi.resolve_names(ids)
    except ESIError as e:
        logger.warning(
            "Name lookup failed, using fallback names",
            status_code=e.status_code,
            count=len(set(ids)),
        )
        names = {}
    return {i: names.get(i) or fallback(i) for i in ids}


async def _online_status(esi: ESIClient, character_id: int) -> bool:
    try:
        data = await esi.get_online(character_id)
        return bool(data.get("online", False))
    except (ESIError, AttributeError) as e:
        logger.debug("Online status unavailable", error=repr(e))
        return False


async def _ship(esi: ESIClient, character_id: int) -> dict[str, Any] | None:
    """Current ship with its type name; None when ESI has nothing to say."""
    try:
        ship = await esi.get_ship(character_id)
        ship_type = await esi.get_type(ship["ship_type_id"])
    except (ESIError, KeyError, TypeError) as e:
        logger.debug("Ship details unavailable", error=repr(e))
        return None
    return {
        "ship_item_id": ship.get("ship_item_id"),
        "ship_name": ship.get("ship_name") or ship_type.get("name"),
        "ship_type_id": ship["ship_type_id"],
        "ship_type_name": ship_type.get("name"),
    }


async def _optional(
    fetch: Callable[[int], Awaitable[T]], object_id: int | None, what: str
) -> T | None:
    """Fetch an enrichment object; missing id or ESI failure gives None."""
    if not object_id:
        return None
    try:
        return await fetch(object_id)
    except ESIError as e:
        logger.warning("Failed to fetch location detail", kind=what, status_code=e.status_code)
        return None


def _without_none(payload: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in payload.items() if v is not None}
