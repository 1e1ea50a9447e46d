import re
from collections.abc import Awaitable, Callable

import structlog

from agriadmin.core.exceptions import AgriAdminError
from agriadmin.schemas.bulk import EntityType
from agriadmin.schemas.fpo import IdCard
from agriadmin.services.code_formats import CODE_NUMBER_WIDTH, DEFAULT_PREFIX

logger = structlog.get_logger()

FARMER_ID_FIELDS = (
    "farmerId",
    "farmerCode",
    "farmerUniqueId",
    "famId",
    "famCode",
    "userUniqueId",
    "userId",
    "uniqueId",
)

EMPLOYEE_CARD_PATTERN = re.compile(r"(^|-)EMP(LOYEE)?(-|$)", re.IGNORECASE)


def _present(value) -> bool:
    return value is not None and str(value).strip() != ""


def farmer_display_id(
    farmer: dict | None,
    prefix: str = DEFAULT_PREFIX,
    unique_ids: dict[str, str] | None = None,
) -> str:
    if not farmer:
        return "N/A"
    candidates = [farmer.get(key) for key in FARMER_ID_FIELDS]
    if unique_ids and farmer.get("id") is not None:
        candidates.append(unique_ids.get(str(farmer["id"])))
    candidates.append(farmer.get("cardId"))

    for value in candidates:
        if _present(value):
            return str(value)
    number = str(farmer.get("id") or 0).zfill(CODE_NUMBER_WIDTH)
    return f"{prefix}-{number}"


def pick_card_id(cards: list[IdCard], kind: EntityType, holder_id: str) -> str | None:
    """Choose the card that identifies `holder_id`, preferring ACTIVE ones.

    Farmers fall back to any returned card; employees only accept employee cards.
    """
    holder_id = str(holder_id)
    if kind is EntityType.FARMER:
        matching = [
            c
            for c in cards
            if (c.card_type == "FARMER" or c.card_id.startswith("FAM")) and c.holder_id == holder_id
        ]
        pool = matching or cards
    else:
        pool = [
            c
            for c in cards
            if c.holder_id == holder_id
            and (c.card_type == "EMPLOYEE" or EMPLOYEE_CARD_PATTERN.search(c.card_id))
        ]
    if not pool:
        return None
    active = next((c for c in pool if c.status == "ACTIVE"), pool[0])
    return active.card_id


Loader = Callable[[EntityType, str], Awaitable[str | None]]


def id_card_loader(api) -> Loader:
    async def load(kind: EntityType, entity_id: str) -> str | None:
        cards = await api.get_id_cards_by_holder(entity_id)
        return pick_card_id(cards, kind, entity_id)

    return load


class DisplayIdCache:
    """Read-through cache of display ids keyed by (entity kind, entity id).

    Lookups that fail or find nothing are not cached, so the next read retries.
    """

    def __init__(self, loader: Loader):
        self._loader = loader
        self._entries: dict[tuple[EntityType, str], str] = {}

    async def get(self, kind: EntityType, entity_id) -> str | None:
        key = (kind, str(entity_id))
        if key in self._entries:
            return self._entries[key]
        try:
            value = await self._loader(kind, key[1])
        except AgriAdminError as e:
            logger.warning("display_id_lookup_failed", kind=kind.value, entity_id=key[1], error=e.message)
            return None
        if value:
            self._entries[key] = value
        return value

    def mapping(self, kind: EntityType) -> dict[str, str]:
        return {entity_id: value for (k, entity_id), value in self._entries.items() if k is kind}

    def invalidate(self, kind: EntityType, entity_id) -> None:
        self._entries.pop((kind, str(entity_id)), None)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
