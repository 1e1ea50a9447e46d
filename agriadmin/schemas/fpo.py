from enum import Enum

from agriadmin.schemas.common import CamelModel, Identifier


class FpoResource(str, Enum):
    BOARD_MEMBERS = "board-members"
    CROPS = "crops"
    INPUT_SHOPS = "input-shops"
    PRODUCT_CATEGORIES = "product-categories"
    USERS = "users"


class FpoRecord(CamelModel):
    """A record owned by one FPO; fields beyond the id are kept as returned."""

    id: Identifier | None = None
    fpo_id: Identifier | None = None

    model_config = {"extra": "allow"}


class IdCard(CamelModel):
    card_id: str
    card_type: str | None = None
    holder_id: Identifier | None = None
    status: str | None = None
