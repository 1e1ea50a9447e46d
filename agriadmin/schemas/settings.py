from enum import Enum

from pydantic import BaseModel, Field

from agriadmin.schemas.common import CamelModel, Identifier


class AgeRange(BaseModel):
    min: int
    max: int


class AgeValidation(BaseModel):
    is_valid: bool
    message: str


class CodeType(str, Enum):
    FARMER = "FARMER"
    EMPLOYEE = "EMPLOYEE"


class CodeFormat(CamelModel):
    id: Identifier | None = None
    code_type: CodeType
    prefix: str
    starting_number: int = Field(default=1, gt=0)
    current_number: int = Field(default=0, ge=0)
    description: str | None = ""
    is_active: bool = True


class CodeFormatPayload(CamelModel):
    code_type: CodeType
    prefix: str
    starting_number: int = Field(default=1, gt=0)
    description: str = ""


class CodeFormatUpdate(CamelModel):
    prefix: str | None = None
    description: str | None = None
    is_active: bool | None = None


class NextCode(CamelModel):
    next_code: str


def parse_age_settings(payload) -> dict[str, AgeRange]:
    """Accept either {userType: {min, max}} or the backend's list of age setting rows."""
    if not payload:
        return {}
    if isinstance(payload, dict):
        return {
            str(user_type).lower(): AgeRange.model_validate(bounds)
            for user_type, bounds in payload.items()
        }
    result = {}
    for row in payload:
        if not row.get("isActive", True):
            continue
        result[str(row["userType"]).lower()] = AgeRange(min=row["minValue"], max=row["maxValue"])
    return result


def parse_name_list(payload) -> list[str]:
    if not payload:
        return []
    names = []
    for item in payload:
        if isinstance(item, str):
            names.append(item)
            continue
        for key in ("name", "cropName", "typeName", "value"):
            if item.get(key):
                names.append(str(item[key]))
                break
    return names
