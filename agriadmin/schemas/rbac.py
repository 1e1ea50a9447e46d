from enum import Enum

from pydantic import Field, field_validator

from agriadmin.schemas.common import CamelModel, Identifier


class Module(str, Enum):
    EMPLOYEE = "EMPLOYEE"
    FARMER = "FARMER"
    FPO = "FPO"
    CONFIGURATION = "CONFIGURATION"
    ANALYTICS = "ANALYTICS"
    USER_MANAGEMENT = "USER_MANAGEMENT"


class Permission(str, Enum):
    ADD = "ADD"
    VIEW = "VIEW"
    EDIT = "EDIT"
    DELETE = "DELETE"

    @classmethod
    def parse(cls, value: "Permission | str") -> "Permission":
        if isinstance(value, cls):
            return value
        key = str(value).strip().upper()
        return cls(PERMISSION_SYNONYMS.get(key, key))


# Older role records use CRUD verbs.
PERMISSION_SYNONYMS = {
    "CREATE": "ADD",
    "READ": "VIEW",
    "UPDATE": "EDIT",
    "REMOVE": "DELETE",
}


class RolePayload(CamelModel):
    role_name: str
    description: str = ""
    is_active: bool = True
    allowed_modules: list[Module] = Field(default_factory=list)
    permissions: list[Permission] = Field(default_factory=list)

    @field_validator("permissions", mode="before")
    @classmethod
    def _normalize_permissions(cls, value):
        if value is None:
            return []
        return [Permission.parse(v) for v in value]


class Role(RolePayload):
    id: Identifier
    description: str | None = ""


class ModulePermission(CamelModel):
    module_name: str
    can_add: bool = False
    can_view: bool = False
    can_edit: bool = False
    can_delete: bool = False

    def allows(self, permission: Permission) -> bool:
        return {
            Permission.ADD: self.can_add,
            Permission.VIEW: self.can_view,
            Permission.EDIT: self.can_edit,
            Permission.DELETE: self.can_delete,
        }[permission]

    @property
    def any(self) -> bool:
        return self.can_add or self.can_view or self.can_edit or self.can_delete


class UserPermissions(CamelModel):
    user_id: Identifier | None = None
    role_id: Identifier | None = None
    role_name: str | None = None
    permissions: list[ModulePermission] = Field(default_factory=list)


class UserRoleAssignment(CamelModel):
    user_id: Identifier
    role_id: Identifier
