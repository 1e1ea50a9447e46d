import inspect
from collections.abc import Callable, Iterable

import structlog
from pydantic import ValidationError as PydanticValidationError

from agriadmin.core.exceptions import ServerError, ValidationError
from agriadmin.schemas.rbac import (
    Module,
    Permission,
    Role,
    RolePayload,
    UserPermissions,
    UserRoleAssignment,
)

logger = structlog.get_logger()

ADMIN_ROLES = ("ADMIN", "SUPER_ADMIN")

ACTION_ALIASES = {
    "add": Permission.ADD,
    "create": Permission.ADD,
    "view": Permission.VIEW,
    "read": Permission.VIEW,
    "edit": Permission.EDIT,
    "update": Permission.EDIT,
    "delete": Permission.DELETE,
    "remove": Permission.DELETE,
}


# --- Permission introspection ---


def has_permission(user_permissions: UserPermissions | None, module: Module | str, action: str) -> bool:
    if user_permissions is None:
        return False
    permission = ACTION_ALIASES.get(str(getattr(action, "value", action)).lower())
    if permission is None:
        return False
    module_name = getattr(module, "value", module)
    for entry in user_permissions.permissions:
        if entry.module_name == module_name:
            return entry.allows(permission)
    return False


def has_any_permission(user_permissions: UserPermissions | None, module: Module | str) -> bool:
    if user_permissions is None:
        return False
    module_name = getattr(module, "value", module)
    return any(e.module_name == module_name and e.any for e in user_permissions.permissions)


def accessible_modules(user_permissions: UserPermissions | None) -> list[str]:
    if user_permissions is None:
        return []
    return [e.module_name for e in user_permissions.permissions if e.any]


def has_role(user_permissions: UserPermissions | None, role_name: str) -> bool:
    return user_permissions is not None and user_permissions.role_name == role_name


def is_admin(user_permissions: UserPermissions | None) -> bool:
    return any(has_role(user_permissions, name) for name in ADMIN_ROLES)


def is_super_admin(user_permissions: UserPermissions | None) -> bool:
    return has_role(user_permissions, "SUPER_ADMIN")


def filter_roles(roles: Iterable[Role], term: str) -> list[Role]:
    needle = (term or "").lower()
    return [
        role
        for role in roles
        if needle in role.role_name.lower() or needle in (role.description or "").lower()
    ]


# --- Assignments ---


class RoleAssignments:
    """Single-slot user -> role mapping; assigning again replaces the previous role."""

    def __init__(self):
        self._by_user: dict[str, str] = {}

    def assign(self, user_id: str, role_id: str) -> UserRoleAssignment:
        self._by_user[str(user_id)] = str(role_id)
        return UserRoleAssignment(user_id=str(user_id), role_id=str(role_id))

    def role_for(self, user_id: str) -> str | None:
        return self._by_user.get(str(user_id))

    def for_user(self, user_id: str) -> list[UserRoleAssignment]:
        role_id = self.role_for(user_id)
        return [] if role_id is None else [UserRoleAssignment(user_id=str(user_id), role_id=role_id)]

    def __len__(self) -> int:
        return len(self._by_user)


def build_role_payload(
    role_name: str,
    description: str,
    is_active: bool,
    modules: Iterable,
    permissions: Iterable,
) -> RolePayload:
    """Validate a role locally; roles need a name, a module and a permission."""
    modules = list(modules or [])
    permissions = list(permissions or [])
    if not (role_name or "").strip():
        raise ValidationError("Role name is required", field="roleName")
    if not modules:
        raise ValidationError("Select at least one module", field="allowedModules")
    if not permissions:
        raise ValidationError("Select at least one permission", field="permissions")

    try:
        return RolePayload(
            role_name=role_name.strip(),
            description=description or "",
            is_active=is_active,
            allowed_modules=sorted({Module(getattr(m, "value", m)) for m in modules}, key=list(Module).index),
            permissions=sorted({Permission.parse(p) for p in permissions}, key=list(Permission).index),
        )
    except (ValueError, PydanticValidationError) as e:
        raise ValidationError(f"Invalid role definition: {e}") from e


class RoleService:
    """Role CRUD and user assignment against the users & roles API.

    Mutations make one backend call each and do not patch `roles`; call
    `load_roles()` afterwards to see server state.
    """

    def __init__(self, api):
        self.api = api
        self.roles: list[Role] = []
        self.assignments = RoleAssignments()

    async def _call(self, action: str, coro):
        try:
            return await coro
        except ServerError as e:
            logger.warning("role_mutation_failed", action=action, status=e.status_code, detail=e.detail)
            if e.detail:
                raise
            raise ServerError(e.status_code, f"Failed to {action}", e.payload) from e

    def _known_role(self, role_id: str) -> Role | None:
        return next((r for r in self.roles if r.id == str(role_id)), None)

    async def load_roles(self) -> list[Role]:
        self.roles = await self.api.get_all_roles()
        return self.roles

    async def create_role(
        self,
        role_name: str,
        description: str = "",
        is_active: bool = True,
        modules: Iterable = (),
        permissions: Iterable = (),
    ) -> Role:
        payload = build_role_payload(role_name, description, is_active, modules, permissions)
        role = await self._call("create role", self.api.create_role(payload))
        logger.info("role_created", role_id=role.id, role_name=role.role_name)
        return role

    async def update_role(self, role_id: str, patch: dict) -> Role:
        if "id" in patch and str(patch["id"]) != str(role_id):
            raise ValidationError("Role id cannot be changed", field="id")

        current = self._known_role(role_id) or await self.api.get_role(role_id)
        merged = current.model_dump()
        for key, value in patch.items():
            field = _field_name(key)
            if field != "id":
                merged[field] = value

        payload = build_role_payload(
            merged["role_name"],
            merged.get("description") or "",
            merged.get("is_active", True),
            merged.get("allowed_modules"),
            merged.get("permissions"),
        )
        role = await self._call("update role", self.api.update_role(str(role_id), payload))
        logger.info("role_updated", role_id=str(role_id))
        return role

    async def delete_role(self, role_id: str) -> None:
        await self._call("delete role", self.api.delete_role(str(role_id)))
        logger.info("role_deleted", role_id=str(role_id))

    async def activate_role(self, role_id: str) -> None:
        await self._call("activate role", self.api.activate_role(str(role_id)))
        logger.info("role_activated", role_id=str(role_id))

    async def deactivate_role(self, role_id: str) -> None:
        await self._call("deactivate role", self.api.deactivate_role(str(role_id)))
        logger.info("role_deactivated", role_id=str(role_id))

    async def assign_role(
        self,
        user_id: str | int | None,
        role_id: str | int | None,
        *,
        confirm: Callable[[str, str], object] | None = None,
    ) -> UserRoleAssignment | None:
        """Assign `role_id` to `user_id`, replacing any previous assignment.

        `confirm` may be a plain or async callable; a falsy answer cancels the
        assignment before anything is sent and returns None.
        """
        if user_id in (None, "") or role_id in (None, ""):
            raise ValidationError("Please select both a user and a role")
        user_id, role_id = str(user_id), str(role_id)

        role = self._known_role(role_id) or await self.api.get_role(role_id)
        if not role.is_active:
            raise ValidationError(f"Role '{role.role_name}' is inactive", field="roleId")

        if confirm is not None:
            answer = confirm(user_id, role_id)
            if inspect.isawaitable(answer):
                answer = await answer
            if not answer:
                logger.info("role_assignment_declined", user_id=user_id, role_id=role_id)
                return None

        assignment = UserRoleAssignment(user_id=user_id, role_id=role_id)
        await self._call("assign role", self.api.assign_role_to_user(assignment))
        logger.info("role_assigned", user_id=user_id, role_id=role_id)
        return self.assignments.assign(user_id, role_id)

    async def get_user_permissions(self, user_id: str) -> UserPermissions:
        return await self.api.get_user_permissions(str(user_id))

    async def effective_permissions(self, user_id: str) -> UserPermissions:
        """Permissions the user may actually exercise; inactive roles grant nothing."""
        resolved = await self.get_user_permissions(user_id)
        role = None
        if resolved.role_id is not None:
            role = self._known_role(resolved.role_id)
        elif resolved.role_name is not None:
            role = next((r for r in self.roles if r.role_name == resolved.role_name), None)
        if role is not None and not role.is_active:
            return resolved.model_copy(update={"permissions": []})
        return resolved


def _field_name(key: str) -> str:
    return {
        "roleName": "role_name",
        "isActive": "is_active",
        "allowedModules": "allowed_modules",
        "modules": "allowed_modules",
    }.get(key, key)
