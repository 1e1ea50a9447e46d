"""Async REST client for the administration backend.

Every call goes through `ApiService._request`, which maps transport failures and
non-2xx answers onto the error taxonomy in `agriadmin.core.exceptions` and unwraps
the `{"success": ..., "data": ...}` envelope some endpoints use. Callers always
receive typed models.
"""

import httpx
import structlog
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from agriadmin.core.config import Settings, get_settings
from agriadmin.core.exceptions import ServerError, TransportError
from agriadmin.schemas.bulk import (
    AssignmentStrategy,
    EntityType,
    ExportRequest,
    ImportHistoryEntry,
    ImportJob,
)
from agriadmin.schemas.fpo import FpoRecord, FpoResource, IdCard
from agriadmin.schemas.rbac import Role, RolePayload, UserPermissions, UserRoleAssignment
from agriadmin.schemas.settings import (
    AgeRange,
    CodeFormat,
    CodeFormatPayload,
    CodeFormatUpdate,
    CodeType,
    NextCode,
    parse_age_settings,
    parse_name_list,
)

logger = structlog.get_logger()

STATUS_FALLBACK_MESSAGES = {
    400: "Invalid request",
    401: "Authentication required",
    403: "Access denied",
    404: "Resource not found",
    409: "Conflict with existing data",
}

RBAC_PREFIX = "/users-roles-management"


def _status_message(status_code: int) -> str:
    if status_code >= 500:
        return "Server error, please try again later"
    return STATUS_FALLBACK_MESSAGES.get(status_code, f"Request failed with status {status_code}")


def _server_detail(response: httpx.Response):
    """Return (detail, payload): the server's own message if it sent one."""
    try:
        payload = response.json()
    except ValueError:
        text = response.text.strip()
        return (text or None), text

    if isinstance(payload, dict):
        for key in ("message", "error", "detail"):
            value = payload.get(key)
            if isinstance(value, str) and value.strip():
                return value, payload
        return None, payload
    if isinstance(payload, str) and payload.strip():
        return payload, payload
    return None, payload


def _unwrap(response: httpx.Response):
    if not response.content:
        return None
    try:
        payload = response.json()
    except ValueError:
        return response.text
    if isinstance(payload, dict) and "data" in payload:
        return payload["data"]
    return payload


def _parse(model: type[BaseModel], payload):
    try:
        return model.model_validate(payload)
    except PydanticValidationError as e:
        raise ServerError(200, f"Unexpected {model.__name__} payload from server", payload) from e


def _parse_list(model: type[BaseModel], payload) -> list:
    return [_parse(model, item) for item in payload or []]


class ApiService:
    def __init__(
        self,
        settings: Settings | None = None,
        *,
        token: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.settings = settings or get_settings()
        headers = {"Accept": "application/json", "User-Agent": self.settings.APP_NAME}
        token = token if token is not None else self.settings.API_TOKEN
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            base_url=self.settings.API_BASE_URL,
            timeout=self.settings.API_TIMEOUT_SECONDS,
            headers=headers,
            transport=transport,
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json=None,
        params: dict | None = None,
        files: dict | None = None,
        data: dict | None = None,
        raw: bool = False,
    ):
        if params:
            params = {k: v for k, v in params.items() if v is not None}
        try:
            response = await self._client.request(
                method, path, json=json, params=params, files=files, data=data
            )
        except httpx.TransportError as e:
            logger.warning("api_transport_error", method=method, path=path, error=str(e))
            raise TransportError(f"Unable to reach server: {e}") from e

        if response.is_error:
            detail, payload = _server_detail(response)
            logger.warning(
                "api_request_failed",
                method=method,
                path=path,
                status=response.status_code,
                detail=detail,
            )
            raise ServerError(
                response.status_code,
                detail or _status_message(response.status_code),
                payload,
                detail=detail,
            )

        if raw:
            return response.content
        return _unwrap(response)

    # --- Bulk operations ---

    async def bulk_import(
        self,
        entity_type: EntityType,
        file_name: str,
        content: bytes,
        content_type: str | None = None,
        *,
        auto_assign: bool = False,
        assignment_strategy: AssignmentStrategy = AssignmentStrategy.MANUAL,
    ) -> ImportJob:
        payload = await self._request(
            "POST",
            f"/bulk/import/{entity_type.path}",
            files={"file": (file_name, content, content_type or "application/octet-stream")},
            data={
                "autoAssign": "true" if auto_assign else "false",
                "assignmentStrategy": assignment_strategy.value,
            },
        )
        return _parse(ImportJob, payload)

    async def get_import_status(self, import_id: str) -> ImportJob:
        payload = await self._request("GET", f"/bulk/import/status/{import_id}")
        if isinstance(payload, dict):
            payload.setdefault("importId", import_id)
        return _parse(ImportJob, payload)

    async def get_import_history(self, user_email: str) -> list[ImportHistoryEntry]:
        payload = await self._request(
            "GET", "/bulk/import/history", params={"userEmail": user_email}
        )
        return _parse_list(ImportHistoryEntry, payload)

    async def bulk_export(self, entity_type: EntityType, filters: ExportRequest) -> bytes:
        return await self._request(
            "POST", f"/bulk/export/{entity_type.path}", json=filters.to_payload(), raw=True
        )

    async def download_template(self, entity_type: EntityType) -> bytes:
        return await self._request("GET", f"/bulk/template/{entity_type.path}", raw=True)

    async def bulk_assign_farmers_by_location(self, location: str, employee_email: str):
        return await self._request(
            "POST",
            "/bulk/assign/farmers-by-location",
            params={"location": location, "employeeEmail": employee_email},
        )

    async def bulk_assign_farmers_by_names(self, farmer_names: list[str], employee_email: str):
        return await self._request(
            "POST",
            "/bulk/assign/farmers-by-names",
            json={"farmerNames": farmer_names, "employeeEmail": employee_email},
        )

    # --- Roles ---

    async def get_all_roles(self) -> list[Role]:
        return _parse_list(Role, await self._request("GET", f"{RBAC_PREFIX}/roles"))

    async def get_active_roles(self) -> list[Role]:
        return _parse_list(Role, await self._request("GET", f"{RBAC_PREFIX}/roles/active"))

    async def get_role(self, role_id: str) -> Role:
        return _parse(Role, await self._request("GET", f"{RBAC_PREFIX}/roles/{role_id}"))

    async def search_roles(self, search_term: str) -> list[Role]:
        payload = await self._request(
            "GET", f"{RBAC_PREFIX}/roles/search", params={"searchTerm": search_term}
        )
        return _parse_list(Role, payload)

    async def create_role(self, role: RolePayload) -> Role:
        payload = await self._request("POST", f"{RBAC_PREFIX}/roles", json=role.to_payload())
        return _parse(Role, payload)

    async def update_role(self, role_id: str, role: RolePayload) -> Role:
        payload = await self._request(
            "PUT", f"{RBAC_PREFIX}/roles/{role_id}", json=role.to_payload()
        )
        return _parse(Role, payload)

    async def delete_role(self, role_id: str) -> None:
        await self._request("DELETE", f"{RBAC_PREFIX}/roles/{role_id}")

    async def activate_role(self, role_id: str) -> None:
        await self._request("POST", f"{RBAC_PREFIX}/roles/{role_id}/activate")

    async def deactivate_role(self, role_id: str) -> None:
        await self._request("POST", f"{RBAC_PREFIX}/roles/{role_id}/deactivate")

    async def assign_role_to_user(self, assignment: UserRoleAssignment):
        return await self._request(
            "POST", f"{RBAC_PREFIX}/assign-role", json=assignment.to_payload()
        )

    async def get_user_permissions(self, user_id: str) -> UserPermissions:
        payload = await self._request("GET", f"{RBAC_PREFIX}/users/{user_id}/permissions")
        return _parse(UserPermissions, payload)

    # --- Code formats ---

    async def get_all_code_formats(self) -> list[CodeFormat]:
        return _parse_list(CodeFormat, await self._request("GET", "/config/code-formats"))

    async def create_code_format(self, fmt: CodeFormatPayload) -> CodeFormat:
        payload = await self._request("POST", "/config/code-formats", json=fmt.to_payload())
        return _parse(CodeFormat, payload)

    async def update_code_format(self, format_id: str, update: CodeFormatUpdate) -> CodeFormat:
        payload = await self._request(
            "PUT", f"/config/code-formats/{format_id}", json=update.to_payload(exclude_none=True)
        )
        return _parse(CodeFormat, payload)

    async def generate_next_code(self, code_type: CodeType) -> str:
        payload = await self._request("POST", f"/config/code-formats/generate/{code_type.value}")
        return _parse(NextCode, payload).next_code

    # --- Global settings ---

    async def get_age_settings(self) -> dict[str, AgeRange]:
        payload = await self._request("GET", "/config/global-area/age")
        try:
            return parse_age_settings(payload)
        except (KeyError, TypeError, AttributeError, PydanticValidationError) as e:
            raise ServerError(200, "Unexpected age settings payload from server", payload) from e

    async def create_age_setting(self, data: dict):
        return await self._request("POST", "/config/global-area/age", json=data)

    async def get_education_types(self):
        """Either a mapping of user type to education list, or one flat list."""
        payload = await self._request("GET", "/config/global-area/education")
        if isinstance(payload, dict):
            return {str(k).lower(): parse_name_list(v) for k, v in payload.items()}
        return parse_name_list(payload)

    async def create_global_area_setting(self, data: dict):
        return await self._request("POST", "/config/global-area", json=data)

    async def get_crop_names(self) -> list[str]:
        return parse_name_list(await self._request("GET", "/config/crop/names"))

    async def get_crop_types(self) -> list[str]:
        return parse_name_list(await self._request("GET", "/config/crop/types"))

    async def create_crop_setting(self, data: dict):
        return await self._request("POST", "/config/crop", json=data)

    # --- ID cards ---

    async def get_id_cards_by_holder(self, holder_id: str) -> list[IdCard]:
        return _parse_list(IdCard, await self._request("GET", f"/id-cards/holder/{holder_id}"))

    # --- FPO sub-resources ---

    async def list_fpo_resources(self, fpo_id: str, kind: FpoResource) -> list[FpoRecord]:
        return _parse_list(FpoRecord, await self._request("GET", f"/fpo/{fpo_id}/{kind.value}"))

    async def create_fpo_resource(self, fpo_id: str, kind: FpoResource, data: dict) -> FpoRecord:
        payload = await self._request("POST", f"/fpo/{fpo_id}/{kind.value}", json=data)
        return _parse(FpoRecord, payload)

    async def update_fpo_resource(
        self, fpo_id: str, kind: FpoResource, resource_id: str, data: dict
    ) -> FpoRecord:
        payload = await self._request(
            "PUT", f"/fpo/{fpo_id}/{kind.value}/{resource_id}", json=data
        )
        return _parse(FpoRecord, payload)

    async def delete_fpo_resource(self, fpo_id: str, kind: FpoResource, resource_id: str) -> None:
        await self._request("DELETE", f"/fpo/{fpo_id}/{kind.value}/{resource_id}")
