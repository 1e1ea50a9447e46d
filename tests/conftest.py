import pytest
import pytest_asyncio
from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from httpx import ASGITransport

from agriadmin.api.client import ApiService
from agriadmin.core.config import Settings
from agriadmin.schemas.bulk import EXCEL_MIME


class FakeBackend:
    """In-memory stand-in for the administration API.

    `calls` records every request as (method, path) with the `/api` prefix
    stripped. `fail(...)` makes one route answer with an error until cleared.
    """

    def __init__(self):
        self.calls: list[tuple[str, str]] = []
        self.failures: dict[tuple[str, str], tuple[int, object]] = {}

        self.import_response = {"importId": 42, "status": "PROCESSING", "totalRecords": 100}
        self.status_responses: list = []
        self.uploads: list[dict] = []
        self.export_requests: list[dict] = []
        self.export_content = b"exported-bytes"
        self.template_content = b"template-bytes"
        self.assignments: list[dict] = []
        self.history = [
            {"importId": 41, "status": "COMPLETED", "fileName": "old.csv", "totalRecords": 5},
        ]

        self.roles: dict[str, dict] = {}
        self.next_role_id = 1
        self.role_assignments: list[dict] = []
        self.permissions: dict[str, dict] = {}

        self.code_formats: dict[str, dict] = {}
        self.next_format_id = 1
        self.age_settings: object = [
            {"userType": "FARMER", "minValue": 18, "maxValue": 90, "isActive": True},
            {"userType": "EMPLOYEE", "minValue": 20, "maxValue": 60, "isActive": True},
        ]
        self.education: object = ["Primary (1-5)", "Graduate", "Post Graduate"]
        self.crop_names: object = [{"cropName": "Rice"}, {"cropName": "Millet"}]
        self.crop_types: object = [{"typeName": "Cereals"}]
        self.saved_settings: list[dict] = []

        self.id_cards: dict[str, list[dict]] = {}
        self.fpo_records: dict[tuple[str, str], dict[str, dict]] = {}

    def fail(self, method: str, path: str, status_code: int = 500, body: object = None) -> None:
        self.failures[(method, path)] = (status_code, body)

    def count(self, method: str, path: str) -> int:
        return self.calls.count((method, path))

    def add_role(self, role_name: str, *, is_active: bool = True, **extra) -> dict:
        role = {
            "id": self.next_role_id,
            "roleName": role_name,
            "description": extra.get("description", ""),
            "isActive": is_active,
            "allowedModules": extra.get("allowedModules", ["FARMER"]),
            "permissions": extra.get("permissions", ["VIEW"]),
        }
        self.roles[str(self.next_role_id)] = role
        self.next_role_id += 1
        return role

    def add_code_format(self, code_type: str, prefix: str, **extra) -> dict:
        fmt = {
            "id": self.next_format_id,
            "codeType": code_type,
            "prefix": prefix,
            "startingNumber": extra.get("startingNumber", 1),
            "currentNumber": extra.get("currentNumber", 0),
            "description": extra.get("description", ""),
            "isActive": extra.get("isActive", True),
        }
        self.code_formats[str(self.next_format_id)] = fmt
        self.next_format_id += 1
        return fmt


def _error(status_code: int, body):
    if isinstance(body, str):
        return PlainTextResponse(body, status_code=status_code)
    return JSONResponse(body if body is not None else {}, status_code=status_code)


def build_app(backend: FakeBackend) -> FastAPI:
    app = FastAPI()
    router = APIRouter(prefix="/api")

    @app.middleware("http")
    async def record_calls(request: Request, call_next):
        path = request.url.path.removeprefix("/api")
        backend.calls.append((request.method, path))
        failure = backend.failures.get((request.method, path))
        if failure is not None:
            return _error(*failure)
        return await call_next(request)

    # --- bulk ---

    @router.post("/bulk/import/{entity}")
    async def bulk_import(entity: str, request: Request):
        form = await request.form()
        upload = form["file"]
        backend.uploads.append(
            {
                "entity": entity,
                "filename": upload.filename,
                "content": await upload.read(),
                "content_type": upload.content_type,
                "autoAssign": form.get("autoAssign"),
                "assignmentStrategy": form.get("assignmentStrategy"),
            }
        )
        return backend.import_response

    @router.get("/bulk/import/status/{import_id}")
    async def import_status(import_id: str):
        if len(backend.status_responses) > 1:
            response = backend.status_responses.pop(0)
        elif backend.status_responses:
            response = backend.status_responses[0]
        else:
            response = {"status": "PROCESSING"}
        if isinstance(response, tuple):
            return _error(*response)
        return {"success": True, "data": response}

    @router.get("/bulk/import/history")
    async def import_history(userEmail: str):
        return {"success": True, "data": backend.history}

    @router.post("/bulk/export/{entity}")
    async def bulk_export(entity: str, request: Request):
        backend.export_requests.append({"entity": entity, **(await request.json())})
        return Response(content=backend.export_content, media_type=EXCEL_MIME)

    @router.get("/bulk/template/{entity}")
    async def bulk_template(entity: str):
        return Response(content=backend.template_content, media_type=EXCEL_MIME)

    @router.post("/bulk/assign/farmers-by-location")
    async def assign_by_location(location: str, employeeEmail: str):
        backend.assignments.append({"location": location, "employeeEmail": employeeEmail})
        return {"success": True, "message": "Assigned 3 farmers", "assignedCount": 3}

    @router.post("/bulk/assign/farmers-by-names")
    async def assign_by_names(request: Request):
        body = await request.json()
        backend.assignments.append(body)
        return {"success": True, "message": f"Assigned {len(body['farmerNames'])} farmers"}

    # --- roles ---

    @router.get("/users-roles-management/roles")
    async def list_roles():
        return list(backend.roles.values())

    @router.get("/users-roles-management/roles/active")
    async def active_roles():
        return [r for r in backend.roles.values() if r["isActive"]]

    @router.get("/users-roles-management/roles/search")
    async def search_roles(searchTerm: str):
        return [r for r in backend.roles.values() if searchTerm.lower() in r["roleName"].lower()]

    @router.get("/users-roles-management/roles/{role_id}")
    async def get_role(role_id: str):
        if role_id not in backend.roles:
            return JSONResponse({"message": "Role not found"}, status_code=404)
        return backend.roles[role_id]

    @router.post("/users-roles-management/roles")
    async def create_role(request: Request):
        body = await request.json()
        role = backend.add_role(
            body["roleName"],
            is_active=body["isActive"],
            description=body.get("description", ""),
            allowedModules=body["allowedModules"],
            permissions=body["permissions"],
        )
        return role

    @router.put("/users-roles-management/roles/{role_id}")
    async def update_role(role_id: str, request: Request):
        body = await request.json()
        backend.roles[role_id] = {**body, "id": int(role_id)}
        return backend.roles[role_id]

    @router.delete("/users-roles-management/roles/{role_id}")
    async def delete_role(role_id: str):
        backend.roles.pop(role_id, None)
        return Response(status_code=204)

    @router.post("/users-roles-management/roles/{role_id}/activate")
    async def activate_role(role_id: str):
        backend.roles[role_id]["isActive"] = True
        return {"success": True}

    @router.post("/users-roles-management/roles/{role_id}/deactivate")
    async def deactivate_role(role_id: str):
        backend.roles[role_id]["isActive"] = False
        return {"success": True}

    @router.post("/users-roles-management/assign-role")
    async def assign_role(request: Request):
        body = await request.json()
        backend.role_assignments.append(body)
        return {"success": True, "message": "Role assigned"}

    @router.get("/users-roles-management/users/{user_id}/permissions")
    async def user_permissions(user_id: str):
        if user_id not in backend.permissions:
            return JSONResponse({"message": "User not found"}, status_code=404)
        return backend.permissions[user_id]

    # --- code formats ---

    @router.get("/config/code-formats")
    async def list_code_formats():
        return list(backend.code_formats.values())

    @router.post("/config/code-formats")
    async def create_code_format(request: Request):
        body = await request.json()
        return backend.add_code_format(
            body["codeType"],
            body["prefix"],
            startingNumber=body.get("startingNumber", 1),
            currentNumber=body.get("startingNumber", 1) - 1,
            description=body.get("description", ""),
        )

    @router.put("/config/code-formats/{format_id}")
    async def update_code_format(format_id: str, request: Request):
        body = await request.json()
        backend.code_formats[format_id].update(body)
        return backend.code_formats[format_id]

    @router.post("/config/code-formats/generate/{code_type}")
    async def generate_code(code_type: str):
        fmt = next(
            f for f in backend.code_formats.values() if f["codeType"] == code_type and f["isActive"]
        )
        fmt["currentNumber"] += 1
        return {"nextCode": f"{fmt['prefix']}-{fmt['currentNumber']:05d}"}

    # --- global settings ---

    @router.get("/config/global-area/age")
    async def get_age():
        return backend.age_settings

    @router.post("/config/global-area/age")
    async def save_age(request: Request):
        backend.saved_settings.append({"age": await request.json()})
        return {"success": True}

    @router.get("/config/global-area/education")
    async def get_education():
        return backend.education

    @router.post("/config/global-area")
    async def save_global_area(request: Request):
        backend.saved_settings.append(await request.json())
        return {"success": True}

    @router.get("/config/crop/names")
    async def crop_names():
        return backend.crop_names

    @router.get("/config/crop/types")
    async def crop_types():
        return backend.crop_types

    @router.post("/config/crop")
    async def save_crop(request: Request):
        backend.saved_settings.append(await request.json())
        return {"success": True}

    # --- id cards / fpo ---

    @router.get("/id-cards/holder/{holder_id}")
    async def id_cards(holder_id: str):
        return backend.id_cards.get(holder_id, [])

    @router.get("/fpo/{fpo_id}/{kind}")
    async def list_fpo(fpo_id: str, kind: str):
        return list(backend.fpo_records.get((fpo_id, kind), {}).values())

    @router.post("/fpo/{fpo_id}/{kind}")
    async def create_fpo(fpo_id: str, kind: str, request: Request):
        records = backend.fpo_records.setdefault((fpo_id, kind), {})
        record = {**(await request.json()), "id": len(records) + 1, "fpoId": int(fpo_id)}
        records[str(record["id"])] = record
        return {"success": True, "data": record}

    @router.put("/fpo/{fpo_id}/{kind}/{record_id}")
    async def update_fpo(fpo_id: str, kind: str, record_id: str, request: Request):
        record = backend.fpo_records[(fpo_id, kind)][record_id]
        record.update(await request.json())
        return record

    @router.delete("/fpo/{fpo_id}/{kind}/{record_id}")
    async def delete_fpo(fpo_id: str, kind: str, record_id: str):
        backend.fpo_records[(fpo_id, kind)].pop(record_id, None)
        return Response(status_code=204)

    app.include_router(router)
    return app


@pytest.fixture()
def settings():
    return Settings(
        API_BASE_URL="http://test/api",
        API_TOKEN="test-token",
        IMPORT_POLL_INTERVAL_SECONDS=0,
        IMPORT_POLL_MAX_ATTEMPTS=30,
        CONFIG_CACHE_TTL_SECONDS=300,
    )


@pytest.fixture()
def backend():
    return FakeBackend()


@pytest_asyncio.fixture()
async def api(settings, backend):
    transport = ASGITransport(app=build_app(backend))
    async with ApiService(settings, transport=transport) as service:
        yield service
