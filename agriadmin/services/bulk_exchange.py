import asyncio
import csv
import io
import mimetypes
import time
from collections.abc import Awaitable, Callable
from pathlib import Path

import structlog
from openpyxl import load_workbook
from pydantic import ValidationError as PydanticValidationError

from agriadmin.core.exceptions import (
    AgriAdminError,
    AssignmentFailed,
    ExportFailed,
    ImportFailed,
    ImportInProgress,
    TemplateDownloadFailed,
    ValidationError,
)
from agriadmin.schemas.bulk import (
    CSV_MIME,
    EXCEL_MIME,
    LEGACY_EXCEL_MIME,
    DownloadedFile,
    EntityType,
    ExportRequest,
    ImportHistoryEntry,
    ImportRowError,
    ImportStatus,
    ImportTracking,
    PollState,
    SelectedFile,
)
from agriadmin.services.import_polling import CANCELLED_MESSAGE, ImportPoller, UpdateCallback

logger = structlog.get_logger()

ALLOWED_CONTENT_TYPES = {EXCEL_MIME, LEGACY_EXCEL_MIME, CSV_MIME}
EXTENSION_CONTENT_TYPES = {".xlsx": EXCEL_MIME, ".xls": LEGACY_EXCEL_MIME, ".csv": CSV_MIME}
INVALID_FILE_MESSAGE = "Please select a valid Excel (.xlsx, .xls) or CSV file."


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


def guess_content_type(name: str) -> str | None:
    suffix = Path(name).suffix.lower()
    return EXTENSION_CONTENT_TYPES.get(suffix) or mimetypes.guess_type(name)[0]


def is_supported_import_file(name: str, content_type: str | None) -> bool:
    if content_type:
        content_type = content_type.split(";", 1)[0].strip().lower()
    return content_type in ALLOWED_CONTENT_TYPES or name.lower().endswith(".csv")


def count_data_rows(name: str, content: bytes) -> int | None:
    """Number of rows below the header, or None when the file can't be read locally."""
    ext = Path(name).suffix.lower()
    try:
        if ext == ".csv":
            try:
                text_content = content.decode("utf-8")
            except UnicodeDecodeError:
                text_content = content.decode("latin-1")
            rows = [row for row in csv.reader(io.StringIO(text_content)) if any(row)]
            return max(0, len(rows) - 1)
        if ext == ".xlsx":
            wb = load_workbook(io.BytesIO(content), read_only=True)
            try:
                rows = [
                    row
                    for row in wb.active.iter_rows(min_row=2, values_only=True)
                    if any(cell is not None for cell in row)
                ]
                return len(rows)
            finally:
                wb.close()
    except Exception as e:
        logger.warning("import_file_unreadable", file=name, error=str(e))
    return None


def filter_employees(employees: list[dict], query: str) -> list[dict]:
    if not query:
        return list(employees)
    needle = query.lower()
    return [
        emp
        for emp in employees
        if any(
            needle in str(emp.get(key) or "").lower()
            for key in ("email", "firstName", "lastName", "employeeId")
        )
    ]


def districts_from_farmers(farmers: list[dict]) -> list[str]:
    return sorted(
        {f["district"] for f in farmers if isinstance(f.get("district"), str) and f["district"].strip()}
    )


class BulkExchangeEngine:
    """File-based bulk import/export for farmers (and employees for super admins).

    At most one import per entity type is tracked at a time. Imports the backend
    accepts as PROCESSING are followed by a cancellable background poll task.
    """

    def __init__(
        self,
        api,
        *,
        super_admin: bool = False,
        clock: Callable[[], int] = _now_ms,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.api = api
        self.settings = api.settings
        self.super_admin = super_admin
        self.selected_file: SelectedFile | None = None
        self._clock = clock
        self._sleep = sleep
        self._trackings: dict[str, ImportTracking] = {}
        self._pollers: dict[str, asyncio.Task] = {}
        self._active: dict[EntityType, str] = {}
        self._submitting: set[EntityType] = set()

    def _resolve(self, entity_type: EntityType | str) -> EntityType:
        entity = EntityType.parse(entity_type)
        if entity is EntityType.EMPLOYEE and not self.super_admin:
            raise ValidationError(
                "Employee bulk operations are restricted to super admins", field="entityType"
            )
        return entity

    # --- File selection ---

    def select_file(
        self,
        name: str | Path,
        content: bytes | None = None,
        content_type: str | None = None,
    ) -> SelectedFile:
        """Hold a spreadsheet for the next import. A rejected file leaves the held one untouched."""
        path = Path(name)
        content_type = content_type or guess_content_type(path.name)
        if not is_supported_import_file(path.name, content_type):
            logger.info("import_file_rejected", file=path.name, content_type=content_type)
            raise ValidationError(INVALID_FILE_MESSAGE, field="file")

        if content is None:
            try:
                content = path.read_bytes()
            except OSError as e:
                raise ValidationError(f"Unable to read {path.name}: {e.strerror}", field="file") from e

        self.selected_file = SelectedFile(
            name=path.name,
            content=content,
            content_type=content_type,
            total_rows=count_data_rows(path.name, content),
        )
        logger.info(
            "import_file_selected",
            file=path.name,
            size=self.selected_file.size,
            rows=self.selected_file.total_rows,
        )
        return self.selected_file

    def clear_selection(self) -> None:
        self.selected_file = None

    # --- Import ---

    def _running_import(self, entity: EntityType) -> str | None:
        import_id = self._active.get(entity)
        task = self._pollers.get(import_id) if import_id else None
        if task is not None and not task.done():
            return import_id
        return None

    def _poll_finished(self, entity: EntityType, import_id: str, task: asyncio.Task) -> None:
        self._pollers.pop(import_id, None)
        if self._active.get(entity) == import_id:
            del self._active[entity]
        if not task.cancelled() and task.exception() is not None:
            logger.error("import_poll_crashed", import_id=import_id, error=str(task.exception()))

    async def start_import(
        self,
        entity_type: EntityType | str = EntityType.FARMER,
        *,
        replace_running: bool = False,
        on_update: UpdateCallback | None = None,
    ) -> ImportTracking:
        """Upload the selected file and start tracking the resulting import job.

        The returned tracking object is updated in place while polling runs.
        With `replace_running`, an import already tracked for the same entity
        type stops being polled instead of blocking this one.
        """
        if self.selected_file is None:
            raise ValidationError("no file", field="file")
        entity = self._resolve(entity_type)

        if entity in self._submitting:
            raise ImportInProgress(entity.value, "pending")
        running = self._running_import(entity)
        if running is not None:
            if not replace_running:
                raise ImportInProgress(entity.value, running)
            await self.cancel_import_polling(running)

        upload = self.selected_file
        self._submitting.add(entity)
        try:
            job = await self.api.bulk_import(
                entity, upload.name, upload.content, upload.content_type
            )
        except AgriAdminError as e:
            logger.error("import_submit_failed", entity_type=entity.value, error=e.message)
            raise ImportFailed(e.message) from e
        finally:
            self._submitting.discard(entity)

        logger.info(
            "import_submitted",
            entity_type=entity.value,
            import_id=job.import_id,
            status=job.status.value,
            file=upload.name,
        )

        if job.status != ImportStatus.PROCESSING:
            state = PollState.COMPLETED if job.status == ImportStatus.COMPLETED else PollState.FAILED
            tracking = ImportTracking(entity_type=entity, job=job, state=state)
            self._trackings[job.import_id] = tracking
            return tracking

        tracking = ImportTracking(entity_type=entity, job=job, state=PollState.SCHEDULED)
        self._trackings[job.import_id] = tracking
        self._active[entity] = job.import_id

        poller = ImportPoller(
            self.api,
            tracking,
            interval=self.settings.IMPORT_POLL_INTERVAL_SECONDS,
            max_attempts=self.settings.IMPORT_POLL_MAX_ATTEMPTS,
            sleep=self._sleep,
            on_update=on_update,
        )
        task = asyncio.create_task(poller.run(), name=f"import-poll-{job.import_id}")
        self._pollers[job.import_id] = task
        task.add_done_callback(
            lambda t, entity=entity, import_id=job.import_id: self._poll_finished(entity, import_id, t)
        )
        return tracking

    def tracking(self, import_id: str) -> ImportTracking:
        try:
            return self._trackings[str(import_id)]
        except KeyError:
            raise ValidationError(f"Unknown import {import_id}", field="importId") from None

    async def wait_for_import(self, import_id: str) -> ImportTracking:
        tracking = self.tracking(import_id)
        task = self._pollers.get(tracking.import_id)
        if task is not None:
            await asyncio.wait({task})
        return tracking

    async def cancel_import_polling(self, import_id: str) -> ImportTracking:
        tracking = self.tracking(import_id)
        task = self._pollers.get(tracking.import_id)
        if task is not None and not task.done():
            task.cancel()
            await asyncio.wait({task})
        # A task cancelled before its first step never reaches the poller.
        if not tracking.state.is_final:
            tracking.state = PollState.CANCELLED
            tracking.message = CANCELLED_MESSAGE
        return tracking

    async def aclose(self) -> None:
        """Stop every poll loop; call when the owning view goes away."""
        for import_id in list(self._pollers):
            await self.cancel_import_polling(import_id)

    def error_report(self, tracking: ImportTracking) -> tuple[list[ImportRowError], int]:
        limit = self.settings.IMPORT_ERRORS_SURFACED
        return tracking.job.visible_errors(limit), tracking.job.hidden_error_count(limit)

    async def import_history(self, user_email: str) -> list[ImportHistoryEntry]:
        return await self.api.get_import_history(user_email)

    # --- Export ---

    async def export_data(
        self,
        entity_type: EntityType | str,
        filters: ExportRequest | dict | None = None,
    ) -> DownloadedFile:
        entity = self._resolve(entity_type)
        if filters is None:
            filters = ExportRequest()
        elif isinstance(filters, dict):
            try:
                filters = ExportRequest.model_validate(filters)
            except PydanticValidationError as e:
                raise ValidationError(f"Invalid export filters: {e.errors()[0]['msg']}") from e

        try:
            content = await self.api.bulk_export(entity, filters)
        except AgriAdminError as e:
            logger.error("export_failed", entity_type=entity.value, error=e.message)
            raise ExportFailed(e.message) from e

        filename = f"{entity.value.lower()}_export_{self._clock()}.{filters.format.extension}"
        logger.info("export_ready", entity_type=entity.value, file=filename, size=len(content))
        return DownloadedFile(
            filename=filename, content_type=filters.format.mime_type, content=content
        )

    async def download_template(self, entity_type: EntityType | str) -> DownloadedFile:
        entity = self._resolve(entity_type)
        try:
            content = await self.api.download_template(entity)
        except AgriAdminError as e:
            logger.error("template_download_failed", entity_type=entity.value, error=e.message)
            raise TemplateDownloadFailed(e.message) from e
        return DownloadedFile(
            filename=f"{entity.value.lower()}_import_template.xlsx",
            content_type=EXCEL_MIME,
            content=content,
        )

    def save(self, download: DownloadedFile, directory: str | Path | None = None) -> Path:
        """Write a download under `directory`, or `DOWNLOAD_DIR` when omitted."""
        target = download.save(directory or self.settings.DOWNLOAD_DIR)
        logger.info("download_saved", file=str(target), size=len(download.content))
        return target

    # --- Assignment ---

    async def bulk_assign_by_location(self, location: str, employee_email: str):
        location = (location or "").strip()
        employee_email = (employee_email or "").strip()
        if not location:
            raise ValidationError("Enter a district (location).", field="location")
        if not employee_email:
            raise ValidationError("Enter employee email.", field="employeeEmail")

        try:
            result = await self.api.bulk_assign_farmers_by_location(location, employee_email)
        except AgriAdminError as e:
            raise AssignmentFailed(e.message) from e
        logger.info("farmers_assigned_by_location", location=location, employee=employee_email)
        return result

    async def bulk_assign_by_names(self, farmer_names: list[str], employee_email: str):
        names = [n.strip() for n in farmer_names or [] if n and n.strip()]
        employee_email = (employee_email or "").strip()
        if not names:
            raise ValidationError("Enter at least one farmer name.", field="farmerNames")
        if not employee_email:
            raise ValidationError("Enter employee email.", field="employeeEmail")

        try:
            result = await self.api.bulk_assign_farmers_by_names(names, employee_email)
        except AgriAdminError as e:
            raise AssignmentFailed(e.message) from e
        logger.info("farmers_assigned_by_name", count=len(names), employee=employee_email)
        return result
