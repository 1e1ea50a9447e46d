from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field

from agriadmin.core.exceptions import ValidationError
from agriadmin.schemas.common import CamelModel, Identifier

EXCEL_MIME = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
LEGACY_EXCEL_MIME = "application/vnd.ms-excel"
CSV_MIME = "text/csv"


class EntityType(str, Enum):
    FARMER = "FARMER"
    EMPLOYEE = "EMPLOYEE"

    @classmethod
    def parse(cls, value: "EntityType | str") -> "EntityType":
        if isinstance(value, cls):
            return value
        text = str(value).strip().lower()
        if text.startswith("farmer"):
            return cls.FARMER
        if text.startswith("employee"):
            return cls.EMPLOYEE
        raise ValidationError(f"Unknown entity type: {value}", field="entityType")

    @property
    def path(self) -> str:
        return f"{self.value.lower()}s"


class ImportStatus(str, Enum):
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class AssignmentStrategy(str, Enum):
    MANUAL = "MANUAL"


class ImportRowError(CamelModel):
    row_number: int | None = None
    field_name: str | None = None
    error_message: str = ""


class ImportJob(CamelModel):
    import_id: Identifier
    status: ImportStatus
    total_records: int = Field(default=0, ge=0)
    successful_imports: int = Field(default=0, ge=0)
    failed_imports: int = Field(default=0, ge=0)
    skipped_records: int = Field(default=0, ge=0)
    errors: list[ImportRowError] = Field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.status in (ImportStatus.COMPLETED, ImportStatus.FAILED)

    def visible_errors(self, limit: int = 10) -> list[ImportRowError]:
        return self.errors[:limit]

    def hidden_error_count(self, limit: int = 10) -> int:
        return max(0, len(self.errors) - limit)


class ImportHistoryEntry(CamelModel):
    import_id: Identifier
    status: str
    file_name: str | None = None
    total_records: int = 0
    successful_imports: int = 0
    failed_imports: int = 0
    created_at: str | None = None


class ExportFormat(str, Enum):
    EXCEL = "EXCEL"
    CSV = "CSV"

    @property
    def extension(self) -> str:
        return "xlsx" if self is ExportFormat.EXCEL else "csv"

    @property
    def mime_type(self) -> str:
        return EXCEL_MIME if self is ExportFormat.EXCEL else f"{CSV_MIME};charset=utf-8"


class ExportRequest(CamelModel):
    format: ExportFormat = ExportFormat.EXCEL
    assigned_employee_email: str = ""
    location: str = ""
    kyc_status: str = ""
    from_date: str = ""
    to_date: str = ""


class SelectedFile(BaseModel):
    name: str
    content: bytes
    content_type: str | None = None
    total_rows: int | None = None

    @property
    def size(self) -> int:
        return len(self.content)

    @property
    def size_mb(self) -> float:
        return round(self.size / 1024 / 1024, 2)


class DownloadedFile(BaseModel):
    filename: str
    content_type: str
    content: bytes

    def save(self, directory: str | Path) -> Path:
        target = Path(directory) / self.filename
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(self.content)
        return target


class PollState(str, Enum):
    SCHEDULED = "SCHEDULED"
    POLLING = "POLLING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    ABANDONED = "ABANDONED"
    CANCELLED = "CANCELLED"

    @property
    def is_final(self) -> bool:
        return self not in (PollState.SCHEDULED, PollState.POLLING)


class ImportTracking(BaseModel):
    entity_type: EntityType
    job: ImportJob
    state: PollState
    attempts: int = 0
    message: str | None = None

    @property
    def import_id(self) -> str:
        return self.job.import_id
