import structlog
from pydantic import ValidationError as PydanticValidationError

from agriadmin.core.exceptions import ValidationError
from agriadmin.schemas.settings import CodeFormat, CodeFormatPayload, CodeFormatUpdate, CodeType

logger = structlog.get_logger()

DEFAULT_PREFIX = "DATE"
CODE_NUMBER_WIDTH = 5


def format_code(prefix: str, number: int) -> str:
    return f"{prefix}-{number:0{CODE_NUMBER_WIDTH}d}"


def preview_next_code(fmt: CodeFormat) -> str:
    return format_code(fmt.prefix, fmt.current_number + 1)


def coerce_payload(data) -> CodeFormatPayload:
    if isinstance(data, CodeFormatPayload):
        return data
    try:
        return CodeFormatPayload.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid code format: {e.errors()[0]['msg']}") from e


class CodeFormatRegistry:
    """Known code formats, with at most one active format per code type."""

    def __init__(self):
        self._formats: list[CodeFormat] = []

    def all(self) -> list[CodeFormat]:
        return list(self._formats)

    def active_for(self, code_type: CodeType | str) -> CodeFormat | None:
        code_type = CodeType(code_type)
        return next((f for f in self._formats if f.code_type == code_type and f.is_active), None)

    def get(self, format_id) -> CodeFormat | None:
        return next((f for f in self._formats if f.id is not None and str(f.id) == str(format_id)), None)

    def ensure_available(self, code_type: CodeType | str, format_id=None) -> None:
        existing = self.active_for(code_type)
        if existing is not None and (format_id is None or str(existing.id) != str(format_id)):
            raise ValidationError(
                f"An active {CodeType(code_type).value} code format already exists ({existing.prefix})",
                field="codeType",
            )

    def register(self, fmt: CodeFormat) -> CodeFormat:
        existing = self.active_for(fmt.code_type)
        if fmt.is_active and existing is not None and existing.id != fmt.id:
            self.ensure_available(fmt.code_type, fmt.id)
        self._formats = [f for f in self._formats if f.id is None or f.id != fmt.id]
        self._formats.append(fmt)
        return fmt

    def replace(self, formats: list[CodeFormat]) -> None:
        """Take the server's list as-is; only the first active format per type is used."""
        seen: set[CodeType] = set()
        for fmt in formats:
            if not fmt.is_active:
                continue
            if fmt.code_type in seen:
                logger.warning("duplicate_active_code_format", code_type=fmt.code_type.value, id=fmt.id)
            seen.add(fmt.code_type)
        self._formats = list(formats)

    def configured_prefix(self, code_type: CodeType | str = CodeType.FARMER) -> str:
        fmt = self.active_for(code_type)
        return fmt.prefix if fmt is not None and fmt.prefix else DEFAULT_PREFIX


class CodeFormatService:
    def __init__(self, api, registry: CodeFormatRegistry | None = None):
        self.api = api
        self.registry = registry or CodeFormatRegistry()

    async def load(self) -> list[CodeFormat]:
        self.registry.replace(await self.api.get_all_code_formats())
        return self.registry.all()

    async def create(self, data) -> CodeFormat:
        payload = coerce_payload(data)
        if not payload.prefix.strip():
            raise ValidationError("Prefix is required", field="prefix")
        self.registry.ensure_available(payload.code_type)

        created = await self.api.create_code_format(payload)
        logger.info("code_format_created", code_type=created.code_type.value, prefix=created.prefix)
        return self.registry.register(created)

    async def update(self, format_id: str, data: dict) -> CodeFormat:
        """Update a format. Code type and numbering are fixed once created."""
        fields = {k: v for k, v in data.items() if k in ("prefix", "description", "isActive", "is_active")}
        update = CodeFormatUpdate.model_validate(fields)
        if update.prefix is not None and not update.prefix.strip():
            raise ValidationError("Prefix is required", field="prefix")
        if update.is_active:
            current = self.registry.get(format_id)
            if current is None:
                await self.load()
                current = self.registry.get(format_id)
            if current is None:
                raise ValidationError(f"Unknown code format {format_id}", field="id")
            self.registry.ensure_available(current.code_type, current.id)

        updated = await self.api.update_code_format(str(format_id), update)
        logger.info("code_format_updated", id=str(format_id))
        return self.registry.register(updated)

    async def generate_next_code(self, code_type: CodeType | str) -> str:
        return await self.api.generate_next_code(CodeType(code_type))

    def preview_next_code(self, code_type: CodeType | str) -> str | None:
        fmt = self.registry.active_for(code_type)
        return preview_next_code(fmt) if fmt is not None else None
