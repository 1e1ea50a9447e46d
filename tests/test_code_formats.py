import pytest

from agriadmin.core.exceptions import ValidationError
from agriadmin.schemas.settings import CodeFormat, CodeType
from agriadmin.services.code_formats import (
    CodeFormatRegistry,
    CodeFormatService,
    format_code,
    preview_next_code,
)


@pytest.fixture()
def service(api):
    return CodeFormatService(api)


def _fmt(id, code_type="FARMER", prefix="FAM", active=True, current=0):
    return CodeFormat(
        id=id, code_type=code_type, prefix=prefix, current_number=current, is_active=active
    )


def test_format_code_pads_to_five_digits():
    assert format_code("FAM", 7) == "FAM-00007"
    assert format_code("EMP", 123456) == "EMP-123456"


def test_preview_next_code():
    assert preview_next_code(_fmt(1, current=41)) == "FAM-00042"


def test_registry_allows_one_active_format_per_type():
    registry = CodeFormatRegistry()
    registry.register(_fmt(1))
    registry.register(_fmt(2, code_type="EMPLOYEE", prefix="EMP"))
    registry.register(_fmt(3, prefix="OLD", active=False))

    with pytest.raises(ValidationError) as exc:
        registry.register(_fmt(4, prefix="NEW"))
    assert exc.value.field == "codeType"
    assert [f.id for f in registry.all()] == ["1", "2", "3"]


def test_registry_replaces_same_id():
    registry = CodeFormatRegistry()
    registry.register(_fmt(1, current=3))
    registry.register(_fmt(1, prefix="FRM", current=4))
    assert len(registry.all()) == 1
    assert registry.active_for(CodeType.FARMER).prefix == "FRM"


def test_registry_keeps_first_of_duplicate_server_formats():
    registry = CodeFormatRegistry()
    registry.replace([_fmt(1, prefix="A"), _fmt(2, prefix="B")])
    assert registry.active_for("FARMER").prefix == "A"


def test_configured_prefix_defaults_to_date():
    registry = CodeFormatRegistry()
    assert registry.configured_prefix() == "DATE"
    registry.register(_fmt(1, code_type="EMPLOYEE", prefix="EMP"))
    assert registry.configured_prefix("EMPLOYEE") == "EMP"
    assert registry.configured_prefix("FARMER") == "DATE"


@pytest.mark.asyncio
async def test_create_code_format(service, backend):
    created = await service.create(
        {"codeType": "FARMER", "prefix": "FAM", "startingNumber": 100, "description": "Farmers"}
    )
    assert created.id == "1"
    assert created.starting_number == 100
    assert backend.code_formats["1"]["prefix"] == "FAM"
    assert service.preview_next_code("FARMER") == "FAM-00100"


@pytest.mark.asyncio
async def test_create_rejects_blank_prefix(service, backend):
    with pytest.raises(ValidationError) as exc:
        await service.create({"codeType": "FARMER", "prefix": " "})
    assert exc.value.field == "prefix"
    assert backend.calls == []


@pytest.mark.asyncio
async def test_create_rejects_bad_payload(service, backend):
    with pytest.raises(ValidationError):
        await service.create({"codeType": "VENDOR", "prefix": "VEN"})
    with pytest.raises(ValidationError):
        await service.create({"codeType": "FARMER", "prefix": "FAM", "startingNumber": 0})
    assert backend.calls == []


@pytest.mark.asyncio
async def test_create_second_active_format_is_rejected(service, backend):
    backend.add_code_format("FARMER", "FAM")
    await service.load()
    backend.calls.clear()

    with pytest.raises(ValidationError):
        await service.create({"codeType": "FARMER", "prefix": "FRM"})
    assert backend.calls == []


@pytest.mark.asyncio
async def test_update_drops_numbering_fields(service, backend):
    backend.add_code_format("FARMER", "FAM", currentNumber=9)
    await service.load()

    updated = await service.update(
        "1", {"prefix": "FRM", "currentNumber": 0, "codeType": "EMPLOYEE", "startingNumber": 5}
    )
    assert updated.prefix == "FRM"
    assert updated.current_number == 9
    assert updated.code_type == CodeType.FARMER
    assert backend.code_formats["1"]["startingNumber"] == 1


@pytest.mark.asyncio
async def test_update_can_deactivate(service, backend):
    backend.add_code_format("FARMER", "FAM")
    await service.load()

    await service.update("1", {"isActive": False})
    assert service.registry.active_for("FARMER") is None
    assert service.registry.configured_prefix() == "DATE"


@pytest.mark.asyncio
async def test_activating_second_format_is_rejected_before_sending(service, backend):
    backend.add_code_format("FARMER", "FAM")
    backend.add_code_format("FARMER", "FRM", isActive=False)
    await service.load()
    backend.calls.clear()

    with pytest.raises(ValidationError) as exc:
        await service.update("2", {"isActive": True})
    assert exc.value.field == "codeType"
    assert backend.calls == []
    assert [f["prefix"] for f in backend.code_formats.values() if f["isActive"]] == ["FAM"]
    assert service.registry.active_for("FARMER").prefix == "FAM"


@pytest.mark.asyncio
async def test_activation_check_loads_unknown_format(service, backend):
    backend.add_code_format("FARMER", "FAM")
    backend.add_code_format("FARMER", "FRM", isActive=False)

    with pytest.raises(ValidationError):
        await service.update("2", {"isActive": True})
    assert backend.calls == [("GET", "/config/code-formats")]


@pytest.mark.asyncio
async def test_reactivating_the_active_format_is_allowed(service, backend):
    backend.add_code_format("FARMER", "FAM")
    await service.load()

    updated = await service.update("1", {"isActive": True, "prefix": "FMR"})
    assert updated.prefix == "FMR"
    assert service.registry.configured_prefix() == "FMR"


@pytest.mark.asyncio
async def test_generate_next_code(service, backend):
    backend.add_code_format("EMPLOYEE", "EMP", currentNumber=4)
    assert await service.generate_next_code("EMPLOYEE") == "EMP-00005"
    assert backend.calls == [("POST", "/config/code-formats/generate/EMPLOYEE")]
