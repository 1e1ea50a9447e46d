from agriadmin.schemas.bulk import (
    DownloadedFile,
    EntityType,
    ExportFormat,
    ExportRequest,
    ImportJob,
    ImportRowError,
    ImportStatus,
    ImportTracking,
    PollState,
    SelectedFile,
)
from agriadmin.schemas.fpo import FpoRecord, FpoResource, IdCard
from agriadmin.schemas.rbac import (
    Module,
    ModulePermission,
    Permission,
    Role,
    RolePayload,
    UserPermissions,
    UserRoleAssignment,
)
from agriadmin.schemas.settings import AgeRange, AgeValidation, CodeFormat, CodeType

__all__ = [
    "EntityType",
    "ImportStatus",
    "ImportRowError",
    "ImportJob",
    "ImportTracking",
    "PollState",
    "ExportFormat",
    "ExportRequest",
    "SelectedFile",
    "DownloadedFile",
    "Module",
    "Permission",
    "Role",
    "RolePayload",
    "ModulePermission",
    "UserPermissions",
    "UserRoleAssignment",
    "AgeRange",
    "AgeValidation",
    "CodeType",
    "CodeFormat",
    "FpoResource",
    "FpoRecord",
    "IdCard",
]
