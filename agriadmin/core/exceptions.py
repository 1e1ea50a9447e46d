"""Error taxonomy shared by the API client and the services built on it."""


class AgriAdminError(Exception):
    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(AgriAdminError):
    """A precondition failed before any network call was made."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class TransportError(AgriAdminError):
    """The backend could not be reached (no response)."""


class ServerError(AgriAdminError):
    """The backend answered with a non-2xx status."""

    def __init__(self, status_code: int, message: str, payload=None, detail: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload
        # The server's own message, None when `message` is a fallback.
        self.detail = detail


class ImportFailed(AgriAdminError):
    pass


class ImportInProgress(AgriAdminError):
    def __init__(self, entity_type: str, import_id: str):
        super().__init__(f"An import for {entity_type} is already in progress ({import_id})")
        self.entity_type = entity_type
        self.import_id = import_id


class ExportFailed(AgriAdminError):
    pass


class TemplateDownloadFailed(AgriAdminError):
    pass


class AssignmentFailed(AgriAdminError):
    pass
