class AppError(Exception):
    """Base class for all application exceptions."""
    def __init__(self, message: str, status_code: int = 500, details: dict = None):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(AppError):
    """Raised for malformed input or invalid option combinations. Never retried."""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message, status_code=400, details=details)


class ConflictError(AppError):
    """Raised when proposed entries carry error-severity conflicts."""
    def __init__(self, message: str, report: dict, details: dict = None):
        payload = dict(details or {})
        payload["conflicts"] = report
        super().__init__(message, status_code=409, details=payload)
        self.report = report


class MissingReferenceError(AppError):
    """Raised when referenced ids do not resolve; `missing` maps kind -> ids."""
    def __init__(self, missing: dict[str, list[str]]):
        offending = {kind: ids for kind, ids in missing.items() if ids}
        summary = ", ".join(f"{kind}: {', '.join(ids)}" for kind, ids in offending.items())
        super().__init__(f"Invalid references found ({summary})", status_code=404, details={"missing": offending})
        self.missing = offending


class StorageError(AppError):
    """Raised when a transaction fails to commit. Nothing from it is persisted."""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message, status_code=500, details=details)


class ResourceNotFoundError(AppError):
    """Raised when a requested resource is not found."""
    def __init__(self, resource_type: str, resource_id: str):
        super().__init__(
            f"{resource_type} with id {resource_id} not found",
            status_code=404,
            details={"resource_type": resource_type, "resource_id": resource_id},
        )


class UndoExpiredError(AppError):
    def __init__(self, undo_id: str):
        super().__init__("Undo operation has expired", status_code=410, details={"undo_id": undo_id})


class UnsupportedEntityError(AppError):
    def __init__(self, entity_type: str):
        super().__init__(
            f"Undo for {entity_type} is not yet implemented",
            status_code=501,
            details={"entity_type": entity_type},
        )


class OperationStateError(AppError):
    """Raised when an operation is asked to do something its status forbids."""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message, status_code=409, details=details)

