class PermissionCoreError(Exception):
    """Base exception for the permission core"""

    pass


class ValidationError(PermissionCoreError):
    """Raised when a permission request is malformed (missing or blank fields, unknown action)"""

    pass


class InfrastructureError(PermissionCoreError):
    """Raised when the backing store is unreachable, times out or fails.

    Never cached. Callers must treat it as "not allowed" but may surface it
    separately from a plain denial.
    """

    def __init__(self, operation: str, message: str):
        super().__init__(f"{operation} failed: {message}")
        self.operation = operation
        self.message = message


class AuditEmissionError(PermissionCoreError):
    """Raised by audit emitters. Logged by the dispatcher, never propagated to permission checks"""

    pass
