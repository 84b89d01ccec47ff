from dataclasses import dataclass
from fastapi import status


@dataclass(frozen=True)
class ErrorDefinition:
    code: str
    message: str
    status_code: int


class ErrorCatalog:
    INVALID_TOKEN = ErrorDefinition("INVALID_TOKEN", "Invalid token", status.HTTP_401_UNAUTHORIZED)
    TENANT_SCOPE_REQUIRED = ErrorDefinition(
        "TENANT_SCOPE_REQUIRED",
        "Tenant scope is required",
        status.HTTP_403_FORBIDDEN,
    )
    TRANSFER_ORDER_NOT_FOUND = ErrorDefinition(
        "TRANSFER_ORDER_NOT_FOUND",
        "Transfer order not found",
        status.HTTP_404_NOT_FOUND,
    )
    ORDER_LINE_NOT_FOUND = ErrorDefinition(
        "ORDER_LINE_NOT_FOUND",
        "Order line not found",
        status.HTTP_404_NOT_FOUND,
    )
    ASSIGNMENT_NOT_FOUND = ErrorDefinition(
        "ASSIGNMENT_NOT_FOUND",
        "Assignment not found",
        status.HTTP_404_NOT_FOUND,
    )
    INVENTORY_LOT_NOT_FOUND = ErrorDefinition(
        "INVENTORY_LOT_NOT_FOUND",
        "Inventory lot not found",
        status.HTTP_404_NOT_FOUND,
    )
    LOADOUT_NOT_FOUND = ErrorDefinition(
        "LOADOUT_NOT_FOUND",
        "Loadout not found",
        status.HTTP_404_NOT_FOUND,
    )
    BLUEPRINT_NOT_FOUND = ErrorDefinition(
        "BLUEPRINT_NOT_FOUND",
        "Blueprint not found",
        status.HTTP_404_NOT_FOUND,
    )
    ASSIGNMENT_EXCEEDS_DEMAND = ErrorDefinition(
        "ASSIGNMENT_EXCEEDS_DEMAND",
        "Assignment would exceed the remaining demand of the line",
        status.HTTP_409_CONFLICT,
    )
    INSUFFICIENT_AVAILABILITY = ErrorDefinition(
        "INSUFFICIENT_AVAILABILITY",
        "Inventory lot does not have enough available quantity",
        status.HTTP_409_CONFLICT,
    )
    ILLEGAL_TRANSITION = ErrorDefinition(
        "ILLEGAL_TRANSITION",
        "Operation not permitted in the current order status",
        status.HTTP_409_CONFLICT,
    )
    CONCURRENT_UPDATE = ErrorDefinition(
        "CONCURRENT_UPDATE",
        "Transfer order was modified concurrently",
        status.HTTP_409_CONFLICT,
    )
    INVENTORY_LOOKUP_UNAVAILABLE = ErrorDefinition(
        "INVENTORY_LOOKUP_UNAVAILABLE",
        "Inventory ledger or catalog lookup failed",
        status.HTTP_503_SERVICE_UNAVAILABLE,
    )
    DB_UNAVAILABLE = ErrorDefinition(
        "DB_UNAVAILABLE",
        "Database unavailable",
        status.HTTP_503_SERVICE_UNAVAILABLE,
    )
    LOCK_TIMEOUT = ErrorDefinition(
        "LOCK_TIMEOUT",
        "Lock wait timeout",
        status.HTTP_409_CONFLICT,
    )
    VALIDATION_ERROR = ErrorDefinition(
        "VALIDATION_ERROR",
        "Validation error",
        status.HTTP_422_UNPROCESSABLE_ENTITY,
    )
    INTERNAL_ERROR = ErrorDefinition(
        "INTERNAL_ERROR",
        "Internal server error",
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    IDEMPOTENCY_KEY_REQUIRED = ErrorDefinition(
        "IDEMPOTENCY_KEY_REQUIRED",
        "Idempotency key required",
        status.HTTP_400_BAD_REQUEST,
    )
    IDEMPOTENCY_KEY_REUSED_WITH_DIFFERENT_PAYLOAD = ErrorDefinition(
        "IDEMPOTENCY_KEY_REUSED_WITH_DIFFERENT_PAYLOAD",
        "Idempotency key reused with different payload",
        status.HTTP_409_CONFLICT,
    )
    IDEMPOTENCY_REQUEST_IN_PROGRESS = ErrorDefinition(
        "IDEMPOTENCY_REQUEST_IN_PROGRESS",
        "Idempotency request already in progress",
        status.HTTP_409_CONFLICT,
    )
    IDEMPOTENCY_REPLAY = ErrorDefinition(
        "IDEMPOTENCY_REPLAY",
        "Idempotent replay",
        status.HTTP_200_OK,
    )


class AppError(Exception):
    def __init__(self, error: ErrorDefinition, details: object | None = None):
        self.error = error
        self.details = details
        super().__init__(error.message)


class InvariantViolation(AppError):
    """Assignment would exceed the line demand or the lot availability."""


class IllegalTransition(AppError):
    """Status change or stage operation not permitted from the current status."""

    def __init__(self, current_status: str, details: dict | None = None):
        payload = {"current_status": current_status}
        payload.update(details or {})
        self.current_status = current_status
        super().__init__(ErrorCatalog.ILLEGAL_TRANSITION, details=payload)


class TransientLookupFailure(Exception):
    """Ledger or catalog could not answer a single lookup during a batch."""

    def __init__(self, source: str, reason: str):
        self.source = source
        self.reason = reason
        super().__init__(f"{source} lookup failed: {reason}")
