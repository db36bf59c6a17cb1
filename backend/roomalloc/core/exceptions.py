class AppError(Exception):
    """Base class for all application exceptions."""
    def __init__(self, message: str, status_code: int = 500, details: dict = None):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)

class AllocationError(AppError):
    """Raised when an allocation request cannot run against the current state."""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message, status_code=400, details=details)

class ResourceNotFoundError(AppError):
    """Raised when a requested resource is not found."""
    def __init__(self, resource_type: str, resource_id):
        super().__init__(f"{resource_type} with id {resource_id} not found", status_code=404)

class ConfigurationError(AppError):
    """Raised when system configuration is invalid."""
    def __init__(self, message: str):
        super().__init__(message, status_code=500)

class JobAlreadyRunningError(AppError):
    """Raised when a reservation job for an overlapping room set is still in flight."""
    def __init__(self, room_ids, running_job_id: int | None = None):
        super().__init__(
            "A reservation job for these rooms is already running",
            status_code=409,
            details={"room_ids": sorted(room_ids), "running_job_id": running_job_id},
        )


class ReservationSyncError(AppError):
    """Base class for failures of the reservation synchronization job."""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message, status_code=502, details=details)

class ReservationConflictError(ReservationSyncError):
    """The remote system already holds a booking that overlaps a section slot."""
    def __init__(self, *, section_id: int, room_name: str | None, slot: dict):
        super().__init__(
            f"Schedule conflict detected for section {section_id} in room {room_name}",
            details={"school_class_id": section_id, "room": room_name, "slot": slot},
        )

class ReservationCreationError(ReservationSyncError):
    """Creation failed part-way; ``created`` lists the references made before the failure."""
    def __init__(self, message: str, *, created: list | None = None, details: dict = None):
        super().__init__(message, details=details)
        self.created = list(created or [])

class ReservationJobTimeoutError(ReservationSyncError):
    def __init__(self, timeout_seconds: float):
        super().__init__(
            f"Reservation job exceeded its {timeout_seconds}s time limit",
            details={"timeout_seconds": timeout_seconds},
        )


class SalasApiError(AppError):
    """Error returned by (or while talking to) the remote room-booking API."""
    def __init__(
        self,
        message: str,
        *,
        http_status: int | None = None,
        retryable: bool = False,
        retry_after: float | None = None,
        details: dict = None,
    ):
        super().__init__(message, status_code=502, details=details)
        self.http_status = http_status
        self.retryable = retryable
        self.retry_after = retry_after

class SalasConnectionError(SalasApiError):
    def __init__(self, message: str):
        super().__init__(f"Connection failed: {message}", retryable=True)

class SalasRateLimitError(SalasApiError):
    def __init__(self, retry_after: float):
        super().__init__(
            f"Rate limit exceeded. Retry after {int(retry_after)} seconds",
            http_status=429,
            retryable=True,
            retry_after=retry_after,
        )

class SalasRoomNotFoundError(SalasApiError):
    def __init__(self, room_name: str, mapped_name: str):
        super().__init__(
            f"Room not found in remote system: {room_name} (mapped to: {mapped_name})",
            details={"room": room_name, "mapped_name": mapped_name},
        )

class CircuitOpenError(SalasApiError):
    def __init__(self, retry_at: float | None = None):
        super().__init__("Circuit breaker is OPEN - API calls are blocked due to repeated failures")
        self.status_code = 503
        self.retry_at = retry_at
