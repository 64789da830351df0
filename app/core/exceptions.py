"""Custom exception classes for the application."""

from typing import Any


class GeoScoreError(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(GeoScoreError):
    """Input is missing required fields or does not match its schema."""

    pass


# Lookup errors
class NotFoundError(GeoScoreError):
    """Referenced entity does not exist."""

    pass


class BrandNotFoundError(NotFoundError):
    """Brand not found."""

    def __init__(self, brand_id: str) -> None:
        super().__init__(f"Brand not found: {brand_id}", {"brand_id": brand_id})


class JobNotFoundError(NotFoundError):
    """Job not found."""

    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job not found: {job_id}", {"job_id": job_id})


# Queue errors
class DuplicateJobError(GeoScoreError):
    """A job with the same type and idempotency key already exists."""

    def __init__(self, job_type: str, idempotency_key: str, existing_job_id: str) -> None:
        self.existing_job_id = existing_job_id
        super().__init__(
            f"Job already exists for {job_type} with idempotency key {idempotency_key}",
            {
                "job_type": job_type,
                "idempotency_key": idempotency_key,
                "existing_job_id": existing_job_id,
            },
        )


class JobStateError(GeoScoreError):
    """Operation is not allowed in the job's current status."""

    def __init__(self, job_id: str, status: str, operation: str) -> None:
        self.status = status
        super().__init__(
            f"Cannot {operation} job {job_id} in status {status}",
            {"job_id": job_id, "status": status, "operation": operation},
        )


class RetryExhaustedError(GeoScoreError):
    """No further retries are permitted for this job."""

    def __init__(self, job_id: str, retry_count: int, max_retries: int) -> None:
        super().__init__(
            f"Job {job_id} has exhausted its retries ({retry_count}/{max_retries})",
            {"job_id": job_id, "retry_count": retry_count, "max_retries": max_retries},
        )


# Execution errors
class StageTimeoutError(GeoScoreError):
    """A stage worker call exceeded its configured timeout."""

    def __init__(self, job_type: str, timeout_seconds: float) -> None:
        super().__init__(
            f"{job_type} stage timed out after {timeout_seconds:g}s",
            {"job_type": job_type, "timeout_seconds": timeout_seconds},
        )


# External Service Errors
class ExternalServiceError(GeoScoreError):
    """External provider call failed."""

    def __init__(self, service_name: str, message: str) -> None:
        self.service_name = service_name
        super().__init__(f"{service_name} error: {message}", {"service": service_name})


class APIKeyMissingError(ExternalServiceError):
    """Required API key is not configured."""

    def __init__(self, service_name: str) -> None:
        super().__init__(service_name, "API key not configured")
