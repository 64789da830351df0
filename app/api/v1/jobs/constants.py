"""Constants for job queue routes."""

DEFAULT_JOB_LIMIT = 50
MAX_JOB_LIMIT = 200

BRAND_NOT_FOUND_DETAIL = "Brand not found"
JOB_NOT_FOUND_DETAIL = "Job not found"
DEPENDENCY_NOT_FOUND_DETAIL = "Dependency job not found"
DUPLICATE_JOB_DETAIL = "Job with this idempotency key already exists"
RETRY_EXHAUSTED_DETAIL = "Maximum retries exceeded"
RETRY_NOT_FAILED_DETAIL = "Only failed jobs can be retried"
CANCEL_NOT_QUEUED_DETAIL = "Only queued jobs can be cancelled"
JOB_ALREADY_FINISHED_DETAIL = "Job has already finished"
JOB_CANCELLED_MESSAGE = "Job cancelled"
