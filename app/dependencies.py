"""FastAPI dependencies shared across routes."""

from typing import Annotated

from fastapi import Depends

from app.services.job_queue import JobQueueManager, get_job_queue_manager

QueueManager = Annotated[JobQueueManager, Depends(get_job_queue_manager)]
