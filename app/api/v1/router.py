"""API v1 router aggregator."""

from fastapi import APIRouter

from app.api.v1.jobs.routes import router as jobs_router

api_router = APIRouter()

api_router.include_router(jobs_router, prefix="/jobs", tags=["Jobs"])
