"""Main API router aggregating all endpoints."""

from fastapi import APIRouter

from csvimport.api.v1 import jobs, scheduler, uploads

api_router = APIRouter()

# Include sub-routers
api_router.include_router(uploads.router, prefix="/csv-jobs", tags=["Uploads"])
api_router.include_router(jobs.router, tags=["Jobs"])
api_router.include_router(scheduler.router, tags=["Scheduler"])
