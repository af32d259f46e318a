from fastapi import APIRouter

from certflow.api.v1.documents import router as documents_router
from certflow.api.v1.notifications import router as notifications_router
from certflow.api.v1.projects import router as projects_router
from certflow.api.v1.reports import router as reports_router
from certflow.api.v1.schedules import router as schedules_router

v1_router = APIRouter()

v1_router.include_router(projects_router)
v1_router.include_router(documents_router)
v1_router.include_router(schedules_router)
v1_router.include_router(reports_router)
v1_router.include_router(notifications_router)
