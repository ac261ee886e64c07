"""Mount all API routes."""

from fastapi import APIRouter

from nearhand.api.profiles import router as profiles_router
from nearhand.api.tasks import router as tasks_router

api_router = APIRouter()
api_router.include_router(profiles_router, tags=["profiles"])
api_router.include_router(tasks_router, tags=["tasks"])
