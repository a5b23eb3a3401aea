"""
Central API router that aggregates all route modules.
"""

from fastapi import APIRouter
from minicompete.api.routes import admin, competitions, users

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(competitions.router)
api_router.include_router(users.router)
api_router.include_router(admin.router)
