"""
Main API router
"""
from fastapi import APIRouter

from app.api.v1 import (
    health,
    absence_requests,
)

api_router = APIRouter()

api_router.include_router(health.router, tags=["health"])
api_router.include_router(absence_requests.router, prefix="/absence-requests", tags=["absence-requests"])
