"""Main API router for v1."""
from fastapi import APIRouter

from rollcall.api.v1.endpoints import attendance, participants, sessions, sse

api_router = APIRouter(prefix="/api/v1")

# Include all endpoint routers
api_router.include_router(sessions.router, prefix="/sessions", tags=["Sessions"])
api_router.include_router(participants.router, prefix="/sessions", tags=["Participants"])
api_router.include_router(attendance.router, prefix="/attendance", tags=["Attendance"])
api_router.include_router(sse.router, tags=["SSE"])
