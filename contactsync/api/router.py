"""
Main API router that includes all endpoint routers.
"""
from fastapi import APIRouter

from contactsync.api.v1.endpoints import auth, contacts, ws


# Create main API router
api_router = APIRouter()

# Include all endpoint routers with appropriate tags
api_router.include_router(
    auth.router,
    prefix="/auth",
    tags=["Authentication"]
)
api_router.include_router(
    contacts.router,
    prefix="/contacts",
    tags=["Contacts"]
)
api_router.include_router(
    ws.router,
    prefix="/ws",
    tags=["Progress"]
)
