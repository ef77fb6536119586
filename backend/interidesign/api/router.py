from fastapi import APIRouter

from interidesign.api.auth import router as auth_router
from interidesign.api.health import router as health_router
from interidesign.api.users import admin_router
from interidesign.api.users import router as users_router

api_router = APIRouter()

# Include sub-routers
api_router.include_router(health_router, tags=["health"])
api_router.include_router(auth_router)
api_router.include_router(users_router)
api_router.include_router(admin_router)
