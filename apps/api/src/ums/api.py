from fastapi import APIRouter

from ums.modules.academics.router import router as admin_academics_router
from ums.modules.auth import router as auth_router

api_router = APIRouter()

api_router.include_router(auth_router, prefix="/auth", tags=["Authentication"])

api_router.include_router(
    admin_academics_router,
    prefix="/admin",
    tags=["Admin - Academics"],
)
