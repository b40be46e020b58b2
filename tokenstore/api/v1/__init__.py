"""API v1 router configuration."""

from fastapi import APIRouter

from tokenstore.api.v1.admin.router import router as admin_router

router = APIRouter(prefix="/v1")

router.include_router(admin_router, prefix="/admin")
