"""Administrative router."""

from fastapi import APIRouter

from tokenstore.api.v1.admin.tokens import router as tokens_router

router = APIRouter(tags=["admin"])

router.include_router(tokens_router)
