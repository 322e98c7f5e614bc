from fastapi import APIRouter

from app.api.v1.auth import router as auth_router
from app.api.v1.share import router as share_router
from app.api.v1.xenbox import router as xenbox_router

router = APIRouter()
router.include_router(auth_router)
router.include_router(share_router)
router.include_router(xenbox_router)
