from fastapi import APIRouter

from .endpoints import admin, health, nfc, observability

router = APIRouter()
router.include_router(health.router, tags=["Health"])
router.include_router(nfc.router)
router.include_router(admin.router)
router.include_router(observability.router)
