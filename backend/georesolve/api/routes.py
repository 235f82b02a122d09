from __future__ import annotations

from fastapi import APIRouter

from georesolve.api.v1 import address_sessions, catalogs

router = APIRouter()
router.include_router(
    address_sessions.router, prefix="/v1/address-sessions", tags=["address"]
)
router.include_router(catalogs.router, prefix="/v1/catalogs", tags=["catalogs"])
