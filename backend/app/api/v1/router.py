# backend/app/api/v1/router.py
from fastapi import APIRouter
from backend.app.api.v1.endpoints import admin, auth, passkey, recovery

api_router = APIRouter()
api_router.include_router(auth.router, prefix="/auth", tags=["auth"])
api_router.include_router(passkey.router, prefix="/passkey", tags=["passkey"])
api_router.include_router(recovery.router, prefix="/passkey/recovery", tags=["recovery"])
api_router.include_router(admin.router, prefix="/admin", tags=["admin"])
