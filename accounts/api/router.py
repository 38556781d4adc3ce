from fastapi import APIRouter
from accounts.api.routes import accounts, auth, verify

router = APIRouter()
router.include_router(accounts.router, prefix="/accounts", tags=["accounts"])
router.include_router(auth.router, prefix="/accounts/auth", tags=["auth"])
router.include_router(verify.router, prefix="/accounts/verify", tags=["verify"])
