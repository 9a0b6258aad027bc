from fastapi import APIRouter

from app.modules.admin import api as admin
from app.modules.billing import api as billing

router = APIRouter()
router.include_router(billing.router, prefix="/webhooks", tags=["webhooks"])
router.include_router(admin.router, prefix="/admin/billing", tags=["admin"])
