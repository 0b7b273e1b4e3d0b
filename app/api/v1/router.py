from fastapi import APIRouter
from modules.membership.controllers import router as membership_router


# Main v1 router (includes all endpoints)
router = APIRouter()
router.include_router(membership_router)
