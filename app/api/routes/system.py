from fastapi import APIRouter
from core.config import settings
from modules.membership import service

router = APIRouter(tags=["System"])


@router.get("/version")
def get_version():
    """Get the version of the application."""
    return {"version": settings.GIT_SHA}


@router.get("/health")
def get_health():
    """Healthcheck endpoint."""
    return {
        "status": "ok",
        "gitlab_configured": service.get_gitlab_config().configured,
    }
