"""User management and bootstrap endpoints."""
import uuid
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Request, Response
from app.config import settings
from app.constants import COOKIE_NAME, USER_ID_PREFIX
from app.dependencies import get_orchestrator
from app.services.progression import ProgressionOrchestrator
from app.services.store import StoreUnavailable

router = APIRouter(prefix="/api", tags=["user"])


def get_user_id_from_cookie(request: Request) -> str:
    """Extract user ID from cookie."""
    user_id = request.cookies.get(COOKIE_NAME)
    if not user_id:
        raise HTTPException(status_code=401, detail="No user session found")
    return user_id


def get_or_create_user(
    request: Request,
    response: Response,
    orchestrator: ProgressionOrchestrator
) -> str:
    """
    Get or create anonymous user based on cookie.

    Args:
        request: FastAPI request
        response: FastAPI response (to set cookie)
        orchestrator: Progression orchestrator

    Returns:
        User id
    """
    user_id: Optional[str] = request.cookies.get(COOKIE_NAME)

    if user_id and orchestrator.store.exists(user_id):
        orchestrator.store.touch(user_id)
        return user_id

    # Create new user
    user_id = f"{USER_ID_PREFIX}{uuid.uuid4()}"
    orchestrator.store.get_or_create(user_id)

    # Set cookie with security settings from config
    response.set_cookie(
        key=COOKIE_NAME,
        value=user_id,
        max_age=settings.COOKIE_MAX_AGE,
        httponly=settings.COOKIE_HTTPONLY,
        samesite=settings.COOKIE_SAMESITE,
        secure=settings.COOKIE_SECURE
    )

    return user_id


@router.get("/bootstrap")
async def bootstrap(
    request: Request,
    response: Response,
    orchestrator: ProgressionOrchestrator = Depends(get_orchestrator)
):
    """
    Bootstrap user session and return initial data.

    Returns:
    - Progression summary (level, experience, tickets, streak)
    - Unlocked features and upcoming milestones
    """
    try:
        user_id = get_or_create_user(request, response, orchestrator)
        return orchestrator.summary(user_id)
    except StoreUnavailable:
        raise HTTPException(status_code=503, detail="Progression store unavailable")
