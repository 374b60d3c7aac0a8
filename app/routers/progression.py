"""Progression endpoints: activity updates, streaks, achievements, milestones."""
import asyncio
import logging
from dataclasses import asdict
from typing import Any, Dict, Optional
from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field
from app.constants import STREAK_RETRY_AFTER_SECONDS
from app.dependencies import get_orchestrator, get_pipeline
from app.routers.user import get_user_id_from_cookie
from app.services.offline_queue import OfflineSubmissionPipeline
from app.services.progression import InvalidUpdate, ProgressionOrchestrator, ProgressionUpdate
from app.services.store import StoreUnavailable

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/progression", tags=["progression"])


class UpdateRequest(BaseModel):
    """Request body for an activity update."""
    update: ProgressionUpdate
    immediate: bool = True


class AchievementCheckRequest(BaseModel):
    """Optional event context for an explicit achievement check."""
    context: Dict[str, Any] = Field(default_factory=dict)


@router.post("/update")
async def submit_update(
    body: UpdateRequest,
    request: Request,
    pipeline: OfflineSubmissionPipeline = Depends(get_pipeline)
):
    """
    Submit an activity event.

    Returns {success, queued, ...}. A queued update was accepted and will
    sync later; no rewards are shown for it until then.
    """
    user_id = get_user_id_from_cookie(request)

    try:
        # May replay queued updates first
        submission = await asyncio.to_thread(pipeline.submit, user_id, body.update, body.immediate)
    except InvalidUpdate as e:
        raise HTTPException(status_code=422, detail=str(e))

    response = {
        "success": submission.success,
        "queued": submission.queued,
        "entry_id": submission.entry_id,
    }
    if submission.result is not None:
        result = submission.result
        response.update({
            "deferred": result.deferred,
            "new_level": result.new_level,
            "leveled_up": result.leveled_up,
            "levels_gained": result.levels_gained,
            "experience": result.experience,
            "gacha_tickets": result.gacha_tickets,
            "rewards": [asdict(grant) for grant in result.rewards],
            "achievements_unlocked": result.achievements_unlocked,
            "features_unlocked": result.features_unlocked,
        })
    return response


@router.post("/streak")
async def check_in(
    request: Request,
    orchestrator: ProgressionOrchestrator = Depends(get_orchestrator)
):
    """Daily check-in. Repeated check-ins on the same day change nothing.

    A check-in counts the day it arrives on, so it is not queued for later
    replay like activity updates; the client retries instead.
    """
    user_id = get_user_id_from_cookie(request)

    try:
        outcome = orchestrator.update_streak(user_id)
    except StoreUnavailable:
        raise HTTPException(
            status_code=503,
            detail="Progression store unavailable, check in again shortly",
            headers={"Retry-After": str(STREAK_RETRY_AFTER_SECONDS)},
        )

    return {
        "streak_days": outcome.new_streak,
        "changed": outcome.changed,
        "reward": asdict(outcome.reward) if outcome.reward else None,
        "rewards": [asdict(grant) for grant in outcome.progression.rewards] if outcome.progression else [],
        "new_level": outcome.progression.new_level if outcome.progression else None,
        "leveled_up": outcome.progression.leveled_up if outcome.progression else False,
    }


@router.get("/summary")
async def get_summary(
    request: Request,
    orchestrator: ProgressionOrchestrator = Depends(get_orchestrator)
):
    """Level progress, totals, streak, features and upcoming milestones."""
    user_id = get_user_id_from_cookie(request)
    try:
        return orchestrator.summary(user_id)
    except StoreUnavailable:
        raise HTTPException(status_code=503, detail="Progression store unavailable")


@router.get("/achievements")
async def list_achievements(
    request: Request,
    orchestrator: ProgressionOrchestrator = Depends(get_orchestrator)
):
    """All achievements with the user's progress."""
    user_id = get_user_id_from_cookie(request)
    try:
        return {"achievements": orchestrator.achievements(user_id)}
    except StoreUnavailable:
        raise HTTPException(status_code=503, detail="Progression store unavailable")


@router.post("/achievements/{achievement_id}/check")
async def check_achievement(
    achievement_id: str,
    request: Request,
    body: Optional[AchievementCheckRequest] = None,
    orchestrator: ProgressionOrchestrator = Depends(get_orchestrator)
):
    """Evaluate one achievement now. Safe to repeat."""
    user_id = get_user_id_from_cookie(request)

    if orchestrator.catalog.achievement(achievement_id) is None:
        raise HTTPException(status_code=404, detail="Achievement not found")

    try:
        outcome = orchestrator.check_achievement(user_id, achievement_id, body.context if body else None)
    except StoreUnavailable:
        raise HTTPException(status_code=503, detail="Progression store unavailable")

    return {
        "achievement_id": achievement_id,
        "unlocked": outcome.unlocked,
        "already_unlocked": outcome.already_unlocked,
        "reward": asdict(outcome.reward) if outcome.reward else None,
    }


@router.get("/milestones")
async def list_milestones(
    request: Request,
    orchestrator: ProgressionOrchestrator = Depends(get_orchestrator)
):
    """Milestone progress, derived from the user's counters."""
    user_id = get_user_id_from_cookie(request)
    try:
        statuses = orchestrator.milestones(user_id)
    except StoreUnavailable:
        raise HTTPException(status_code=503, detail="Progression store unavailable")

    return {
        "milestones": [
            {
                "id": s.milestone_id,
                "name": s.name,
                "current_value": s.current_value,
                "required_value": s.required_value,
                "progress": round(s.progress, 3),
                "completed": s.completed,
                "rewarded": s.rewarded,
                "reward": asdict(s.reward),
            }
            for s in statuses
        ]
    }


@router.get("/difficulty")
async def get_difficulty(
    request: Request,
    orchestrator: ProgressionOrchestrator = Depends(get_orchestrator)
):
    """Recommended difficulty from the last five quiz scores."""
    user_id = get_user_id_from_cookie(request)
    try:
        recommendation = orchestrator.difficulty(user_id)
    except StoreUnavailable:
        raise HTTPException(status_code=503, detail="Progression store unavailable")

    return {
        "multiplier": recommendation.multiplier,
        "tier": recommendation.tier.value,
        "confidence": recommendation.confidence,
        "average_score": recommendation.average_score,
        "sample_size": recommendation.sample_size,
    }
