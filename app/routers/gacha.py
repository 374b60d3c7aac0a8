"""Gacha endpoints: pulls, collection, history and statistics."""
import logging
from dataclasses import asdict
from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field, field_validator
from app.constants import MULTI_PULL_COUNT, PULL_HISTORY_LIMIT, PULL_RATE_LIMIT
from app.dependencies import get_gacha
from app.limiter import limiter
from app.routers.user import get_user_id_from_cookie
from app.services.gacha import GachaEngine, InsufficientTickets, NoDuplicatesToSpend, UnknownCollectible
from app.services.store import StoreUnavailable

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/gacha", tags=["gacha"])


class PullRequest(BaseModel):
    """Request body for a pull."""
    count: int = Field(1, description="1 for a single pull, 10 for a batch")

    @field_validator("count")
    @classmethod
    def validate_count(cls, v):
        """Only singles and batches of ten are sold."""
        if v not in (1, MULTI_PULL_COUNT):
            raise ValueError(f"count must be 1 or {MULTI_PULL_COUNT}")
        return v


@router.get("/pool")
async def get_pool(gacha: GachaEngine = Depends(get_gacha)):
    """Drop rates, costs, pity threshold and pullable collectibles."""
    return gacha.pool_info()


@router.post("/pull")
@limiter.limit(PULL_RATE_LIMIT)
async def pull(
    body: PullRequest,
    request: Request,
    gacha: GachaEngine = Depends(get_gacha)
):
    """
    Spend tickets on a pull.

    Returns the ordered pull results and the remaining balance; the whole
    batch is charged and recorded atomically.
    """
    user_id = get_user_id_from_cookie(request)

    try:
        batch = gacha.pull_batch(user_id, body.count)
    except InsufficientTickets as e:
        raise HTTPException(status_code=400, detail=str(e))
    except StoreUnavailable:
        raise HTTPException(status_code=503, detail="Progression store unavailable")

    return {
        "results": [
            {
                "collectible_id": r.collectible_id,
                "rarity": r.rarity.value,
                "is_new": r.is_new,
                "duplicate_count": r.duplicate_count,
                "pity_applied": r.pity_applied,
            }
            for r in batch.results
        ],
        "tickets_spent": batch.tickets_spent,
        "tickets_remaining": batch.tickets_remaining,
        "pulls_since_rare": batch.pulls_since_rare,
        "rewards": [asdict(grant) for grant in batch.rewards],
        "achievements_unlocked": batch.achievements_unlocked,
    }


@router.get("/collection")
async def get_collection(request: Request, gacha: GachaEngine = Depends(get_gacha)):
    """Owned collectibles with level, duplicates and scaled stats."""
    user_id = get_user_id_from_cookie(request)
    return {"collection": gacha.collection(user_id)}


@router.post("/collection/{collectible_id}/enhance")
async def enhance_collectible(
    collectible_id: str,
    request: Request,
    gacha: GachaEngine = Depends(get_gacha)
):
    """Spend one duplicate of an owned collectible for experience."""
    user_id = get_user_id_from_cookie(request)

    try:
        owned = gacha.enhance(user_id, collectible_id)
    except UnknownCollectible as e:
        raise HTTPException(status_code=404, detail=str(e))
    except NoDuplicatesToSpend as e:
        raise HTTPException(status_code=400, detail=str(e))
    except StoreUnavailable:
        raise HTTPException(status_code=503, detail="Progression store unavailable")

    return {
        "collectible_id": owned.collectible_id,
        "level": owned.level,
        "experience": owned.experience,
        "duplicate_count": owned.duplicate_count,
    }


@router.get("/history")
async def get_history(
    request: Request,
    limit: int = PULL_HISTORY_LIMIT,
    gacha: GachaEngine = Depends(get_gacha)
):
    """Pull log, newest first."""
    user_id = get_user_id_from_cookie(request)
    limit = max(1, min(limit, 500))
    return {"history": gacha.history(user_id, limit)}


@router.get("/stats")
async def get_stats(request: Request, gacha: GachaEngine = Depends(get_gacha)):
    """Total pulls, rarity breakdown and pity state."""
    user_id = get_user_id_from_cookie(request)
    return gacha.stats(user_id)
