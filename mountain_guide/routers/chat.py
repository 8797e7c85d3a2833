from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from mountain_guide.core.pipeline import handle_chat
from mountain_guide.core.schemas import Preferences
from mountain_guide.services.candidates import DEFAULT_POOL_SIZE, MAX_POOL_SIZE, get_candidates
from mountain_guide.services.heuristics import extract_heuristics
from mountain_guide.services.mountain_repo import get_mountain_repo

router = APIRouter(prefix="/api/chat", tags=["chat"])
logger = logging.getLogger(__name__)


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for") or request.headers.get("x-real-ip") or ""
    ip = forwarded.split(",")[0].strip()
    if not ip and request.client is not None:
        ip = request.client.host or ""
    return ip or "unknown"


@router.post("")
async def chat_recommend(request: Request):
    try:
        body = await request.json()
    except (ValueError, RecursionError):
        body = None  # reported as a 400 by the pipeline

    outcome = await handle_chat(body, client_ip(request))
    return JSONResponse(content=outcome.body, status_code=outcome.status_code, headers=outcome.headers)


@router.get("/candidates")
async def preview_candidates(
    q: str = Query("", max_length=1000, description="Free text used for hints and as rotation seed"),
    completed: Optional[List[str]] = Query(None, description="Completed mountain ids (repeat param)"),
    region: Optional[List[str]] = Query(None, description="Region allow-list (repeat param)"),
    difficulty: Optional[List[str]] = Query(None, description="Star difficulty allow-list (repeat param)"),
    limit: int = Query(DEFAULT_POOL_SIZE, ge=1, le=MAX_POOL_SIZE),
):
    """Candidate pool the model would see for this input, without calling the model."""
    preferences = Preferences.model_validate({"regions": region, "difficulty": difficulty})
    hints = extract_heuristics(q)
    try:
        pool = await get_candidates(
            get_mountain_repo(),
            completed_ids=completed or [],
            preferences=preferences,
            limit=limit,
            seed=q,
            heuristics=hints,
        )
    except Exception as e:
        logger.warning("candidate_preview_failed error=%s", str(e))
        raise HTTPException(status_code=500, detail={"error": "Failed to load candidates"})

    return {
        "heuristics": hints.as_dict(),
        "count": len(pool),
        "results": [m.to_dict() for m in pool],
    }
