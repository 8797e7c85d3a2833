"""
Health check endpoint. Reports which mountain source and model provider this process is wired to.
"""
from fastapi import APIRouter

from mountain_guide.config import LLM_PROVIDER, MOUNTAIN_SOURCE

router = APIRouter(prefix="/health", tags=["health"])

@router.get("")
def health_check():
    return {"status": "ok", "mountain_source": MOUNTAIN_SOURCE, "llm_provider": LLM_PROVIDER}
