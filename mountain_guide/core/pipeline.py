from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import ValidationError

from mountain_guide.config import LLM_PROVIDER
from mountain_guide.core.errors import (
    ChatAPIError,
    ClientInputError,
    ConfigurationError,
    DataAccessError,
    RateLimitError,
    UpstreamCallError,
    UpstreamOutputError,
)
from mountain_guide.core.schemas import ChatRequest, summarize_validation_error
from mountain_guide.models import API_KEY_NAMES, call_model_json, get_model_api_key
from mountain_guide.services.candidates import DEFAULT_POOL_SIZE, get_candidates
from mountain_guide.services.heuristics import extract_heuristics
from mountain_guide.services.mountain_repo import MountainRepo, get_mountain_repo
from mountain_guide.services.output_validator import parse_model_output, resolve_suggestions
from mountain_guide.services.prompts import build_messages, latest_user_message
from mountain_guide.services.rate_limiter import RateLimiter, get_rate_limiter

logger = logging.getLogger(__name__)

ModelCall = Callable[[List[Dict[str, str]], str], Awaitable[str]]


@dataclass
class ChatOutcome:
    status_code: int
    body: Dict[str, Any]
    headers: Dict[str, str] = field(default_factory=dict)


@dataclass
class _RequestLog:
    """Counters for the one log line each request emits. Holds no user text."""

    ip: str
    started: float
    locale: Optional[str] = None
    completed_ids: Optional[int] = None
    candidates: Optional[int] = None
    suggestions: Optional[int] = None
    dropped: Optional[int] = None

    def duration_ms(self) -> float:
        return round((time.perf_counter() - self.started) * 1000, 2)

    def emit(self, status: str, error: Optional[str] = None) -> None:
        logger.info(
            "chat_api status=%s ip=%s locale=%s completed_ids=%s candidates=%s suggestions=%s dropped=%s duration_ms=%.2f error=%s",
            status,
            self.ip,
            self.locale,
            self.completed_ids,
            self.candidates,
            self.suggestions,
            self.dropped,
            self.duration_ms(),
            error,
        )


def _parse_request(body: Any) -> ChatRequest:
    if not isinstance(body, dict):
        raise ClientInputError("Invalid JSON body")
    try:
        return ChatRequest.model_validate(body)
    except ValidationError as ve:
        locs = {str(e.get("loc", ("",))[0]) for e in ve.errors()}
        error = "Invalid messages" if "messages" in locs else "Invalid request"
        raise ClientInputError(error, details=summarize_validation_error(ve)) from ve


async def handle_chat(
    body: Any,
    client_ip: str,
    *,
    repo: Optional[MountainRepo] = None,
    limiter: Optional[RateLimiter] = None,
    model_call: Optional[ModelCall] = None,
    pool_size: int = DEFAULT_POOL_SIZE,
) -> ChatOutcome:
    """
    Single entry point for POST /api/chat.

    body: the decoded JSON body, or None when the body was not valid JSON.
    Every failure ends here as a structured envelope; nothing propagates to the framework.
    """
    rlog = _RequestLog(ip=client_ip, started=time.perf_counter())
    headers: Dict[str, str] = {}

    try:
        # 1) Fail closed without a model credential
        api_key = get_model_api_key()
        if not api_key:
            key_name = API_KEY_NAMES.get(LLM_PROVIDER, "model API key")
            raise ConfigurationError(f"Server missing {key_name}")

        # 2-3) Request shape
        req = _parse_request(body)
        rlog.locale = req.locale
        rlog.completed_ids = len(req.completed_ids)

        # 4) Admission
        decision = await (limiter or get_rate_limiter()).check(f"ip:{client_ip}")
        headers["X-RateLimit-Remaining"] = str(decision.remaining)
        if not decision.allowed:
            raise RateLimitError(retry_after=decision.retry_after)

        # 5) Candidates
        last_user_text = latest_user_message(req.messages)
        hints = extract_heuristics(last_user_text)
        try:
            candidates = await get_candidates(
                repo or get_mountain_repo(),
                completed_ids=req.completed_ids,
                preferences=req.preferences,
                limit=pool_size,
                seed=last_user_text,
                heuristics=hints,
            )
        except Exception as exc:
            raise DataAccessError(details=str(exc) or type(exc).__name__) from exc
        rlog.candidates = len(candidates)

        # 6) Model call: any failure is a 502
        prompt_messages = build_messages(req.messages, candidates, req.locale, len(req.completed_ids), hints)
        try:
            model_raw = await (model_call or call_model_json)(prompt_messages, api_key)
        except ChatAPIError:
            raise
        except Exception as exc:
            raise UpstreamCallError(str(exc) or type(exc).__name__) from exc

        # 7) Output validation
        parsed = parse_model_output(model_raw)
        if parsed is None:
            raise UpstreamOutputError(model_raw)

        valid = resolve_suggestions(parsed.suggestions, candidates)
        rlog.suggestions = len(valid)
        rlog.dropped = len(parsed.suggestions) - len(valid)

    except ChatAPIError as exc:
        if isinstance(exc, RateLimitError):
            headers["Retry-After"] = str(exc.retry_after)
        duration_ms = rlog.duration_ms()
        headers["X-Total-Ms"] = str(duration_ms)
        rlog.emit(exc.log_status, error=exc.details)
        return ChatOutcome(status_code=exc.status_code, body=exc.to_body(), headers=headers)

    # 8) Success
    response: Dict[str, Any] = {
        "success": True,
        "status": "ok",
        "request": {
            "locale": req.locale,
            "completed_ids_length": len(req.completed_ids),
            "preferences": req.preferences.model_dump() if req.preferences else None,
            "messagesCount": len(req.messages),
        },
        "suggestions": [s.to_dict() for s in valid],
        "meta": {
            "candidates_count": len(candidates),
            "dropped_suggestions": rlog.dropped,
        },
    }
    if parsed.followups is not None:
        response["followups"] = parsed.followups
    if parsed.disclaimer is not None:
        response["disclaimer"] = parsed.disclaimer

    headers["X-Total-Ms"] = str(rlog.duration_ms())
    rlog.emit("ok")
    return ChatOutcome(status_code=200, body=response, headers=headers)
