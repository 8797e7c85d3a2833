from __future__ import annotations

import asyncio
import json
import logging
from types import SimpleNamespace

import httpx
import pytest
from fastapi.testclient import TestClient

from mountain_guide import models
from mountain_guide.core.errors import UpstreamCallError
from mountain_guide.core.pipeline import handle_chat
from mountain_guide.main import app
from mountain_guide.services.rate_limiter import InMemoryRateLimiter

PIPELINE = "mountain_guide.core.pipeline"

client = TestClient(app)


class FakeModel:
    def __init__(self, content: str = '{"suggestions": []}', error: Exception | None = None):
        self.content = content
        self.error = error
        self.calls: list[list[dict]] = []

    async def __call__(self, messages, api_key):
        self.calls.append(messages)
        if self.error is not None:
            raise self.error
        return self.content


@pytest.fixture
def limiter(monkeypatch):
    lim = InMemoryRateLimiter(max_requests=10, window_seconds=60)
    monkeypatch.setattr(f"{PIPELINE}.get_rate_limiter", lambda: lim)
    return lim


@pytest.fixture
def model(monkeypatch):
    fake = FakeModel()
    monkeypatch.setattr(f"{PIPELINE}.call_model_json", fake)
    return fake


@pytest.fixture(autouse=True)
def wired(monkeypatch, static_repo, limiter, model):
    monkeypatch.setattr(f"{PIPELINE}.LLM_PROVIDER", "openai")
    monkeypatch.setattr(f"{PIPELINE}.get_model_api_key", lambda: "sk-test")
    monkeypatch.setattr(f"{PIPELINE}.get_mountain_repo", lambda: static_repo)
    monkeypatch.setattr("mountain_guide.routers.chat.get_mountain_repo", lambda: static_repo)


def _body(text: str = "Near Tokyo in winter", **extra) -> dict:
    return {"locale": "en", "messages": [{"role": "user", "content": text}], **extra}


def test_missing_api_key_fails_closed(monkeypatch, model):
    monkeypatch.setattr(f"{PIPELINE}.get_model_api_key", lambda: None)
    response = client.post("/api/chat", json=_body())

    assert response.status_code == 500
    assert response.json() == {"success": False, "error": "Server missing OPENAI_API_KEY"}
    assert "X-Total-Ms" in response.headers
    assert model.calls == []


def test_non_json_body_is_400():
    response = client.post("/api/chat", content="{not json", headers={"Content-Type": "application/json"})
    assert response.status_code == 400
    assert response.json() == {"success": False, "error": "Invalid JSON body"}


def test_deeply_nested_body_is_400():
    response = client.post("/api/chat", content="[" * 200000, headers={"Content-Type": "application/json"})
    assert response.status_code == 400
    assert response.json() == {"success": False, "error": "Invalid JSON body"}


def test_json_array_body_is_400():
    response = client.post("/api/chat", json=[1, 2])
    assert response.status_code == 400
    assert response.json()["error"] == "Invalid JSON body"


def test_empty_messages_is_400():
    response = client.post("/api/chat", json={"messages": []})
    body = response.json()
    assert response.status_code == 400
    assert body["success"] is False
    assert body["error"] == "Invalid messages"
    assert "messages" in body["details"]


def test_eleventh_request_is_rate_limited(model):
    for i in range(10):
        response = client.post("/api/chat", json=_body())
        assert response.status_code == 200
        assert response.headers["X-RateLimit-Remaining"] == str(9 - i)

    response = client.post("/api/chat", json=_body())
    assert response.status_code == 429
    assert response.json() == {"success": False, "error": "Rate limit exceeded. Please try again shortly."}
    assert 0 < int(response.headers["Retry-After"]) <= 60
    assert response.headers["X-RateLimit-Remaining"] == "0"
    assert len(model.calls) == 10


def test_rate_limit_is_per_forwarded_ip():
    for _ in range(10):
        client.post("/api/chat", json=_body(), headers={"X-Forwarded-For": "10.0.0.1, 172.16.0.1"})
    blocked = client.post("/api/chat", json=_body(), headers={"X-Forwarded-For": "10.0.0.1"})
    other = client.post("/api/chat", json=_body(), headers={"X-Forwarded-For": "10.0.0.2"})
    assert blocked.status_code == 429
    assert other.status_code == 200


def test_candidate_load_failure_is_500(monkeypatch, failing_repo, model):
    monkeypatch.setattr(f"{PIPELINE}.get_mountain_repo", lambda: failing_repo)
    response = client.post("/api/chat", json=_body())

    assert response.status_code == 500
    assert response.json() == {"success": False, "error": "Failed to load candidates"}
    assert model.calls == []


def test_model_failure_is_502(model):
    model.error = UpstreamCallError("OpenAI HTTP 500: upstream exploded", upstream_status=500)
    response = client.post("/api/chat", json=_body())

    assert response.status_code == 502
    assert response.json() == {
        "success": False,
        "error": "Model call failed",
        "details": "OpenAI HTTP 500: upstream exploded",
    }


def test_unparseable_model_output_is_502_with_raw(model):
    model.content = "Here are three great mountains!"
    response = client.post("/api/chat", json=_body())

    assert response.status_code == 502
    assert response.json() == {
        "success": False,
        "error": "Invalid model output",
        "model_raw": "Here are three great mountains!",
    }


def test_success_filters_and_remaps_suggestions(model):
    model.content = json.dumps({
        "suggestions": [
            {"mountain_id": "m02", "title": "Tsukuba", "reason": "Low and easy in winter"},
            {"mountain_id": "Mount Tanzawa", "title": "Tanzawa", "reason": "Close to Tokyo"},
            {"mountain_id": "m99", "title": "Invented", "reason": "Not a candidate"},
        ],
        "followups": ["Do you have winter gear?"],
        "disclaimer": "Check trail conditions.",
    })
    response = client.post("/api/chat", json=_body(completed_ids=["m01"]))
    body = response.json()

    assert response.status_code == 200
    assert body["success"] is True
    assert body["status"] == "ok"
    assert [s["mountain_id"] for s in body["suggestions"]] == ["m02", "m03"]
    assert body["meta"] == {"candidates_count": 3, "dropped_suggestions": 1}
    assert body["request"] == {
        "locale": "en",
        "completed_ids_length": 1,
        "preferences": None,
        "messagesCount": 1,
    }
    assert body["followups"] == ["Do you have winter gear?"]
    assert body["disclaimer"] == "Check trail conditions."
    assert float(response.headers["X-Total-Ms"]) >= 0


def test_prompt_only_offers_pool_candidates(model):
    client.post("/api/chat", json=_body(completed_ids=["m02"]))

    system, user = model.calls[0]
    assert system["role"] == "system"
    assert '"m03"' in user["content"]
    assert '"m04"' in user["content"]
    assert '"m02"' not in user["content"]  # completed
    assert '"m01"' not in user["content"]  # above the winter ceiling


def test_success_without_optional_fields(model):
    model.content = '{"suggestions": []}'
    body = client.post("/api/chat", json=_body(preferences={"regions": ["関東"]})).json()

    assert body["suggestions"] == []
    assert "followups" not in body
    assert "disclaimer" not in body
    assert body["request"]["preferences"] == {"regions": ["関東"], "difficulty": None, "season": None}


def test_request_log_has_counts_but_no_user_text(caplog):
    caplog.set_level(logging.INFO, logger=PIPELINE)
    client.post("/api/chat", json=_body("secret plans near Tokyo in winter"))

    lines = [r.getMessage() for r in caplog.records if r.getMessage().startswith("chat_api")]
    assert len(lines) == 1
    assert "status=ok" in lines[0]
    assert "candidates=3" in lines[0]
    assert "secret" not in lines[0]


def test_candidates_preview():
    response = client.get("/api/chat/candidates", params={"q": "Near Tokyo in winter"})
    body = response.json()

    assert response.status_code == 200
    assert body["heuristics"]["near_tokyo"] is True
    assert body["heuristics"]["season"] == "winter"
    assert body["count"] == 3
    assert {m["id"] for m in body["results"]} == {"m02", "m03", "m04"}


def test_candidates_preview_with_filters():
    response = client.get(
        "/api/chat/candidates",
        params=[("region", "関西"), ("region", "中国"), ("difficulty", "★★"), ("limit", "5")],
    )
    body = response.json()
    assert [m["id"] for m in body["results"]] == ["m06", "m07"]


def test_candidates_preview_rejects_bad_limit():
    assert client.get("/api/chat/candidates", params={"limit": 0}).status_code == 422


def test_candidates_preview_failure(monkeypatch, failing_repo):
    monkeypatch.setattr("mountain_guide.routers.chat.get_mountain_repo", lambda: failing_repo)
    response = client.get("/api/chat/candidates")
    assert response.status_code == 500
    assert response.json() == {"detail": {"error": "Failed to load candidates"}}


def test_health():
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_unexpected_model_exception_is_502(model, caplog):
    caplog.set_level(logging.INFO, logger=PIPELINE)
    model.error = httpx.ReadError("connection reset")
    response = client.post("/api/chat", json=_body())

    assert response.status_code == 502
    assert response.json() == {"success": False, "error": "Model call failed", "details": "connection reset"}
    lines = [r.getMessage() for r in caplog.records if r.getMessage().startswith("chat_api")]
    assert len(lines) == 1
    assert "status=error:model_call" in lines[0]


def test_gemini_connection_failure_is_502(monkeypatch, static_repo, limiter):
    async def generate_content(*, model, contents, config):
        raise httpx.ConnectError("connection refused")

    fake_client = SimpleNamespace(aio=SimpleNamespace(models=SimpleNamespace(generate_content=generate_content)))
    monkeypatch.setattr(models, "_get_gemini_client", lambda api_key: fake_client)

    outcome = asyncio.run(
        handle_chat(
            _body(),
            "203.0.113.7",
            repo=static_repo,
            limiter=limiter,
            model_call=lambda m, k: models.call_model_json(m, k, provider="gemini"),
        )
    )

    assert outcome.status_code == 502
    assert outcome.body["error"] == "Model call failed"
    assert "connection refused" in outcome.body["details"]
    assert "X-Total-Ms" in outcome.headers
