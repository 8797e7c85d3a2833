"""
Failure taxonomy for the chat recommendation endpoint.
Every class carries the HTTP status and the public error string used in the response envelope.
"""
from __future__ import annotations

from typing import Any, Optional


class ChatAPIError(Exception):
    status_code = 500
    error = "Internal error"
    log_status = "error:internal"
    expose_details = True

    def __init__(self, error: Optional[str] = None, *, details: Optional[str] = None):
        super().__init__(error or self.error)
        if error:
            self.error = error
        self.details = details

    def to_body(self) -> dict[str, Any]:
        body: dict[str, Any] = {"success": False, "error": self.error}
        if self.details and self.expose_details:
            body["details"] = self.details
        return body


class ConfigurationError(ChatAPIError):
    """Server is missing a credential it needs. Never retried."""

    status_code = 500
    error = "Server missing model API key"
    log_status = "error:no_api_key"


class ClientInputError(ChatAPIError):
    status_code = 400
    error = "Invalid request"
    log_status = "error:invalid_request"


class RateLimitError(ChatAPIError):
    status_code = 429
    error = "Rate limit exceeded. Please try again shortly."
    log_status = "error:rate_limited"

    def __init__(self, retry_after: int, **kwargs: Any):
        super().__init__(**kwargs)
        self.retry_after = retry_after


class DataAccessError(ChatAPIError):
    status_code = 500
    error = "Failed to load candidates"
    log_status = "error:candidates"
    expose_details = False  # upstream text goes to the log only


class UpstreamCallError(ChatAPIError):
    """The model endpoint errored or could not be reached."""

    status_code = 502
    error = "Model call failed"
    log_status = "error:model_call"

    def __init__(self, message: str, *, upstream_status: Optional[int] = None, payload: Any = None):
        super().__init__(details=message)
        self.upstream_status = upstream_status
        self.payload = payload


class ModelTimeoutError(UpstreamCallError):
    pass


class UpstreamOutputError(ChatAPIError):
    """The model answered, but the answer failed structural validation."""

    status_code = 502
    error = "Invalid model output"
    log_status = "error:invalid_model_output"

    def __init__(self, model_raw: Optional[str]):
        super().__init__()
        self.model_raw = model_raw

    def to_body(self) -> dict[str, Any]:
        body = super().to_body()
        body["model_raw"] = self.model_raw
        return body
