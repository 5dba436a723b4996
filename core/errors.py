"""
Error taxonomy for the analyze endpoint.

Each error carries the HTTP status and the machine-readable code that end up in
the `{error, detail}` response body.
"""

from typing import Any, Dict, Optional


class AnalyzeError(Exception):
    code = "internal_error"
    status_code = 500

    def __init__(self, message: str, detail: Any = None, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail
        if status_code is not None:
            self.status_code = status_code

    def to_body(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.code}
        if self.detail is not None:
            body["detail"] = self.detail
        return body


class InvalidInputError(AnalyzeError):
    code = "invalid_input"
    status_code = 400


class PayloadTooLargeError(AnalyzeError):
    code = "payload_too_large"
    status_code = 413


class ConfigurationError(AnalyzeError):
    code = "configuration_error"
    status_code = 500


class UpstreamTransientError(AnalyzeError):
    """429/5xx/transport faults that outlasted every retry."""

    code = "upstream_unavailable"
    status_code = 504


class UpstreamTerminalError(AnalyzeError):
    """Non-retryable upstream status; the upstream status is passed through."""

    code = "upstream_error"
    status_code = 502


class EmptyResponseError(UpstreamTerminalError):
    code = "empty_response"
    status_code = 502


class DeadlineExceededError(AnalyzeError):
    code = "deadline_exceeded"
    status_code = 504


class InternalError(AnalyzeError):
    code = "internal_error"
    status_code = 500
