"""
server/analyze.py
The analyze pipeline behind POST /api/analyze:
parse -> validate -> slim -> deliver (retries, deadline) -> extract -> respond.

`analyze_payload` always returns (status, JSON-able body); it never raises.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional, Tuple

import requests
from pydantic import ValidationError

from core.errors import (
    AnalyzeError,
    EmptyResponseError,
    InternalError,
    InvalidInputError,
    PayloadTooLargeError,
)
from core.extractor import extract_text
from core.slimmer import SlimLimits, slim_payload
from core.summarizer import build_upstream_request
from server.models import AnalysisPayload, AnalyzeResponse
from services.deadline import DeadlineController
from services.delivery import Failure, RetryingDeliveryClient, RetryPolicy
from services.openai_client import UpstreamSettings, load_settings

logger = logging.getLogger("ctr-insights")


def parse_body(body: Any) -> Dict[str, Any]:
    if isinstance(body, (bytes, bytearray)):
        try:
            body = body.decode("utf-8")
        except UnicodeDecodeError:
            raise InvalidInputError("Invalid JSON body", "Body is not valid UTF-8")

    # a JSON string holding a JSON document is unwrapped once
    for _ in range(2):
        if not isinstance(body, str):
            break
        try:
            body = json.loads(body)
        except ValueError:
            raise InvalidInputError("Invalid JSON body", "Body is not valid JSON")

    if not isinstance(body, dict):
        raise InvalidInputError("Invalid JSON body", "Expected a JSON object")
    return body


def validate_payload(data: Dict[str, Any]) -> Dict[str, Any]:
    try:
        payload = AnalysisPayload.model_validate(data)
    except ValidationError as e:
        raise InvalidInputError("Invalid payload", json.loads(e.json(include_url=False)))
    return payload.model_dump(by_alias=True)


def _run(
    body: Any,
    settings: UpstreamSettings,
    session: requests.Session,
    policy: RetryPolicy,
) -> Dict[str, Any]:
    data = validate_payload(parse_body(body))

    if len(data["benchmarks"]) > settings.max_benchmarks:
        raise PayloadTooLargeError(
            "Too many benchmarks",
            {"benchmarks": len(data["benchmarks"]), "max": settings.max_benchmarks},
        )

    headers = settings.headers()
    slim = slim_payload(data, SlimLimits.for_profile(settings.slim_profile))
    request = build_upstream_request(slim, settings)

    client = RetryingDeliveryClient(settings.url, headers, session=session, policy=policy)
    with DeadlineController(settings.deadline_seconds) as token:
        result = client.deliver(request, token)

    if isinstance(result, Failure):
        raise result.to_error()

    text = extract_text(result.body).strip()
    if not text:
        raise EmptyResponseError("Upstream returned no text", {"attempts": len(result.attempts)})

    logger.info(
        "Generated summary for %s (%d chars, %d attempt(s))",
        slim["meta"]["datasetName"] or "n/a", len(text), len(result.attempts),
    )
    return AnalyzeResponse(summaryText=text).model_dump()


def analyze_payload(
    body: Any,
    settings: Optional[UpstreamSettings] = None,
    session: Optional[requests.Session] = None,
    policy: Optional[RetryPolicy] = None,
) -> Tuple[int, Dict[str, Any]]:
    owns_session = session is None
    try:
        settings = settings or load_settings()
        policy = policy or RetryPolicy(max_attempts=settings.max_attempts)
        session = session or requests.Session()
        return 200, _run(body, settings, session, policy)
    except AnalyzeError as e:
        if e.status_code >= 500:
            logger.error("Analyze failed: %s (%s)", e.message, e.code)
        else:
            logger.warning("Analyze rejected: %s (%s)", e.message, e.code)
        return e.status_code, e.to_body()
    except Exception:
        logger.exception("Unhandled error in analyze")
        return 500, InternalError("Server error", "Server error").to_body()
    finally:
        if owns_session and session is not None:
            session.close()
