"""
Delivery of the shaped request to the text-generation service.

One call to `RetryingDeliveryClient.deliver` makes strictly sequential attempts:
- 200 with a JSON body is a success
- 429, 5xx and transport faults are retried with backoff (Retry-After wins)
- any other status is returned at once, without retrying
- the deadline token bounds every call and every wait

Per-attempt outcomes are kept as immutable records and returned with the
final result; only that final result leaves this module.
"""

import json
import logging
import random
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, NamedTuple, Optional, Tuple, Union

import requests

from core.errors import (
    AnalyzeError,
    DeadlineExceededError,
    UpstreamTerminalError,
    UpstreamTransientError,
)
from services.deadline import DeadlineController

logger = logging.getLogger("ctr-insights.delivery")

SUCCESS = "success"
RETRYABLE = "retryable"
TERMINAL = "terminal"
TIMED_OUT = "timed_out"

DETAIL_CHARS = 500
CHUNK_BYTES = 8192


class FailureKind(str, Enum):
    TRANSIENT = "upstream_transient"
    TERMINAL = "upstream_terminal"
    TIMED_OUT = "deadline_exceeded"


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 4
    base: float = 1.8
    unit_ms: float = 800.0
    jitter_ms: float = 300.0
    connect_timeout: float = 5.0
    # never start a wait that leaves less than this for the next attempt
    min_attempt_seconds: float = 2.0

    def backoff(self, attempt: int, rand: Callable[[float, float], float] = random.uniform) -> float:
        jitter = rand(0.0, self.jitter_ms) if self.jitter_ms > 0 else 0.0
        return (self.base ** (attempt - 1) * self.unit_ms + jitter) / 1000.0

    def wait_for(self, attempt: int, retry_after: Optional[float], rand=random.uniform) -> float:
        if retry_after is not None:
            return retry_after
        return self.backoff(attempt, rand)


@dataclass(frozen=True)
class AttemptRecord:
    number: int
    outcome: str
    status: Optional[int] = None
    error: Optional[str] = None
    elapsed: float = 0.0
    wait: Optional[float] = None

    def as_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        out["elapsed"] = round(self.elapsed, 3)
        if self.wait is not None:
            out["wait"] = round(self.wait, 3)
        return out


@dataclass(frozen=True)
class Success:
    body: Any
    attempts: Tuple[AttemptRecord, ...]


@dataclass(frozen=True)
class Failure:
    kind: FailureKind
    detail: Dict[str, Any]
    status: Optional[int]
    attempts: Tuple[AttemptRecord, ...]

    def to_error(self) -> AnalyzeError:
        if self.kind is FailureKind.TIMED_OUT:
            return DeadlineExceededError("Deadline exceeded before the upstream answered", self.detail)
        if self.kind is FailureKind.TRANSIENT:
            return UpstreamTransientError(
                "Upstream unavailable after retries",
                self.detail,
                status_code=429 if self.status == 429 else 504,
            )
        status = self.status if self.status and 400 <= self.status < 600 else 502
        return UpstreamTerminalError("Upstream rejected the request", self.detail, status_code=status)


DeliveryResult = Union[Success, Failure]


class _Outcome(NamedTuple):
    kind: str
    status: Optional[int] = None
    error: Optional[str] = None
    retry_after: Optional[float] = None
    body: Any = None


def parse_retry_after(headers: Optional[Mapping[str, Any]]) -> Optional[float]:
    """Seconds to wait from `retry-after-ms` or `Retry-After` (delta or HTTP date)."""
    if not headers:
        return None
    lowered = {str(k).lower(): v for k, v in headers.items()}

    ms = lowered.get("retry-after-ms")
    if ms is not None:
        try:
            return max(0.0, float(ms) / 1000.0)
        except (TypeError, ValueError):
            pass

    value = lowered.get("retry-after")
    if value is None:
        return None
    try:
        return max(0.0, float(value))
    except (TypeError, ValueError):
        pass
    try:
        when = parsedate_to_datetime(str(value))
    except (TypeError, ValueError, IndexError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


def _transport_outcome(e: requests.RequestException, token: DeadlineController) -> _Outcome:
    # an expired token wins over whatever the transport reported; requests
    # raises ConnectionError, not Timeout, when a read times out mid-body
    if token.expired:
        return _Outcome(TIMED_OUT, error=f"timed out: {e}")
    if isinstance(e, requests.Timeout):
        return _Outcome(RETRYABLE, error=f"transport timeout: {e}")
    if isinstance(e, (requests.ConnectionError, requests.exceptions.ChunkedEncodingError)):
        return _Outcome(RETRYABLE, error=f"transport error: {e}")
    return _Outcome(TERMINAL, error=f"request error: {e}")


def _read_body(resp: requests.Response, token: DeadlineController) -> bytes:
    chunks: List[bytes] = []
    for chunk in resp.iter_content(chunk_size=CHUNK_BYTES):
        if token.expired:
            break
        chunks.append(chunk)
    return b"".join(chunks)


def _cut_off(resp: requests.Response) -> None:
    """Stop a body read blocked in another thread (runs on the deadline timer)."""
    try:
        resp.raw.shutdown()
    except (ValueError, RuntimeError, OSError) as e:
        # the connection is already released or has no socket to shut
        logger.debug("Could not shut down upstream response: %s", e)


class RetryingDeliveryClient:
    def __init__(
        self,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        session: Optional[requests.Session] = None,
        policy: Optional[RetryPolicy] = None,
        rand: Callable[[float, float], float] = random.uniform,
    ) -> None:
        self.url = url
        self.headers = dict(headers or {})
        self.session = session or requests.Session()
        self.policy = policy or RetryPolicy()
        self._rand = rand

    def _attempt(self, request: Dict[str, Any], token: DeadlineController) -> _Outcome:
        try:
            resp = self.session.post(
                self.url,
                headers=self.headers,
                data=json.dumps(request, ensure_ascii=False).encode("utf-8"),
                timeout=token.call_timeout(self.policy.connect_timeout),
                stream=True,
            )
        except requests.RequestException as e:
            return _transport_outcome(e, token)

        # the read timeout is per socket read; a trickling body is cut off by the token
        release = token.on_expire(lambda: _cut_off(resp))
        try:
            content = _read_body(resp, token)
        except requests.RequestException as e:
            return _transport_outcome(e, token)
        finally:
            release()
            resp.close()

        status = resp.status_code
        if token.expired:
            return _Outcome(TIMED_OUT, status, "timed out while reading the response")

        if status == 200:
            try:
                return _Outcome(SUCCESS, status, body=json.loads(content))
            except ValueError:
                return _Outcome(TERMINAL, status, error="upstream returned a non-JSON body")

        excerpt = content.decode("utf-8", errors="replace")[:DETAIL_CHARS]
        if status == 429 or 500 <= status < 600:
            return _Outcome(RETRYABLE, status, excerpt, parse_retry_after(resp.headers))
        return _Outcome(TERMINAL, status, excerpt)

    def deliver(
        self,
        request: Dict[str, Any],
        token: DeadlineController,
        max_attempts: Optional[int] = None,
    ) -> DeliveryResult:
        max_attempts = self.policy.max_attempts if max_attempts is None else max(1, max_attempts)
        log: List[AttemptRecord] = []
        last = _Outcome(RETRYABLE)

        def failure(kind: FailureKind, **extra) -> Failure:
            detail: Dict[str, Any] = {
                "status": last.status,
                "error": last.error,
                "attempts": [a.as_dict() for a in log],
            }
            detail.update(extra)
            if kind is not FailureKind.TERMINAL:
                logger.error(
                    "Upstream delivery failed (%s) after %d attempt(s): %s %s",
                    kind.value, len(log), last.status, last.error,
                )
            return Failure(kind, detail, last.status, tuple(log))

        for number in range(1, max_attempts + 1):
            if token.expired:
                return failure(FailureKind.TIMED_OUT)

            started = token.elapsed()
            last = self._attempt(request, token)
            elapsed = token.elapsed() - started

            if last.kind == SUCCESS:
                log.append(AttemptRecord(number, SUCCESS, last.status, None, elapsed))
                logger.info("Upstream answered on attempt %d in %.2fs", number, elapsed)
                return Success(last.body, tuple(log))

            if last.kind == TIMED_OUT:
                log.append(AttemptRecord(number, TIMED_OUT, None, last.error, elapsed))
                return failure(FailureKind.TIMED_OUT)

            if last.kind == TERMINAL:
                log.append(AttemptRecord(number, TERMINAL, last.status, last.error, elapsed))
                logger.warning("Upstream returned %s on attempt %d; not retrying", last.status, number)
                return failure(FailureKind.TERMINAL)

            wait = None
            out_of_budget = False
            if number < max_attempts:
                wait = self.policy.wait_for(number, last.retry_after, self._rand)
                if wait + self.policy.min_attempt_seconds > token.remaining():
                    wait = None
                    out_of_budget = True
            log.append(AttemptRecord(number, RETRYABLE, last.status, last.error, elapsed, wait))

            if wait is None:
                if out_of_budget:
                    return failure(FailureKind.TRANSIENT, reason="no time left for another attempt")
                break

            logger.warning(
                "Upstream %s on attempt %d/%d; retrying in %.2fs",
                last.status or last.error, number, max_attempts, wait,
            )
            if token.wait(wait):
                return failure(FailureKind.TIMED_OUT)

        return failure(FailureKind.TRANSIENT, reason="attempts exhausted")
