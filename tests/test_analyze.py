"""
Tests for the analyze pipeline, end to end against a fake upstream session.
"""

import json
import time

import pytest
import requests

from core.errors import InvalidInputError
from server.analyze import analyze_payload, parse_body
from services.openai_client import UpstreamSettings
from tests.fakes import FakeResponse, FakeSession
from tests.loopback import direct_session, slow_upstream


def _ok(text="Five insights..."):
    return FakeResponse(200, {"output": [{"content": [{"type": "output_text", "text": text}]}]})


def _sent_data(session):
    # the user content is a two-line header followed by the slim JSON
    return json.loads(session.calls[0]["json"]["input"].split("\n", 2)[2])


class TestParseBody:
    def test_bytes_and_double_encoded_string(self):
        assert parse_body(b'{"meta": {}}') == {"meta": {}}
        assert parse_body(json.dumps(json.dumps({"meta": {}}))) == {"meta": {}}
        assert parse_body({"meta": {}}) == {"meta": {}}

    @pytest.mark.parametrize("body", [b"", b"{not json", b"\xff\xfe", b"[1, 2]", "42", None])
    def test_rejects_unparsable(self, body):
        with pytest.raises(InvalidInputError):
            parse_body(body)


class TestAnalyzePayload:
    def test_success(self, payload, settings, fast_policy):
        session = FakeSession(_ok("Summary text"))

        status, body = analyze_payload(json.dumps(payload), settings, session, fast_policy)

        assert status == 200
        assert body == {"summaryText": "Summary text", "topActions": []}
        sent = session.calls[0]
        assert sent["url"] == settings.url
        assert sent["headers"]["authorization"] == "Bearer sk-test"
        assert '"rows":1200' in sent["json"]["input"]

    def test_caller_payload_not_mutated(self, payload, settings, fast_policy):
        before = json.dumps(payload, sort_keys=True)

        analyze_payload(payload, settings, FakeSession(_ok()), fast_policy)

        assert json.dumps(payload, sort_keys=True) == before

    def test_outliers_are_capped_before_sending(self, payload, settings, fast_policy):
        payload["outliers"]["overperform"] = [{"url": f"https://e.com/{i}", "ctr": i} for i in range(15)]
        session = FakeSession(_ok())

        analyze_payload(payload, settings, session, fast_policy)

        sent = session.calls[0]["json"]["input"]
        data = json.loads(sent.split("\n", 2)[2])
        assert [r["url"] for r in data["outliers"]["overperform"]] == [f"https://e.com/{i}" for i in range(10)]

    def test_invalid_json(self, settings, fast_policy):
        status, body = analyze_payload(b"{oops", settings, FakeSession(_ok()), fast_policy)
        assert status == 400
        assert body["error"] == "invalid_input"

    def test_missing_required_field(self, settings, fast_policy):
        bad = {"outliers": {"underperform": [{"ctr": 1.2}]}}

        status, body = analyze_payload(bad, settings, FakeSession(_ok()), fast_policy)

        assert status == 400
        assert body["error"] == "invalid_input"
        assert any("url" in err["loc"] for err in body["detail"])

    def test_too_many_benchmarks(self, settings, fast_policy):
        payload = {"benchmarks": [{"from": 1, "to": 2, "min": 1, "max": 2}] * 301}
        session = FakeSession(_ok())

        status, body = analyze_payload(payload, settings, session, fast_policy)

        assert status == 413
        assert body["error"] == "payload_too_large"
        assert session.calls == []

    def test_missing_api_key(self, payload, fast_policy):
        session = FakeSession(_ok())

        status, body = analyze_payload(payload, UpstreamSettings(api_key=""), session, fast_policy)

        assert status == 500
        assert body["error"] == "configuration_error"
        assert session.calls == []

    def test_rate_limited_then_success(self, payload, settings, fast_policy):
        session = FakeSession(FakeResponse(429), FakeResponse(429), _ok("third time"))

        status, body = analyze_payload(payload, settings, session, fast_policy)

        assert status == 200
        assert body["summaryText"] == "third time"
        assert len(session.calls) == 3

    def test_upstream_terminal_passthrough(self, payload, settings, fast_policy):
        session = FakeSession(FakeResponse(401, {"error": {"message": "bad key"}}))

        status, body = analyze_payload(payload, settings, session, fast_policy)

        assert status == 401
        assert body["error"] == "upstream_error"
        assert body["detail"]["status"] == 401
        assert len(body["detail"]["attempts"]) == 1

    def test_upstream_transient_exhausted(self, payload, settings, fast_policy):
        session = FakeSession(requests.ConnectionError("dns failure"))

        status, body = analyze_payload(payload, settings, session, fast_policy)

        assert status == 504
        assert body["error"] == "upstream_unavailable"
        assert "dns failure" in body["detail"]["error"]
        assert len(session.calls) == fast_policy.max_attempts

    def test_deadline_exceeded(self, payload, fast_policy):
        # upstream takes 5 s to answer against a 1 s budget
        with slow_upstream(header_delay=5) as url:
            settings = UpstreamSettings(api_key="sk-test", url=url, deadline_seconds=1.0)
            started = time.monotonic()
            status, body = analyze_payload(payload, settings, direct_session(), fast_policy)
            took = time.monotonic() - started

        assert status == 504
        assert body["error"] == "deadline_exceeded"
        assert took < 2

    def test_stalled_body_is_deadline_exceeded(self, payload, fast_policy):
        with slow_upstream(first_bytes=3, pause=5) as url:
            settings = UpstreamSettings(api_key="sk-test", url=url, deadline_seconds=1.0)
            status, body = analyze_payload(payload, settings, direct_session(), fast_policy)

        assert status == 504
        assert body["error"] == "deadline_exceeded"
        assert body["detail"]["error"].startswith("timed out")

    def test_booleans_are_not_numbers(self, settings, fast_policy):
        payload = {
            "meta": {"rows": True},
            "outliers": {"underperform": [{"url": "u", "ctr": True, "min": False, "max": 2, "pos": True}]},
        }
        session = FakeSession(_ok())

        status, _ = analyze_payload(payload, settings, session, fast_policy)

        assert status == 200
        data = _sent_data(session)
        assert data["meta"]["rows"] is None
        row = data["outliers"]["underperform"][0]
        assert row["ctr"] is None
        assert row["min"] is None
        assert row["pos"] is None
        assert row["max"] == 2

    def test_large_row_count_keeps_precision(self, settings, fast_policy):
        session = FakeSession(_ok())

        analyze_payload({"meta": {"rows": 2 ** 60 + 1}}, settings, session, fast_policy)

        assert _sent_data(session)["meta"]["rows"] == 2 ** 60 + 1

    def test_empty_upstream_text(self, payload, settings, fast_policy):
        session = FakeSession(FakeResponse(200, {"id": "resp_1", "output": []}))

        status, body = analyze_payload(payload, settings, session, fast_policy)

        assert status == 502
        assert body["error"] == "empty_response"

    def test_unexpected_exception_is_internal_error(self, payload, settings, fast_policy):
        class Broken:
            def post(self, *args, **kwargs):
                raise RuntimeError("kaboom")

        status, body = analyze_payload(payload, settings, Broken(), fast_policy)

        assert status == 500
        assert body == {"error": "internal_error", "detail": "Server error"}
