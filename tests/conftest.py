"""Shared fixtures for the analyze pipeline tests."""

import pytest

from services.delivery import RetryPolicy
from services.openai_client import UpstreamSettings


@pytest.fixture
def fast_policy():
    return RetryPolicy(max_attempts=4, unit_ms=1.0, jitter_ms=0.0, min_attempt_seconds=0.0)


@pytest.fixture
def settings():
    return UpstreamSettings(api_key="sk-test", url="https://upstream.test/v1/responses", deadline_seconds=5.0)


@pytest.fixture
def payload():
    return {
        "meta": {"datasetName": "site-q3.xlsx", "rows": "۱۲۰۰"},
        "benchmarks": [{"from": 1, "to": 3, "min": "۱۲٫۵", "max": "30%"}],
        "summary": {"byPos": [{"pos": 1, "avg": 27.456, "n": 40}]},
        "outliers": {
            "underperform": [{"url": "https://example.com/a", "ctr": "2.5%", "min": 12.5, "max": 30, "pos": 2}],
            "overperform": [],
            "borderline": [],
        },
        "settings": {"tolerance": 0.1, "colors": ["#ef4444", "#22c55e"]},
    }
