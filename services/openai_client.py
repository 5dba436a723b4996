import os
from dataclasses import dataclass
from typing import Dict

from core.errors import ConfigurationError

DEFAULT_URL = "https://api.openai.com/v1/responses"
API_STYLES = ("responses", "chat")


def _env(name: str, default: str = "") -> str:
    return os.getenv(name, "").strip() or default


def _env_float(name: str, default: float, lo: float, hi: float) -> float:
    try:
        value = float(_env(name) or default)
    except ValueError:
        value = default
    return min(max(value, lo), hi)


def _env_int(name: str, default: int, lo: int, hi: int) -> int:
    return int(_env_float(name, default, lo, hi))


@dataclass(frozen=True)
class UpstreamSettings:
    api_key: str = ""
    url: str = DEFAULT_URL
    api_style: str = "responses"
    model: str = "gpt-4o-mini"
    max_output_tokens: int = 900
    temperature: float = 0.2
    deadline_seconds: float = 25.0
    max_attempts: int = 4
    slim_profile: str = "compact"
    report_language: str = "Persian"
    max_benchmarks: int = 300

    def require_api_key(self) -> str:
        if not self.api_key:
            raise ConfigurationError("OPENAI_API_KEY not set.", "OPENAI_API_KEY is not set in environment variables.")
        return self.api_key

    def headers(self) -> Dict[str, str]:
        return {
            "accept": "application/json",
            "content-type": "application/json",
            "authorization": f"Bearer {self.require_api_key()}",
        }


def load_settings() -> UpstreamSettings:
    """Read upstream settings from the environment (fresh on every call)."""
    style = _env("UPSTREAM_API_STYLE", "responses").lower()
    return UpstreamSettings(
        api_key=_env("OPENAI_API_KEY"),
        url=_env("UPSTREAM_URL", DEFAULT_URL),
        api_style=style if style in API_STYLES else "responses",
        model=_env("UPSTREAM_MODEL", "gpt-4o-mini"),
        max_output_tokens=_env_int("UPSTREAM_MAX_OUTPUT_TOKENS", 900, 64, 8192),
        temperature=_env_float("UPSTREAM_TEMPERATURE", 0.2, 0.0, 1.0),
        deadline_seconds=_env_float("DEADLINE_SECONDS", 25.0, 1.0, 45.0),
        max_attempts=_env_int("UPSTREAM_MAX_ATTEMPTS", 4, 1, 6),
        slim_profile=_env("SLIM_PROFILE", "compact").lower(),
        report_language=_env("REPORT_LANGUAGE", "Persian"),
        max_benchmarks=_env_int("MAX_BENCHMARKS", 300, 1, 10000),
    )
