import json
from typing import Any, Dict

from services.openai_client import UpstreamSettings

SYSTEM = (
    "You are an SEO analyst. Using click-through rate (CTR) and Google position data, "
    "write a short, actionable analysis in a clear and direct tone. Include: "
    "5 short key insights; 5 prioritized actions (1 to 5); 3 A/B test ideas to improve CTR. "
    "If data is incomplete, do not speculate; say that more data is needed. "
    "Use approximate percentages (%) to make the point. "
    "Answer entirely in {language}."
)


def build_user_content(slim: Dict[str, Any]) -> str:
    meta = slim.get("meta") or {}
    header = f"Dataset: {meta.get('datasetName') or 'n/a'} | Rows: {meta.get('rows') or 0}"
    body = json.dumps(slim, ensure_ascii=False, separators=(",", ":"))
    return f"{header}\nData (JSON):\n{body}"


def build_upstream_request(slim: Dict[str, Any], settings: UpstreamSettings) -> Dict[str, Any]:
    instructions = SYSTEM.format(language=settings.report_language)
    content = build_user_content(slim)
    if settings.api_style == "chat":
        return {
            "model": settings.model,
            "temperature": settings.temperature,
            "messages": [
                {"role": "system", "content": instructions},
                {"role": "user", "content": content},
            ],
            "max_tokens": settings.max_output_tokens,
        }
    return {
        "model": settings.model,
        "temperature": settings.temperature,
        "instructions": instructions,
        "input": content,
        "max_output_tokens": settings.max_output_tokens,
    }
