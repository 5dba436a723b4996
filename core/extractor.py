from typing import Any, Callable, Optional, Tuple


def _part_text(part: Any) -> str:
    if isinstance(part, str):
        return part
    if isinstance(part, dict) and isinstance(part.get("text"), str):
        return part["text"]
    return ""


def _join_parts(parts: Any) -> Optional[str]:
    if not isinstance(parts, list):
        return None
    text = "".join(_part_text(p) for p in parts)
    return text or None


def _output_text(body: dict) -> Optional[str]:
    text = body.get("output_text")
    return text if isinstance(text, str) and text else None


def _output_list(body: dict) -> Optional[str]:
    output = body.get("output")
    if not isinstance(output, list) or not output or not isinstance(output[0], dict):
        return None
    return _join_parts(output[0].get("content"))


def _chat_choices(body: dict) -> Optional[str]:
    choices = body.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return None
    message = choices[0].get("message")
    if not isinstance(message, dict):
        return None
    content = message.get("content")
    if isinstance(content, str):
        return content or None
    return _join_parts(content)


# Tried in order; the first one returning text wins.
STRATEGIES: Tuple[Callable[[dict], Optional[str]], ...] = (
    _output_text,
    _output_list,
    _chat_choices,
)


def extract_text(body: Any) -> str:
    """Pull generated text out of an upstream body. Returns "" when there is none."""
    if not isinstance(body, dict):
        return ""
    for strategy in STRATEGIES:
        text = strategy(body)
        if text:
            return text
    return ""
