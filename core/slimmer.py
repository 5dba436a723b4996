from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from core.numbers import normalize_and_round, to_count

OUTLIER_CATEGORIES = ("underperform", "overperform", "borderline")
ELLIPSIS = "…"
DEFAULT_TOLERANCE = 0.10
MAX_TOLERANCE = 0.5


@dataclass(frozen=True)
class SlimLimits:
    outliers_per_category: int = 10
    text_chars: int = 120
    by_pos: int = 20
    colors: int = 5
    # Output is the same either way; truncating first skips normalizing rows we drop.
    truncate_first: bool = True

    @classmethod
    def for_profile(cls, name: Optional[str]) -> "SlimLimits":
        return PROFILES.get((name or "").strip().lower(), PROFILES["compact"])


PROFILES: Dict[str, SlimLimits] = {
    "compact": SlimLimits(),
    "standard": SlimLimits(outliers_per_category=25, text_chars=160, by_pos=30),
    "extended": SlimLimits(outliers_per_category=50, text_chars=200, by_pos=50),
}


def truncate_text(value: Any, cap: int) -> Optional[str]:
    if value is None:
        return None
    text = value if isinstance(value, str) else str(value)
    if len(text) <= cap:
        return text
    if cap <= 0:
        return ""
    return text[: cap - 1] + ELLIPSIS


def _rows(value: Any) -> List[Mapping[str, Any]]:
    if not isinstance(value, (list, tuple)):
        return []
    return [r for r in value if isinstance(r, Mapping)]


def _section(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def _bounded(rows: List[Mapping[str, Any]], cap: int, shape, limits: SlimLimits) -> List[Dict[str, Any]]:
    if limits.truncate_first:
        return [shape(r) for r in rows[:cap]]
    return [shape(r) for r in rows][:cap]


def slim_payload(payload: Mapping[str, Any], limits: Optional[SlimLimits] = None) -> Dict[str, Any]:
    """
    Build a bounded, normalized copy of an analysis payload.

    The result is allocated field by field, so nothing in `payload` is mutated
    or shared with the output. Values that fail to parse become None instead of
    raising; rows that are not objects are skipped.
    """
    limits = limits or SlimLimits()
    payload = _section(payload)

    def outlier(row: Mapping[str, Any]) -> Dict[str, Any]:
        return {
            "url": truncate_text(row.get("url"), limits.text_chars),
            "ctr": normalize_and_round(row.get("ctr")),
            "min": normalize_and_round(row.get("min")),
            "max": normalize_and_round(row.get("max")),
            "pos": normalize_and_round(row.get("pos")),
        }

    def by_pos(row: Mapping[str, Any]) -> Dict[str, Any]:
        return {
            "pos": normalize_and_round(row.get("pos")),
            "avg": normalize_and_round(row.get("avg")),
            "n": to_count(row.get("n")),
        }

    def benchmark(row: Mapping[str, Any]) -> Dict[str, Any]:
        return {k: normalize_and_round(row.get(k)) for k in ("from", "to", "min", "max")}

    meta = _section(payload.get("meta"))
    summary = _section(payload.get("summary"))
    outliers = _section(payload.get("outliers"))
    settings = _section(payload.get("settings"))

    tolerance = normalize_and_round(settings.get("tolerance"))
    if tolerance is None:
        tolerance = DEFAULT_TOLERANCE
    tolerance = min(max(tolerance, 0), MAX_TOLERANCE)

    colors = settings.get("colors")
    colors = [c for c in colors if isinstance(c, str)] if isinstance(colors, (list, tuple)) else []

    return {
        "meta": {
            "datasetName": truncate_text(meta.get("datasetName"), limits.text_chars),
            "rows": to_count(meta.get("rows")),
        },
        "benchmarks": [benchmark(r) for r in _rows(payload.get("benchmarks"))],
        "summary": {
            "byPos": _bounded(_rows(summary.get("byPos")), limits.by_pos, by_pos, limits),
        },
        "outliers": {
            name: _bounded(_rows(outliers.get(name)), limits.outliers_per_category, outlier, limits)
            for name in OUTLIER_CATEGORIES
        },
        "settings": {
            "tolerance": tolerance,
            "colors": colors[: limits.colors],
        },
    }
