# server/models.py
from __future__ import annotations

from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field

# Numbers may arrive as JSON numbers or as locale text ("۱۲٫۵", "3,200%").
# They pass through untouched: lax float coercion would turn true into 1.0 and
# round large ints, and core.numbers decides what counts as a number.
Numberish = Any


class _Model(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class Meta(_Model):
    dataset_name: Optional[str] = Field(default=None, alias="datasetName")
    rows: Numberish = None


class Benchmark(_Model):
    from_: Numberish = Field(default=None, alias="from")
    to: Numberish = None
    min: Numberish = None
    max: Numberish = None


class PositionSummary(_Model):
    pos: Any
    avg: Numberish = None
    n: Numberish = None


class Summary(_Model):
    by_pos: List[PositionSummary] = Field(default_factory=list, alias="byPos")


class OutlierRow(_Model):
    url: str
    ctr: Numberish = None
    min: Numberish = None
    max: Numberish = None
    pos: Numberish = None


class Outliers(_Model):
    underperform: List[OutlierRow] = Field(default_factory=list)
    overperform: List[OutlierRow] = Field(default_factory=list)
    borderline: List[OutlierRow] = Field(default_factory=list)


class ReportSettings(_Model):
    tolerance: Numberish = None
    colors: List[str] = Field(default_factory=list)


class AnalysisPayload(_Model):
    meta: Meta = Field(default_factory=Meta)
    benchmarks: List[Benchmark] = Field(default_factory=list)
    summary: Summary = Field(default_factory=Summary)
    outliers: Outliers = Field(default_factory=Outliers)
    settings: ReportSettings = Field(default_factory=ReportSettings)


class AnalyzeResponse(BaseModel):
    summaryText: str
    topActions: List[str] = Field(default_factory=list)
