"""Data models for watermelon analysis.

``AnalysisOutput`` is the structured result every provider must produce. It is
validated with pydantic so a malformed provider response fails the attempt
instead of leaking into the queue or history.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

Ripeness = Literal["ripe", "unripe"]
Variety = Literal["red", "yellow", "mini", "inul"]
SkinQuality = Literal["good", "fair", "poor"]


class AnalysisOutput(BaseModel):
    """Ripeness and quality assessment for one watermelon photo."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    ripeness: Ripeness = Field(..., description="Whether the fruit is ready to harvest")
    confidence: float = Field(..., ge=0, le=100, description="Confidence 0-100")
    sweetness: int = Field(..., ge=1, le=10, description="Estimated sweetness 1-10")
    variety: Variety = Field(..., description="Watermelon variety")
    skin_quality: SkinQuality = Field(..., alias="skinQuality", description="Rind condition")
    reasoning: str = Field(default="", description="Explanation of the assessment")

    def to_dict(self) -> dict:
        return self.model_dump()


@dataclass
class PerformanceRecord:
    """Telemetry for one provider attempt."""

    provider: str
    elapsed_ms: int
    success: bool
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    error_message: Optional[str] = None
    recorded_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class ProviderResponse:
    """What a provider client hands back on success."""

    output: AnalysisOutput
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None


@dataclass
class OrchestrationResult:
    """Outcome of a successful orchestration call."""

    output: AnalysisOutput
    provider: str
    elapsed_ms: int
    attempts: int
