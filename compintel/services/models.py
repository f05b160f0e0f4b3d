"""
Pydantic models for competitor analysis services.

These models give the remote payloads that enter the orchestrator a validated
shape:
- Saved analyses (CompetitorAnalysis) and their analysis_data blob (AnalysisData)
- Run bookkeeping rows (AnalysisRun, AnalysisProgress)
- Key manager, cost check and gate responses (ProviderStatus, CostCheck, GateDecision)

All models use Pydantic v2. Rows coming back from Supabase may carry more
columns than listed here; those are kept (extra="allow") so that updates and
exports round-trip the whole row.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..core.errors import PayloadValidationError

RUN_TYPE_COMPETITOR_ANALYSIS = "competitor_analysis"


class RunStatus:
    """Analysis run / progress status constants."""
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


# ============================================================================
# Saved analyses
# ============================================================================

class AnalysisData(BaseModel):
    """
    The analysis_data blob of a saved analysis.

    Either a bare provider pipeline payload (kept under ``raw``) or a combined
    view produced by the aggregation function, which keeps the provider
    payload under ``raw`` next to the aggregated result.
    """
    model_config = ConfigDict(extra="ignore")

    raw: Any = Field(default=None, description="Provider pipeline output, opaque")
    combined: Any = Field(None, description="Aggregated result across providers")
    provenance_map: Optional[Dict[str, Any]] = None
    field_scores: Optional[Dict[str, Any]] = None
    filled_from_master: Optional[Any] = None
    overall_confidence: Optional[float] = None

    @property
    def is_combined(self) -> bool:
        return self.combined is not None

    @classmethod
    def from_blob(cls, blob: Any) -> "AnalysisData":
        """Wrap a stored blob; anything without a combined view is treated as raw."""
        if isinstance(blob, dict) and "combined" in blob and "raw" in blob:
            return cls.model_validate(blob)
        return cls(raw=blob)

    def to_blob(self) -> Any:
        """Inverse of from_blob: raw payloads are stored unwrapped."""
        if not self.is_combined:
            return self.raw
        return self.model_dump()


class CompetitorAnalysis(BaseModel):
    """A persisted analysis result (one row of competitor_analyses)."""
    model_config = ConfigDict(extra="allow")

    id: str
    user_id: Optional[str] = None
    analysis_id: Optional[str] = Field(None, description="Alternate analysis identifier")
    session_id: Optional[str] = None
    name: str = ""
    description: Optional[str] = None
    status: Optional[str] = None
    analysis_data: Any = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def data(self) -> AnalysisData:
        return AnalysisData.from_blob(self.analysis_data)

    def matches_id(self, analysis_id: str) -> bool:
        return self.id == analysis_id or self.analysis_id == analysis_id

    def to_export_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


# ============================================================================
# Run bookkeeping
# ============================================================================

class AnalysisRun(BaseModel):
    """One execution attempt (a row of analysis_runs)."""
    model_config = ConfigDict(extra="allow")

    id: str
    session_id: Optional[str] = None
    user_id: Optional[str] = None
    run_type: str = RUN_TYPE_COMPETITOR_ANALYSIS
    input_data: Optional[Dict[str, Any]] = None
    output_data: Optional[Any] = None
    status: str = RunStatus.RUNNING
    started_at: Optional[datetime] = None
    execution_time_ms: Optional[int] = None
    error_message: Optional[str] = None


class AnalysisProgress(BaseModel):
    """Per-session progress of an in-flight run (competitor_analysis_progress)."""
    model_config = ConfigDict(extra="allow")

    session_id: str
    user_id: Optional[str] = None
    total_competitors: int = 0
    status: Optional[str] = None
    error_message: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


# ============================================================================
# Preflight responses
# ============================================================================

class ProviderStatus(BaseModel):
    """A provider key status entry from the unified key manager."""
    model_config = ConfigDict(extra="ignore")

    provider: str
    is_active: bool = False
    status: Optional[str] = None

    @property
    def is_available(self) -> bool:
        return self.is_active and self.status == "active"


class CostCheck(BaseModel):
    """Response of the check_user_cost_allowed RPC."""
    model_config = ConfigDict(extra="ignore")

    allowed: bool = True
    remaining: float = 0.0
    monthly_limit: float = 0.0

    @field_validator("remaining", "monthly_limit", mode="before")
    @classmethod
    def _none_is_zero(cls, v):
        return 0.0 if v is None else v


class GateDecision(BaseModel):
    """Response of the competitor-analysis-gate function."""
    model_config = ConfigDict(extra="ignore")

    can_proceed: bool = False
    reasons: List[str] = Field(default_factory=list)

    @field_validator("reasons", mode="before")
    @classmethod
    def _reasons_list(cls, v):
        if not isinstance(v, list):
            return []
        return [str(r) for r in v]


class ApiKeyRequirements(BaseModel):
    """Whether the user can run an analysis with their current keys."""
    has_required_keys: bool
    missing_keys: List[str] = Field(default_factory=list)


def parse_payload(model: type, payload: Any, source: str):
    """
    Validate a remote payload against a model at the orchestrator boundary.

    Raises:
        PayloadValidationError: If the payload does not fit the model
    """
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        raise PayloadValidationError(
            f"Unexpected payload from {source}: {e.error_count()} validation error(s)",
            details={"source": source, "errors": e.errors(include_url=False)},
        ) from e
