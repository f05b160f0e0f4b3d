"""
Preflight checks for starting a competitor analysis.

Each check returns a StepOutcome instead of raising, so the policy for a
step is data the caller can inspect:
- passed:  the check ran and allowed the run
- skipped: the check could not be performed (transport error); the run goes on
- denied:  the backend explicitly refused; outcome.error is what to raise
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from supabase import Client

from ..core.errors import BudgetExceeded, CompetitorAnalysisError, GateDenied
from .edge_functions import EdgeFunctionClient
from .models import CostCheck, GateDecision, parse_payload

logger = logging.getLogger(__name__)


class StepStatus:
    PASSED = "passed"
    SKIPPED = "skipped"
    DENIED = "denied"


@dataclass
class StepOutcome:
    """Result of one preflight step."""
    step: str
    status: str
    error: Optional[BaseException] = None
    detail: Dict[str, Any] = field(default_factory=dict)

    @property
    def passed(self) -> bool:
        return self.status == StepStatus.PASSED

    @property
    def skipped(self) -> bool:
        return self.status == StepStatus.SKIPPED

    @property
    def denied(self) -> bool:
        return self.status == StepStatus.DENIED

    def raise_if_denied(self) -> "StepOutcome":
        """Raise the denial error; log and return the outcome otherwise."""
        if self.denied:
            raise self.error
        if self.skipped:
            logger.warning(f"{self.step} failed (non-fatal), continuing: {self.error}")
        return self


def projected_cost(competitor_count: int, provider_count: int, cost_per_unit: float) -> float:
    """Estimated spend of a run: one unit per provider per competitor."""
    return competitor_count * provider_count * cost_per_unit


def check_cost(
    supabase: Client,
    user_id: str,
    competitors: List[str],
    providers: List[str],
    cost_per_unit: float,
) -> StepOutcome:
    """
    Ask the backend whether the projected cost of the run fits the user's budget.

    Uses the check_user_cost_allowed RPC.
    """
    cost = projected_cost(len(competitors or []), len(providers or []), cost_per_unit)
    detail = {"projected_cost": cost}

    try:
        result = supabase.rpc("check_user_cost_allowed", {
            "user_id_param": user_id,
            "projected_cost_param": cost,
        }).execute()
        data = result.data
        if isinstance(data, list):
            data = data[0] if data else {}
        check = parse_payload(CostCheck, data or {}, "check_user_cost_allowed")
    except Exception as e:
        return StepOutcome("cost_preflight", StepStatus.SKIPPED, error=e, detail=detail)

    detail.update(remaining=check.remaining, monthly_limit=check.monthly_limit)
    if not check.allowed:
        return StepOutcome(
            "cost_preflight",
            StepStatus.DENIED,
            error=BudgetExceeded(check.remaining, check.monthly_limit, projected_cost=cost),
            detail=detail,
        )
    return StepOutcome("cost_preflight", StepStatus.PASSED, detail=detail)


def check_gate(functions: EdgeFunctionClient, providers: List[str]) -> StepOutcome:
    """
    Run the server-side feature gate for the selected providers.

    Uses the competitor-analysis-gate edge function.
    """
    try:
        data = functions.invoke("competitor-analysis-gate", {
            "action": "check",
            "providersSelected": providers,
        })
        decision = parse_payload(GateDecision, data or {}, "competitor-analysis-gate")
    except CompetitorAnalysisError as e:
        return StepOutcome("gate_check", StepStatus.SKIPPED, error=e)

    detail = {"reasons": decision.reasons}
    if not decision.can_proceed:
        return StepOutcome("gate_check", StepStatus.DENIED, error=GateDenied(decision.reasons), detail=detail)
    return StepOutcome("gate_check", StepStatus.PASSED, detail=detail)
