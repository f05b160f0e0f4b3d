"""
Exception hierarchy for competitor analysis operations.

Hard failures of the start-analysis workflow are raised as subclasses of
CompetitorAnalysisError with their message intact, so callers can show the
message directly.
"""

from typing import Any, Dict, List, Optional


class CompetitorAnalysisError(Exception):
    """Base class for compintel errors."""

    default_message = "Competitor analysis operation failed."

    def __init__(self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)


class AuthenticationRequired(CompetitorAnalysisError):
    """Raised when no valid user session is available."""

    default_message = "Authentication required. Please log in to start analysis."


class MissingApiKeys(CompetitorAnalysisError):
    """Raised when the user has no active provider API key."""

    def __init__(self, missing_keys: List[str]):
        self.missing_keys = list(missing_keys)
        super().__init__(
            f"Missing required API keys: {', '.join(self.missing_keys)}. Please add them in Settings.",
            details={"missing_keys": self.missing_keys},
        )


class BudgetExceeded(CompetitorAnalysisError):
    """Raised when the backend denies the projected cost of a run."""

    def __init__(self, remaining: float, monthly_limit: float, projected_cost: Optional[float] = None):
        self.remaining = remaining
        self.monthly_limit = monthly_limit
        self.projected_cost = projected_cost
        super().__init__(
            f"Projected cost exceeds remaining budget "
            f"(remaining: ${remaining:.2f} of ${monthly_limit:g}).",
            details={
                "remaining": remaining,
                "monthly_limit": monthly_limit,
                "projected_cost": projected_cost,
            },
        )


class GateDenied(CompetitorAnalysisError):
    """Raised when the feature gate explicitly refuses the run."""

    def __init__(self, reasons: List[str]):
        self.reasons = list(reasons)
        joined = ", ".join(self.reasons) if self.reasons else "Gate denied"
        super().__init__(f"Cannot start analysis: {joined}", details={"reasons": self.reasons})


class ProgressInitFailed(CompetitorAnalysisError):
    """Raised when the progress tracking row could not be created."""

    default_message = "Failed to create progress tracking entry"


class AnalysisFailed(CompetitorAnalysisError):
    """Raised when the remote analysis function fails after retries."""


class AnalysisNotFound(CompetitorAnalysisError):
    """Raised when an analysis id does not resolve to a saved analysis."""

    default_message = "Analysis not found"


class RemoteCallError(CompetitorAnalysisError):
    """Raised when an edge function or RPC call fails in transport or reports an error."""

    def __init__(self, message: str, function: Optional[str] = None, status_code: Optional[int] = None):
        self.function = function
        self.status_code = status_code
        super().__init__(message, details={"function": function, "status_code": status_code})


class CircuitOpenError(RemoteCallError):
    """Raised when a circuit breaker refuses a call during its cooldown."""

    def __init__(self, circuit: str, retry_after: float):
        self.circuit = circuit
        self.retry_after = retry_after
        super().__init__(
            f"Circuit '{circuit}' is open; retry in {retry_after:.1f}s",
            function=circuit,
        )


class PayloadValidationError(CompetitorAnalysisError):
    """Raised when a remote payload does not match the expected shape."""
