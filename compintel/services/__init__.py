"""
Services layer for compintel.

Separates remote access (EdgeFunctionClient, Supabase tables/RPCs), run
bookkeeping (AnalysisRunTracker), provider key checks (ProviderKeyService)
and the orchestration workflow (CompetitorAnalysisService).
"""

from .models import (
    AnalysisData,
    AnalysisProgress,
    AnalysisRun,
    ApiKeyRequirements,
    CompetitorAnalysis,
    CostCheck,
    GateDecision,
    ProviderStatus,
)
from .competitor_analysis_service import CompetitorAnalysisService
from .provider_key_service import ProviderKeyService

__all__ = [
    "AnalysisData",
    "AnalysisProgress",
    "AnalysisRun",
    "ApiKeyRequirements",
    "CompetitorAnalysis",
    "CostCheck",
    "GateDecision",
    "ProviderStatus",
    "CompetitorAnalysisService",
    "ProviderKeyService",
]
