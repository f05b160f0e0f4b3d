"""
CompetitorAnalysisService - start, persist and query competitor analyses.

This service handles:
- The start-analysis workflow: auth check, API key requirements, provider
  selection, cost preflight, feature gate, progress and run-log bookkeeping,
  and the rate-limited, circuit-broken, retried call to the
  competitor-analysis edge function
- Saved analysis CRUD with upsert-by-session semantics
- Post-save enrichment and aggregation (run as tracked background tasks)
- A process-local result cache with explicit invalidation

Usage:
    from compintel.services.competitor_analysis_service import CompetitorAnalysisService

    service = CompetitorAnalysisService()
    result = service.start_analysis("session-1", ["Acme Corp"], ["openai"])
    analyses = service.get_analyses()
"""

import itertools
import json
import logging
import threading
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

import logfire
from postgrest.exceptions import APIError
from supabase import Client

from ..core.config import Config
from ..core.database import get_current_user_id, get_supabase_client
from ..core.errors import (
    AnalysisFailed,
    AnalysisNotFound,
    AuthenticationRequired,
    CompetitorAnalysisError,
    MissingApiKeys,
)
from .background import BackgroundTask, BackgroundTaskRunner, InlineTaskRunner
from .cache import AnalysisCache, InMemoryAnalysisCache, analysis_key, session_key
from .edge_functions import EdgeFunctionClient
from .models import (
    AnalysisData,
    AnalysisProgress,
    ApiKeyRequirements,
    CompetitorAnalysis,
    RunStatus,
    parse_payload,
)
from .preflight import check_cost, check_gate
from .provider_key_service import ProviderKeyService
from .resilience import CircuitBreaker, RateLimiter, retry_with_jitter
from .run_tracking import AnalysisRunTracker

logger = logging.getLogger(__name__)

ANALYSIS_OPERATION_KEY = "edge:competitor-analysis"
ANALYSES_TABLE = "competitor_analyses"
COMBINED_TABLE = "analysis_combined"

PERMISSION_DENIED_CODE = "42501"


def _is_permission_denied(error: Exception) -> bool:
    code = getattr(error, "code", None)
    return code == PERMISSION_DENIED_CODE or "permission denied" in str(error).lower()


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


class CompetitorAnalysisService:
    """Orchestrates competitor analysis runs and saved analysis CRUD."""

    def __init__(
        self,
        supabase: Optional[Client] = None,
        functions: Optional[EdgeFunctionClient] = None,
        rate_limiter: Optional[RateLimiter] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        cache: Optional[AnalysisCache] = None,
        task_runner: Optional[Any] = None,
        provider_keys: Optional[ProviderKeyService] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize CompetitorAnalysisService.

        Args:
            supabase: Optional Supabase client. If not provided, uses the shared one.
            functions: Edge function client (defaults to one on the same Supabase client)
            rate_limiter: Limiter for the competitor-analysis function
            circuit_breaker: Breaker for the competitor-analysis function
            cache: Result cache (defaults to an unbounded in-memory cache)
            task_runner: Runner for post-save enrichment/aggregation
                (BackgroundTaskRunner or InlineTaskRunner)
            provider_keys: Provider key service (defaults to one on the same clients)
            sleep: Sleep used between retries (injectable for tests)
        """
        self.supabase = supabase or get_supabase_client()
        self.functions = functions or EdgeFunctionClient(self.supabase)
        self.rate_limiter = rate_limiter or RateLimiter()
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            ANALYSIS_OPERATION_KEY,
            failure_threshold=Config.CIRCUIT_FAILURE_THRESHOLD,
            cooldown=Config.CIRCUIT_COOLDOWN_SECONDS,
        )
        self.cache = cache if cache is not None else InMemoryAnalysisCache()
        self.task_runner = task_runner or BackgroundTaskRunner(max_workers=Config.BACKGROUND_WORKERS)
        self.provider_keys = provider_keys or ProviderKeyService(self.supabase, self.functions)
        self.runs = AnalysisRunTracker(self.supabase, self.functions)
        self.cost_per_unit = Config.COST_PER_PROVIDER_PER_COMPETITOR
        self._sleep = sleep

        self._subscriptions: Dict[str, tuple] = {}
        self._subscription_ids = itertools.count(1)
        self._subscription_lock = threading.Lock()

    # =========================================================================
    # Reads
    # =========================================================================

    def _fetch_user_analyses(self, user_id: str) -> List[Dict[str, Any]]:
        result = self.supabase.rpc(
            "get_user_competitor_analyses", {"user_id_param": user_id}
        ).execute()
        return result.data or []

    def get_analyses(self) -> List[CompetitorAnalysis]:
        """
        Get all competitor analyses for the authenticated user.

        Returns an empty list instead of raising when there is no session or
        the backend denies access, so callers never fail on auth edge cases.
        Transport errors are retried twice with jittered backoff.
        """
        user_id = get_current_user_id(self.supabase)
        if not user_id:
            logger.warning("User not authenticated, cannot fetch analyses")
            return []

        try:
            rows = retry_with_jitter(
                lambda: self._fetch_user_analyses(user_id),
                retries=2,
                base_delay=0.15,
                max_delay=1.2,
                no_retry_on=(APIError,),
                sleep=self._sleep,
            )
        except Exception as e:
            if _is_permission_denied(e):
                logger.warning(f"Permission denied accessing competitor analyses: {e}")
                return []
            logger.error(f"Error fetching analyses: {e}")
            raise

        logger.info(f"Fetched {len(rows)} analyses for user {user_id}")
        return [parse_payload(CompetitorAnalysis, row, "get_user_competitor_analyses") for row in rows]

    def get_analysis_by_id(self, analysis_id: str) -> Optional[CompetitorAnalysis]:
        """
        Get one analysis by its id or alternate analysis_id.

        Served from the cache when possible. Otherwise the user's analyses are
        re-fetched and searched, the combined aggregation (if any) is merged
        into analysis_data, and the result is cached.

        Returns:
            The analysis, or None if not found or on any error
        """
        key = analysis_key(analysis_id)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        try:
            user_id = get_current_user_id(self.supabase)
            if not user_id:
                logger.warning("User not authenticated, cannot fetch analysis")
                return None

            rows = self._fetch_user_analyses(user_id)
            row = next(
                (r for r in rows if r.get("id") == analysis_id or r.get("analysis_id") == analysis_id),
                None,
            )
            if not row:
                return None

            analysis = parse_payload(CompetitorAnalysis, row, "get_user_competitor_analyses")
            self._merge_combined_view(analysis)

            self.cache.set(key, analysis)
            return analysis

        except Exception as e:
            logger.error(f"Error fetching analysis {analysis_id}: {e}")
            return None

    def _merge_combined_view(self, analysis: CompetitorAnalysis) -> None:
        """Fold the aggregated result from analysis_combined into analysis_data, if present."""
        try:
            result = self.supabase.table(COMBINED_TABLE).select(
                "aggregated_result, provenance_map, field_scores, filled_from_master, overall_confidence"
            ).eq("analysis_id", analysis.id).limit(1).execute()
            combined = result.data[0] if result.data else None
            if not combined or not combined.get("aggregated_result"):
                return

            analysis.analysis_data = AnalysisData(
                raw=analysis.analysis_data,
                combined=combined["aggregated_result"],
                provenance_map=combined.get("provenance_map"),
                field_scores=combined.get("field_scores"),
                filled_from_master=combined.get("filled_from_master"),
                overall_confidence=combined.get("overall_confidence"),
            ).to_blob()
        except Exception as e:
            logger.warning(f"Combined analysis not available for {analysis.id} (non-fatal): {e}")

    def get_progress(self, session_id: str) -> Optional[AnalysisProgress]:
        """Latest progress row for a session, or None (also when unauthenticated)."""
        user_id = get_current_user_id(self.supabase)
        if not user_id:
            return None
        return self.runs.get_progress(session_id, user_id)

    # =========================================================================
    # Start analysis
    # =========================================================================

    def start_analysis(
        self,
        session_id: str,
        competitors: List[str],
        providers_selected: Optional[List[str]] = None,
        models: Optional[Dict[str, str]] = None,
    ) -> Any:
        """
        Start a competitor analysis run.

        Args:
            session_id: Client-generated id grouping progress, run log and result
            competitors: Competitor names to analyse
            providers_selected: Providers to use; all available ones if empty
            models: Optional provider -> model overrides

        Returns:
            The raw payload returned by the competitor-analysis function

        Raises:
            AuthenticationRequired: No valid session (nothing is written)
            MissingApiKeys: The user has no active provider key
            BudgetExceeded: The backend refused the projected cost
            GateDenied: The feature gate refused the run
            ProgressInitFailed: The progress row could not be created
            AnalysisFailed: The analysis function failed after retries
        """
        started = time.monotonic()
        self.cache.invalidate(session_key(session_id))

        user_id = get_current_user_id(self.supabase)
        if not user_id:
            raise AuthenticationRequired()

        with logfire.span(
            "start competitor analysis {session_id}",
            session_id=session_id,
            competitor_count=len(competitors),
        ):
            try:
                return self._run_analysis(user_id, session_id, competitors, providers_selected, models, started)
            except Exception as e:
                logger.error(f"Error starting analysis for session {session_id}: {e}")
                self._record_failure(session_id, e, started)
                raise

    def _run_analysis(
        self,
        user_id: str,
        session_id: str,
        competitors: List[str],
        providers_selected: Optional[List[str]],
        models: Optional[Dict[str, str]],
        started: float,
    ) -> Any:
        requirements = self.check_api_key_requirements()
        if not requirements.has_required_keys:
            raise MissingApiKeys(requirements.missing_keys)

        providers = list(providers_selected) if providers_selected else self.get_available_providers()

        check_cost(self.supabase, user_id, competitors, providers, self.cost_per_unit).raise_if_denied()
        check_gate(self.functions, providers).raise_if_denied()

        self.runs.create_progress(session_id, user_id, competitors, providers)
        run_id = self.runs.create_run(user_id, session_id, {
            "competitors": competitors,
            "providersSelected": providers,
        })

        logger.info(f"Starting competitor analysis with session_id={session_id}, providers={providers}")
        data = self._invoke_analysis(session_id, competitors, providers, models)

        if run_id:
            self.runs.complete_run(run_id, data, _elapsed_ms(started))

        logger.info(f"Analysis started successfully for session {session_id}")

        # Persist right away so the result is queryable even if the caller never saves
        try:
            payload = data.get("results") if isinstance(data, dict) and data.get("results") is not None else data
            self.save_analysis(session_id, {
                "analysis_data": payload,
                "name": competitors[0] if competitors else None,
            })
        except Exception as e:
            logger.warning(f"save_analysis after start failed (non-fatal): {e}")

        return data

    def _invoke_analysis(
        self,
        session_id: str,
        competitors: List[str],
        providers: List[str],
        models: Optional[Dict[str, str]],
    ) -> Any:
        """Call the competitor-analysis function behind the rate limiter, breaker and retries."""
        self.rate_limiter.acquire(
            ANALYSIS_OPERATION_KEY,
            limit=Config.ANALYSIS_RATE_LIMIT,
            interval=Config.ANALYSIS_RATE_WINDOW_SECONDS,
        )

        body = {
            "sessionId": session_id,
            "competitors": competitors,
            "action": "start",
            "providersSelected": providers,
            "models": models,
        }

        try:
            return self.circuit_breaker.call(
                retry_with_jitter,
                lambda: self.functions.invoke("competitor-analysis", body),
                retries=2,
                base_delay=0.2,
                max_delay=1.5,
                sleep=self._sleep,
            )
        except CompetitorAnalysisError as e:
            raise AnalysisFailed(f"Analysis failed: {e.message}", details=e.details) from e
        except Exception as e:
            raise AnalysisFailed(f"Analysis failed: {e}") from e

    def _record_failure(self, session_id: str, error: Exception, started: float) -> None:
        """Best-effort: mark the session's progress row and latest run as failed."""
        message = str(error) or "Unknown error"
        self.runs.mark_progress_failed(session_id, message)
        self.runs.fail_latest_run(session_id, message, _elapsed_ms(started))

    # =========================================================================
    # Writes
    # =========================================================================

    def _require_user(self) -> str:
        user_id = get_current_user_id(self.supabase)
        if not user_id:
            raise AuthenticationRequired("User not authenticated")
        return user_id

    def save_analysis(self, session_id: str, analysis: Dict[str, Any]) -> CompetitorAnalysis:
        """
        Save the analysis for a session, updating the session's existing row if any.

        After saving, enrichment and the legacy aggregation are dispatched as
        one background task; their failures never fail the save.

        Args:
            session_id: Session the analysis belongs to
            analysis: Fields to save (analysis_data, name, description, analysis_id)

        Returns:
            The saved analysis row
        """
        user_id = self._require_user()

        existing = next((a for a in self.get_analyses() if a.session_id == session_id), None)
        now = datetime.now(timezone.utc).isoformat()

        if existing:
            values = {
                "name": analysis.get("name") or "Saved Analysis",
                "status": RunStatus.COMPLETED,
                "completed_at": now,
            }
            for field in ("analysis_data", "description"):
                if analysis.get(field) is not None:
                    values[field] = analysis[field]

            result = self.supabase.table(ANALYSES_TABLE).update(values).eq(
                "id", existing.id
            ).eq("user_id", user_id).execute()
            logger.info(f"Updated analysis {existing.id} for session {session_id}")
        else:
            values = {
                "name": analysis.get("name") or "New Analysis",
                "analysis_data": analysis.get("analysis_data") or {},
                "session_id": session_id,
                "status": RunStatus.COMPLETED,
                "completed_at": now,
                "user_id": user_id,
                "analysis_id": analysis.get("analysis_id") or str(uuid4()),
            }
            if analysis.get("description") is not None:
                values["description"] = analysis["description"]

            result = self.supabase.table(ANALYSES_TABLE).insert(values).execute()
            logger.info(f"Created analysis for session {session_id}")

        if not result.data:
            raise CompetitorAnalysisError(f"Failed to save analysis for session {session_id}")
        saved = parse_payload(CompetitorAnalysis, result.data[0], ANALYSES_TABLE)

        self.cache.invalidate(session_key(session_id), analysis_key(saved.id))
        if saved.analysis_id:
            self.cache.invalidate(analysis_key(saved.analysis_id))

        self.task_runner.submit(f"post-process:{saved.id}", self._post_process, saved.id)
        return saved

    def _post_process(self, analysis_id: str) -> Any:
        """Enrich with the master profile, then always run the legacy aggregator."""
        try:
            self.functions.invoke("enrich-analysis-with-master-profile", {"analysisId": analysis_id})
        except Exception as e:
            logger.warning(f"enrich-analysis-with-master-profile failed for {analysis_id} (non-fatal): {e}")

        # Runs even after a successful enrichment: consumers read the combined view it produces
        return self.functions.invoke("aggregate-analysis", {"analysis_id": analysis_id})

    def update_analysis(self, analysis_id: str, updates: Dict[str, Any]) -> CompetitorAnalysis:
        """
        Update fields of one of the user's analyses.

        Raises:
            AuthenticationRequired: No valid session
            AnalysisNotFound: No row with that id belongs to the user
        """
        user_id = self._require_user()
        self.cache.invalidate(analysis_key(analysis_id))

        result = self.supabase.table(ANALYSES_TABLE).update(dict(updates)).eq(
            "id", analysis_id
        ).eq("user_id", user_id).execute()

        if not result.data:
            raise AnalysisNotFound(f"Analysis {analysis_id} not found")
        updated = parse_payload(CompetitorAnalysis, result.data[0], ANALYSES_TABLE)
        if updated.analysis_id:
            self.cache.invalidate(analysis_key(updated.analysis_id))
        return updated

    def delete_analysis(self, analysis_id: str) -> None:
        """Delete one of the user's analyses."""
        user_id = self._require_user()
        cached = self.cache.get(analysis_key(analysis_id))
        self.cache.invalidate(analysis_key(analysis_id))

        result = self.supabase.table(ANALYSES_TABLE).delete().eq(
            "id", analysis_id
        ).eq("user_id", user_id).execute()

        # The same analysis may also be cached under its alternate analysis_id
        alternate_ids = {row.get("analysis_id") for row in result.data or []}
        if cached is not None:
            alternate_ids.add(cached.analysis_id)
        self.cache.invalidate(*(analysis_key(a) for a in alternate_ids if a))
        logger.info(f"Deleted analysis {analysis_id}")

    def export_analysis(self, analysis_id: str) -> bytes:
        """
        Export an analysis as a JSON document with an exportedAt timestamp.

        Raises:
            AnalysisNotFound: If the analysis cannot be fetched
        """
        analysis = self.get_analysis_by_id(analysis_id)
        if not analysis:
            raise AnalysisNotFound()

        export = analysis.to_export_dict()
        export["exportedAt"] = datetime.now(timezone.utc).isoformat()
        return json.dumps(export, indent=2, default=str).encode("utf-8")

    def refresh_analysis(self, analysis_id: str) -> bool:
        """Drop the cached copy and fetch again. Returns True if the analysis exists."""
        self.cache.invalidate(analysis_key(analysis_id))
        return self.get_analysis_by_id(analysis_id) is not None

    def consolidate_analysis(self, analysis_id: str) -> Optional[Any]:
        """Run the aggregation function for an analysis now. None on error."""
        try:
            return self.functions.invoke("aggregate-analysis", {"analysis_id": analysis_id})
        except Exception as e:
            logger.error(f"Error consolidating analysis {analysis_id}: {e}")
            return None

    # =========================================================================
    # Provider keys
    # =========================================================================

    def check_api_key_requirements(self) -> ApiKeyRequirements:
        return self.provider_keys.check_api_key_requirements()

    def get_available_providers(self) -> List[str]:
        return self.provider_keys.get_available_providers()

    def get_available_api_keys(self) -> Dict[str, str]:
        return self.provider_keys.get_available_api_keys()

    def validate_all_providers(self) -> Dict[str, bool]:
        return self.provider_keys.validate_all_providers()

    # =========================================================================
    # Cache, subscriptions and background work
    # =========================================================================

    def clear_cache(self) -> None:
        self.cache.clear()

    def subscribe_to_progress(self, session_id: str, callback: Callable[[Any], None]) -> Callable[[], None]:
        """
        Register a local progress callback for a session.

        Returns:
            A function that removes the subscription
        """
        subscription_id = f"progress_{session_id}_{next(self._subscription_ids)}"
        with self._subscription_lock:
            self._subscriptions[subscription_id] = (session_id, callback)

        def unsubscribe() -> None:
            with self._subscription_lock:
                self._subscriptions.pop(subscription_id, None)

        return unsubscribe

    def notify_progress(self, session_id: str, data: Any) -> int:
        """
        Deliver a progress payload to the session's subscribers.

        Returns:
            Number of callbacks invoked successfully
        """
        with self._subscription_lock:
            callbacks = [cb for sid, cb in self._subscriptions.values() if sid == session_id]

        delivered = 0
        for callback in callbacks:
            try:
                callback(data)
                delivered += 1
            except Exception as e:
                logger.warning(f"Progress callback for session {session_id} failed: {e}")
        return delivered

    @property
    def subscription_count(self) -> int:
        with self._subscription_lock:
            return len(self._subscriptions)

    def wait_for_background_tasks(self, timeout: Optional[float] = None) -> List[BackgroundTask]:
        """Block until post-processing tasks finish; returns their records."""
        return self.task_runner.wait(timeout)


def create_inline_service(**kwargs: Any) -> CompetitorAnalysisService:
    """Service whose post-processing runs synchronously (for CLI use)."""
    kwargs.setdefault("task_runner", InlineTaskRunner())
    return CompetitorAnalysisService(**kwargs)
