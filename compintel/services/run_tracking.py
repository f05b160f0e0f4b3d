"""
AnalysisRunTracker - progress rows and run-log rows for analysis runs.

Only progress creation is mandatory for a run: without a progress row the
frontend has nothing to poll, so create_progress raises. Every other write
here is bookkeeping and reports success as a bool instead of raising.
"""

import json
import logging
from typing import Any, Dict, List, Optional

from supabase import Client

from ..core.errors import ProgressInitFailed
from .edge_functions import EdgeFunctionClient
from .models import RUN_TYPE_COMPETITOR_ANALYSIS, AnalysisProgress, RunStatus

logger = logging.getLogger(__name__)

UPDATE_RUN_FUNCTION = "update-analysis-run"


class AnalysisRunTracker:
    """Writes progress and run-log bookkeeping for competitor analysis runs."""

    def __init__(self, supabase: Client, functions: EdgeFunctionClient):
        self.supabase = supabase
        self.functions = functions

    # =========================================================================
    # Progress rows
    # =========================================================================

    def create_progress(
        self,
        session_id: str,
        user_id: str,
        competitors: List[str],
        providers: List[str],
    ) -> str:
        """
        Insert the progress tracking row for a session.

        Returns:
            The new progress row id

        Raises:
            ProgressInitFailed: If the RPC errors or returns no id
        """
        try:
            result = self.supabase.rpc("insert_competitor_analysis_progress", {
                "session_id_param": session_id,
                "user_id_param": user_id,
                "total_competitors_param": len(competitors),
                "metadata_param": {"competitors": competitors, "providersSelected": providers},
            }).execute()
        except Exception as e:
            raise ProgressInitFailed(details={"session_id": session_id, "error": str(e)}) from e

        if not result.data:
            raise ProgressInitFailed(details={"session_id": session_id})
        return str(result.data)

    def mark_progress_failed(self, session_id: str, error_message: str) -> bool:
        """Set the session's progress row to failed. Returns False if the update failed."""
        try:
            self.supabase.rpc("update_competitor_analysis_progress", {
                "session_id_param": session_id,
                "status_param": RunStatus.FAILED,
                "error_message_param": error_message or "Unknown error",
            }).execute()
            return True
        except Exception as e:
            logger.error(f"Failed to update progress status for session {session_id}: {e}")
            return False

    def get_progress(self, session_id: str, user_id: str) -> Optional[AnalysisProgress]:
        """Latest progress row for a session owned by user_id."""
        result = self.supabase.table("competitor_analysis_progress").select("*").eq(
            "session_id", session_id
        ).eq("user_id", user_id).order("created_at", desc=True).limit(1).execute()
        if not result.data:
            return None
        return AnalysisProgress.model_validate(result.data[0])

    # =========================================================================
    # Run-log rows
    # =========================================================================

    def create_run(self, user_id: str, session_id: str, input_data: Dict[str, Any]) -> Optional[str]:
        """
        Insert an analysis_runs row in running state.

        Returns:
            Run id, or None if the row could not be created
        """
        try:
            result = self.supabase.rpc("insert_analysis_run", {
                "user_id_param": user_id,
                "run_type_param": RUN_TYPE_COMPETITOR_ANALYSIS,
                "session_id_param": session_id,
                "input_data_param": input_data,
            }).execute()
        except Exception as e:
            logger.warning(f"insert_analysis_run RPC failed: {e}")
            return None

        return result.data if isinstance(result.data, str) else None

    def complete_run(self, run_id: str, output_data: Any, execution_time_ms: int) -> bool:
        """Mark a run completed with its output. Returns False if the update failed."""
        try:
            # Round-trip through JSON so the stored output is plain data
            safe_output = json.loads(json.dumps(output_data if output_data is not None else {}, default=str))
            self.functions.invoke(UPDATE_RUN_FUNCTION, {
                "action": "complete",
                "runId": run_id,
                "outputData": safe_output,
                "executionTimeMs": execution_time_ms,
            })
            return True
        except Exception as e:
            logger.warning(f"analysis_runs completion update failed: {e}")
            return False

    def find_latest_run_id(self, session_id: str) -> Optional[str]:
        result = self.supabase.table("analysis_runs").select("id").eq(
            "session_id", session_id
        ).eq("run_type", RUN_TYPE_COMPETITOR_ANALYSIS).order(
            "created_at", desc=True
        ).limit(1).execute()
        return result.data[0]["id"] if result.data else None

    def fail_latest_run(self, session_id: str, error_message: str, execution_time_ms: int) -> Optional[str]:
        """
        Mark the session's most recent run as failed.

        Returns:
            The failed run's id, or None if there was no run or the update failed
        """
        try:
            run_id = self.find_latest_run_id(session_id)
            if not run_id:
                return None
            self.functions.invoke(UPDATE_RUN_FUNCTION, {
                "action": "fail",
                "runId": run_id,
                "errorMessage": error_message or "Unknown error",
                "executionTimeMs": execution_time_ms,
            })
            return run_id
        except Exception as e:
            logger.warning(f"analysis_runs failure update failed: {e}")
            return None
