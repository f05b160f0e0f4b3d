"""
EdgeFunctionClient - JSON invocation of Supabase edge functions.

Wraps ``supabase.functions.invoke`` so that every call sends a JSON body,
decodes a JSON response, and fails with a single error type
(RemoteCallError) whether the failure was in transport, a non-2xx status, or
an ``error`` field reported by the function itself.
"""

import json
import logging
from typing import Any, Dict, Optional

from supabase import Client

from ..core.database import get_supabase_client
from ..core.errors import RemoteCallError

logger = logging.getLogger(__name__)


def _error_message(error: Any) -> str:
    if isinstance(error, dict):
        return str(error.get("message") or error.get("error") or error)
    return str(error)


class EdgeFunctionClient:
    """Invokes edge functions on the Supabase project."""

    def __init__(self, supabase: Optional[Client] = None):
        self.supabase = supabase or get_supabase_client()

    def invoke(self, function_name: str, body: Optional[Dict[str, Any]] = None) -> Any:
        """
        Invoke an edge function with a JSON body.

        Args:
            function_name: Edge function slug (e.g. "competitor-analysis")
            body: JSON-serialisable request body

        Returns:
            Decoded JSON response (None for an empty body)

        Raises:
            RemoteCallError: On transport failure, non-2xx status, or a
                response carrying an ``error`` field
        """
        try:
            data = self.supabase.functions.invoke(
                function_name,
                invoke_options={"body": body or {}, "responseType": "json"},
            )
        except Exception as e:
            status_code = getattr(e, "status", None)
            raise RemoteCallError(
                f"{function_name} call failed: {_error_message(getattr(e, 'message', e))}",
                function=function_name,
                status_code=status_code if isinstance(status_code, int) else None,
            ) from e

        if isinstance(data, (bytes, str)):
            try:
                data = json.loads(data) if data else None
            except ValueError as e:
                raise RemoteCallError(
                    f"{function_name} returned a non-JSON response", function=function_name
                ) from e

        if isinstance(data, dict) and data.get("error"):
            raise RemoteCallError(_error_message(data["error"]), function=function_name)

        return data
