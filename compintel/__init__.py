"""
compintel - Competitor Analysis Orchestration Client

Starts, tracks and persists multi-provider competitor analysis runs against
the Supabase backend (tables, RPCs and edge functions).
"""

__version__ = "0.1.0"
__author__ = "compintel Team"
