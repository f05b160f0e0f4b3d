"""
CLI commands for compintel
"""
