"""Ops: process health for the /health endpoint."""
from .health import get_process_health

__all__ = [
    "get_process_health",
]
