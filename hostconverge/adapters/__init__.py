"""Adapters — bindings to the host's services, files and processes.

Public re-exports for convenient access.
"""

from hostconverge.adapters.base import Adapter, ExecutionContext
from hostconverge.adapters.registry import AdapterRegistry

__all__ = [
    "Adapter",
    "AdapterRegistry",
    "ExecutionContext",
]
