"""
Search package - Mode detection, backends and query dispatch.

Queries are classified into a closed set of modes (app search,
calculator, command) and dispatched to the matching backend off the
event loop. Stale results are dropped by generation.
"""

from .dispatcher import QueryDispatcher
from .router import (
    AppResult,
    AppSearch,
    CalcResult,
    Calculator,
    Command,
    CommandResult,
    ErrorResult,
    ProviderResult,
    Query,
    ResultItem,
    VaultResult,
    detect_mode,
)

__all__ = [
    "QueryDispatcher",
    "AppResult",
    "AppSearch",
    "CalcResult",
    "Calculator",
    "Command",
    "CommandResult",
    "ErrorResult",
    "ProviderResult",
    "Query",
    "ResultItem",
    "VaultResult",
    "detect_mode",
]
