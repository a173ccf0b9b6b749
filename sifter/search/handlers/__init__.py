"""
Search handlers - One backend per query mode.

Each handler turns a query into typed result items.
"""

from .app_search import AppSearchHandler
from .calculator import CalculatorHandler
from .commands import CustomCommandsHandler
from .providers import SearchProvidersHandler
from .vault import VaultHandler

__all__ = [
    "AppSearchHandler",
    "CalculatorHandler",
    "CustomCommandsHandler",
    "SearchProvidersHandler",
    "VaultHandler",
]
