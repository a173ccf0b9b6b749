# Sifter Utilities Package
"""
Shared utility functions and helpers for Sifter.
"""

from .helpers import (
    Settings,
    clean_exec,
    expand_home,
    launch_entry,
    load_settings,
    open_command_result,
    open_uri,
)

__all__ = [
    "Settings",
    "clean_exec",
    "expand_home",
    "launch_entry",
    "load_settings",
    "open_command_result",
    "open_uri",
]
