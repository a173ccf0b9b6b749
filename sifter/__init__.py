# Sifter Package
"""
Free-text query router for desktop launchers.

Backends:
  - Application index (fuzzy search over .desktop entries, cached)
  - Calculator (inline arithmetic)
  - Commands (named shell templates, debounced)
  - Search providers (GNOME Shell providers over D-Bus)
"""

__version__ = "0.1.0"
