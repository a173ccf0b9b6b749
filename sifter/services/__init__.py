# Sifter Services Package
"""
Backend services for Sifter.

Services own long-lived state and system integration: the application
index and its cache, the desktop entry reader and the session bus.
"""
