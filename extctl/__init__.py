"""
extctl - exthost extension command-line tool.

Loads extension directories and manages loader settings.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
