"""
exthost Extension System - Extension loading and init supervision.

This module handles:
- Module configuration (requirejs-config.json) merging
- Per-extension import namespaces
- Main module fetching
- Bounded init hook supervision
- Failure classification and diagnostics
"""

__all__ = []
