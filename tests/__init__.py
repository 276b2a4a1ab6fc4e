"""
recordmap test suite.

This package contains:
- unit/: Unit tests (in-memory and temporary SQLite backends only)
"""
