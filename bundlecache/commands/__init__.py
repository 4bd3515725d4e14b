"""CLI command implementations for bundlecache.

This module contains all command-line interface implementations:
- extract: Extract bundle resources into a cache directory
- status: Report cache freshness without writing
"""

from bundlecache.commands.extract import extract, status

__all__ = ["extract", "status"]
