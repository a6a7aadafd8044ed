"""
CLI runner module.

Provides commands:
- upload / status / show: Upload a statement and review the extraction
- analyze / remap: Inspect a CSV layout and fix its column mapping
- import / import-all: Commit reviewed transactions
- delete / list: Manage statements
- models / init-config: Provider and configuration helpers
"""

from .main import create_cli, main

__all__ = [
    "create_cli",
    "main",
]
