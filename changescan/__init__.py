"""Incremental change detection for Hive-style metadata catalogs.

Scans selected databases and tables, compares table and partition update
times against per-dataset watermarks and a lookback window, and emits one
work descriptor per changed entity.
"""

__version__ = "1.0.0"
