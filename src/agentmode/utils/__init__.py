"""Shared utilities: logging setup and file IO."""
