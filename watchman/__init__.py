"""Watchman: incremental security-keyword watcher for GitHub issues and comments."""

__version__ = "0.1.0"
