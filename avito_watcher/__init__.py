"""Avito messenger watcher: streams new messages of one bound conversation."""

__version__ = "0.1.0"
