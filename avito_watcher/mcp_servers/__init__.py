"""MCP servers exposing watcher operations."""
