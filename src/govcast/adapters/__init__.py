"""Adapters implementing the core ports (SQLite, HTTP APIs, formatting)."""
