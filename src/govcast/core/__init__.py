"""Core domain package for govcast.

Core contains event planning, deduplication, identity resolution and the task
queue consumer without any HTTP or storage-specific code. Adapters plug in
through the protocols in ``core.ports``.
"""
