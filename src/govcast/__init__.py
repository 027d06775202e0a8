"""Governance notifications for Builder DAOs delivered as Warpcast direct casts."""

__version__ = "0.1.0"
