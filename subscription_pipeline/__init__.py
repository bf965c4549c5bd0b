"""Subscription event pipeline: idempotent ingestion of platform billing notifications."""

__version__ = "0.1.0"
