"""Utility functions and helpers for the pipeline."""

from subscription_pipeline.utils.identifiers import (
    canonical_notification_id,
    generate_id,
    hashed_uuid,
    is_canonical_uuid,
)
from subscription_pipeline.utils.keyed_lock import KeyedLock

__all__ = [
    # Identifiers
    "generate_id",
    "canonical_notification_id",
    "hashed_uuid",
    "is_canonical_uuid",
    # Locking
    "KeyedLock",
]
