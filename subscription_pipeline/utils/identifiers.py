"""Identifier generation and canonicalization.

Notification IDs are stored as canonical UUID strings so the dedup key is
stable regardless of how a platform formats them.
"""

import hashlib
import uuid

from subscription_pipeline.logging_config import get_logger

logger = get_logger(__name__)


def generate_id() -> str:
    """Generate a random row identifier (UUID4 string)."""
    return str(uuid.uuid4())


def is_canonical_uuid(value: str) -> bool:
    """Check whether a value parses as a UUID.

    Args:
        value: Candidate identifier

    Returns:
        True if value is a UUID in any of the forms uuid.UUID accepts
    """
    if not value or not isinstance(value, str):
        return False
    try:
        uuid.UUID(value.strip())
    except ValueError:
        return False
    return True


def hashed_uuid(value: str) -> str:
    """Derive a deterministic UUID from the MD5 digest of a string.

    The same input always maps to the same UUID, across processes and retries.

    Args:
        value: Raw identifier

    Returns:
        UUID string built from the 128-bit MD5 digest
    """
    digest = hashlib.md5(value.encode("utf-8")).hexdigest()
    return str(uuid.UUID(hex=digest))


def canonical_notification_id(raw_id: str) -> str:
    """Canonical form of a platform notification ID.

    UUIDs are normalized to lower-case hyphenated form; anything else
    (Stripe event IDs, Google message IDs, malformed values) is replaced by
    hashed_uuid(raw_id).

    Args:
        raw_id: Notification ID as delivered

    Returns:
        Canonical UUID string
    """
    if is_canonical_uuid(raw_id):
        return str(uuid.UUID(raw_id.strip()))

    substitute = hashed_uuid(raw_id)
    logger.debug(
        "notification_id_not_uuid",
        raw_notification_id=raw_id[:64],
        canonical_notification_id=substitute,
    )
    return substitute
