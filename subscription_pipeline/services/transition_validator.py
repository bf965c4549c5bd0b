"""Subscription status state machine.

is_allowed() is consulted by the subscription registry immediately before
every status write. It is a pure function of the two statuses.
"""

from typing import Mapping, Union

from subscription_pipeline.models.subscription import (
    PREMIUM_STATUSES,
    TERMINAL_STATUSES,
    SubscriptionStatus,
)

S = SubscriptionStatus

StatusLike = Union[SubscriptionStatus, str]

TRANSITIONS: Mapping[SubscriptionStatus, frozenset] = {
    S.ACTIVE: frozenset(
        {S.EXPIRED, S.IN_GRACE_PERIOD, S.PAUSED, S.IN_BILLING_RETRY, S.REVOKED, S.REFUNDED}
    ),
    S.EXPIRED: frozenset({S.ACTIVE}),
    S.IN_GRACE_PERIOD: frozenset({S.ACTIVE, S.EXPIRED, S.IN_BILLING_RETRY}),
    S.IN_BILLING_RETRY: frozenset({S.ACTIVE, S.EXPIRED, S.IN_GRACE_PERIOD}),
    S.PAUSED: frozenset({S.ACTIVE, S.EXPIRED}),
    S.ON_HOLD: frozenset({S.ACTIVE, S.EXPIRED}),
    S.PENDING: frozenset({S.ACTIVE, S.EXPIRED}),
    S.REVOKED: frozenset(),
    S.REFUNDED: frozenset(),
    S.UNKNOWN: frozenset({S.ACTIVE, S.EXPIRED, S.IN_GRACE_PERIOD, S.PAUSED, S.PENDING}),
}


def is_allowed(current_status: StatusLike, new_status: StatusLike) -> bool:
    """Check whether a status change is legal.

    A current status outside the table (a value this version does not know)
    permits any transition, so new platform statuses never block ingestion.

    Args:
        current_status: Status currently stored
        new_status: Proposed status

    Returns:
        True if the transition may be written
    """
    current = SubscriptionStatus.coerce(current_status)
    if current is None:
        return True

    new = SubscriptionStatus.coerce(new_status)
    if new is None:
        return False

    return new in TRANSITIONS[current]


def allowed_transitions(current_status: StatusLike) -> frozenset:
    """Statuses reachable from current_status (all statuses when unrecognized)."""
    current = SubscriptionStatus.coerce(current_status)
    if current is None:
        return frozenset(SubscriptionStatus)
    return TRANSITIONS[current]


def is_terminal(status: StatusLike) -> bool:
    return SubscriptionStatus.coerce(status) in TERMINAL_STATUSES


def has_premium_access(status: StatusLike) -> bool:
    """Whether a status grants premium access (active or in grace period)."""
    return SubscriptionStatus.coerce(status) in PREMIUM_STATUSES
