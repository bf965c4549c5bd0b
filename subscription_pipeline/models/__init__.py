"""Pydantic models for notifications, subscriptions, dead letters and the API."""

# Configuration models
from .settings import (
    DlqSettings,
    PipelineConfig,
    RetentionSettings,
    SchedulerSettings,
)

# Subscription models
from .subscription import (
    PREMIUM_STATUSES,
    TERMINAL_STATUSES,
    Platform,
    SubscriptionEnvironment,
    SubscriptionIdentity,
    SubscriptionRecord,
    SubscriptionStatus,
)

# Notification event models
from .events import (
    NotificationEvent,
    NotificationInput,
    RecordEventResult,
)

# Dead letter models
from .dead_letter import (
    CleanupResult,
    DeadLetterEntry,
    DlqRunResult,
    ResolvedBy,
)

# Processor results
from .results import (
    AlreadyProcessed,
    Failed,
    ProcessResult,
    Success,
)

__all__ = [
    # Configuration
    "DlqSettings",
    "PipelineConfig",
    "RetentionSettings",
    "SchedulerSettings",
    # Subscription
    "PREMIUM_STATUSES",
    "TERMINAL_STATUSES",
    "Platform",
    "SubscriptionEnvironment",
    "SubscriptionIdentity",
    "SubscriptionRecord",
    "SubscriptionStatus",
    # Events
    "NotificationEvent",
    "NotificationInput",
    "RecordEventResult",
    # Dead letters
    "CleanupResult",
    "DeadLetterEntry",
    "DlqRunResult",
    "ResolvedBy",
    # Results
    "AlreadyProcessed",
    "Failed",
    "ProcessResult",
    "Success",
]
