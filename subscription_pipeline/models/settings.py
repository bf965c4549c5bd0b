"""Pipeline configuration models.

Models from pipeline.yaml configuration.
"""

from pydantic import BaseModel, Field

from .subscription import Platform


class DlqSettings(BaseModel):
    """Dead letter queue and retry behaviour."""

    max_retries: int = Field(default=5, ge=0, description="Retries before an entry expires")
    batch_size: int = Field(default=10, gt=0, description="Entries retried per scheduler pass")
    base_delay_minutes: int = Field(default=1, gt=0, description="Delay before the first retry")

    class Config:
        json_schema_extra = {
            "example": {
                "max_retries": 5,
                "batch_size": 10,
                "base_delay_minutes": 1,
            }
        }


class RetentionSettings(BaseModel):
    """Retention window for processed events and resolved DLQ entries."""

    retention_days: int = Field(default=90, gt=0, description="Days to keep finished rows")


class SchedulerSettings(BaseModel):
    """In-process periodic job runner."""

    enabled: bool = Field(default=False, description="Run maintenance jobs in a background thread")
    dlq_interval_seconds: float = Field(default=300, gt=0, description="Seconds between DLQ passes")
    cleanup_interval_seconds: float = Field(
        default=86400, gt=0, description="Seconds between retention cleanups"
    )


class PipelineConfig(BaseModel):
    """Complete pipeline.yaml configuration."""

    platforms: list[Platform] = Field(
        default_factory=lambda: list(Platform), description="Platforms accepted for ingestion"
    )
    dlq: DlqSettings = Field(default_factory=DlqSettings)
    retention: RetentionSettings = Field(default_factory=RetentionSettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)
