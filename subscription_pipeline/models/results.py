"""Tagged result returned by the event processor.

The webhook receiver uses the outcome to decide whether to acknowledge the
original delivery.
"""

from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field


class Success(BaseModel):
    """Notification applied for the first time."""

    outcome: Literal["success"] = "success"
    event_id: str
    subscription_id: Optional[str] = None


class AlreadyProcessed(BaseModel):
    """Notification was applied before; nothing changed."""

    outcome: Literal["already_processed"] = "already_processed"
    event_id: str
    subscription_id: Optional[str] = None


class Failed(BaseModel):
    """Processing failed and was rolled back."""

    outcome: Literal["failed"] = "failed"
    event_id: Optional[str] = None
    reason: str
    error_type: str = "Exception"
    dlq_entry_id: Optional[str] = Field(None, description="Dead letter entry queued for retry")


ProcessResult = Annotated[Union[Success, AlreadyProcessed, Failed], Field(discriminator="outcome")]
