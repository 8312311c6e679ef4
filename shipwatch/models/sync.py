from typing import Optional

from pydantic import BaseModel, Field

from shipwatch.models.shipment import ShipmentRecord


class SyncReport(BaseModel):
    """Outcome of one batch sync for one user."""

    user_id: str = Field(description="User that was synced")
    fetched: int = Field(default=0, description="Messages returned by the mailbox")
    already_processed: int = Field(
        default=0, description="Messages skipped because they were handled before"
    )
    not_shipping: int = Field(
        default=0, description="Messages rejected by the pre-filter"
    )
    skipped: int = Field(
        default=0, description="Messages with no identifier and no strong signal"
    )
    created: int = Field(default=0, description="Shipments created")
    updated: int = Field(default=0, description="Shipments changed")
    unchanged: int = Field(default=0, description="Messages that changed nothing")
    failed: int = Field(default=0, description="Messages that failed to process")
    generative_calls: int = Field(default=0, description="Model calls issued")
    generative_failures: int = Field(default=0, description="Model calls that failed")
    reduced_accuracy: bool = Field(
        default=False,
        description="The model fallback was disabled for part of the batch",
    )
    cancelled: bool = Field(default=False, description="The batch was cancelled")
    error: Optional[str] = Field(default=None, description="Batch-level error")
    shipments: list[ShipmentRecord] = Field(
        default_factory=list, description="Current shipments for the user"
    )

    @property
    def processed(self) -> int:
        return (
            self.not_shipping
            + self.skipped
            + self.created
            + self.updated
            + self.unchanged
        )
