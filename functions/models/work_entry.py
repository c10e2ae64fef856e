"""Work entry models for JobLedger.

A work entry records actual cost incurred against one estimate line item.
Only approved entries count toward variance reporting.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class WorkEntryStatus(str, Enum):
    """Review status of a work entry."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class WorkEntry(BaseModel):
    """Actual cost recorded against an estimate line item.

    Stored in /workEntries/{id}
    """

    id: Optional[str] = Field(default=None, description="Document ID")
    project_id: Optional[str] = Field(default=None, alias="projectId")
    estimate_id: Optional[str] = Field(default=None, alias="estimateId")
    estimate_line_item_id: Optional[str] = Field(
        default=None,
        alias="estimateLineItemId",
        description="Estimate line item the cost was incurred against"
    )
    description: str = Field(default="")

    actual_time_hours: Optional[float] = Field(default=None, alias="actualTimeHours")
    actual_time_rate: Optional[float] = Field(default=None, alias="actualTimeRate")
    actual_time_cost: Optional[float] = Field(default=None, alias="actualTimeCost")
    actual_materials_cost: Optional[float] = Field(default=None, alias="actualMaterialsCost")
    actual_total: float = Field(default=0.0, alias="actualTotal")

    status: WorkEntryStatus = Field(
        default=WorkEntryStatus.PENDING,
        description="Entries always start pending and need human confirmation"
    )
    notes: Optional[str] = Field(default=None)
    receipt_id: Optional[str] = Field(default=None, alias="receiptId")

    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    reviewed_at: Optional[datetime] = Field(default=None, alias="reviewedAt")

    class Config:
        populate_by_name = True
        use_enum_values = True

    @property
    def is_approved(self) -> bool:
        """Check if the entry counts toward actual cost."""
        return self.status == WorkEntryStatus.APPROVED

    def to_firestore_dict(self) -> Dict[str, Any]:
        """Convert to Firestore-compatible dict with camelCase keys."""
        return self.model_dump(by_alias=True, exclude_none=True, exclude={"id"})
