"""Variance report models for JobLedger.

Actual (approved work entry) cost versus estimated cost, per root line
item, per estimate and per project.
"""

from typing import List, Optional

from pydantic import BaseModel, Field


class VarianceResult(BaseModel):
    """variance = actual - estimated; positive means over budget."""

    variance: float = Field(default=0.0)
    variance_percent: float = Field(default=0.0, alias="variancePercent")
    is_over_budget: bool = Field(default=False, alias="isOverBudget")

    class Config:
        populate_by_name = True


class LineItemVariance(VarianceResult):
    """Variance for one estimate line item."""

    line_item_id: Optional[str] = Field(default=None, alias="lineItemId")
    description: str = Field(default="")
    parent_id: Optional[str] = Field(default=None, alias="parentId")
    estimated_total: float = Field(default=0.0, alias="estimatedTotal")
    actual_total: float = Field(default=0.0, alias="actualTotal")
    work_entry_count: int = Field(default=0, alias="workEntryCount")
    children: List["LineItemVariance"] = Field(default_factory=list)


class ChangeOrderImpact(BaseModel):
    """Approved change-order impact split by reason."""

    customer_requested_changes: float = Field(default=0.0, alias="customerRequestedChanges")
    unanticipated_changes: float = Field(default=0.0, alias="unanticipatedChanges")

    class Config:
        populate_by_name = True


class EstimateVarianceReport(VarianceResult, ChangeOrderImpact):
    """Variance across one estimate's root line items.

    ``estimated_total`` is the adjusted estimate: the line-item total plus
    every approved change order. Variance is measured against it.
    """

    estimate_id: Optional[str] = Field(default=None, alias="estimateId")
    number: Optional[int] = Field(default=None)
    title: Optional[str] = Field(default=None)
    original_estimated_total: float = Field(default=0.0, alias="originalEstimatedTotal")
    estimated_total: float = Field(default=0.0, alias="estimatedTotal")
    actual_total: float = Field(default=0.0, alias="actualTotal")
    line_items: List[LineItemVariance] = Field(default_factory=list, alias="lineItems")


class ProjectVarianceReport(VarianceResult, ChangeOrderImpact):
    """Grand totals across every estimate in a project."""

    project_id: Optional[str] = Field(default=None, alias="projectId")
    original_estimated_total: float = Field(default=0.0, alias="originalEstimatedTotal")
    estimated_total: float = Field(default=0.0, alias="estimatedTotal")
    actual_total: float = Field(default=0.0, alias="actualTotal")
    estimates: List[EstimateVarianceReport] = Field(default_factory=list)
