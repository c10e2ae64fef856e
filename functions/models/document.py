"""Document models for JobLedger.

Estimates, change orders and invoices own an ordered collection of line
items and carry derived subtotal / tax / total fields.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from models.line_item import LineItem


class DocumentType(str, Enum):
    """Kinds of business documents."""

    ESTIMATE = "estimate"
    CHANGE_ORDER = "change_order"
    INVOICE = "invoice"


class EstimateStatus(str, Enum):
    """Status of an estimate: draft -> sent -> approved, or draft -> rejected."""

    DRAFT = "draft"
    SENT = "sent"
    APPROVED = "approved"
    REJECTED = "rejected"


class ChangeOrderStatus(str, Enum):
    """Status of a change order. Approval updates the parent estimate."""

    DRAFT = "draft"
    SENT = "sent"
    APPROVED = "approved"
    REJECTED = "rejected"


class InvoiceStatus(str, Enum):
    """Status of an invoice. Overdue is derived from the due date, never stored."""

    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"


class ChangeOrderType(str, Enum):
    """Why a change order was raised."""

    CUSTOMER_REQUESTED = "customer_requested"
    UNANTICIPATED_ISSUE = "unanticipated_issue"


STATUSES_BY_TYPE = {
    DocumentType.ESTIMATE: EstimateStatus,
    DocumentType.CHANGE_ORDER: ChangeOrderStatus,
    DocumentType.INVOICE: InvoiceStatus,
}

# Status -> timestamp field stamped when the status is entered
STATUS_TIMESTAMP_FIELDS = {
    "sent": "sentAt",
    "approved": "approvedAt",
    "paid": "paidAt",
}


class DocumentTotals(BaseModel):
    """Derived money fields of a document."""

    subtotal: float = Field(default=0.0)
    tax_rate: float = Field(default=0.0, alias="taxRate", description="Percent, e.g. 8.5")
    tax_amount: float = Field(default=0.0, alias="taxAmount")
    total: float = Field(default=0.0)

    class Config:
        populate_by_name = True


class Document(BaseModel):
    """Fields shared by every business document."""

    id: Optional[str] = Field(default=None, description="Document ID")
    project_id: str = Field(alias="projectId", description="Owning project")
    number: int = Field(
        default=0,
        description="Per-project, per-type sequence number (max existing + 1)"
    )
    status: str = Field(default="draft")
    line_items: List[LineItem] = Field(default_factory=list, alias="lineItems")

    subtotal: float = Field(default=0.0)
    tax_rate: float = Field(default=0.0, alias="taxRate")
    tax_amount: float = Field(default=0.0, alias="taxAmount")
    total: float = Field(default=0.0)

    notes: Optional[str] = Field(default=None)
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")
    sent_at: Optional[datetime] = Field(default=None, alias="sentAt")

    class Config:
        populate_by_name = True
        use_enum_values = True

    def apply_totals(self, totals: DocumentTotals) -> None:
        """Copy derived totals onto the document."""
        self.subtotal = totals.subtotal
        self.tax_rate = totals.tax_rate
        self.tax_amount = totals.tax_amount
        self.total = totals.total

    @property
    def totals(self) -> DocumentTotals:
        """Current derived totals."""
        return DocumentTotals(
            subtotal=self.subtotal,
            tax_rate=self.tax_rate,
            tax_amount=self.tax_amount,
            total=self.total,
        )

    def to_firestore_dict(self) -> Dict[str, Any]:
        """Convert to Firestore-compatible dict (line items live in a subcollection)."""
        return self.model_dump(by_alias=True, exclude_none=True, exclude={"id", "line_items"})


class Estimate(Document):
    """Estimate document. Stored in /estimates/{id}"""

    title: str = Field(default="")
    status: EstimateStatus = Field(default=EstimateStatus.DRAFT)
    approved_at: Optional[datetime] = Field(default=None, alias="approvedAt")


class ChangeOrder(Document):
    """Change order against an estimate. Stored in /changeOrders/{id}"""

    estimate_id: str = Field(alias="estimateId", description="Estimate the change applies to")
    title: str = Field(default="")
    description: Optional[str] = Field(default=None)
    status: ChangeOrderStatus = Field(default=ChangeOrderStatus.DRAFT)
    change_order_type: ChangeOrderType = Field(
        default=ChangeOrderType.CUSTOMER_REQUESTED,
        alias="type"
    )
    cost_impact: float = Field(default=0.0, alias="costImpact")
    approved_at: Optional[datetime] = Field(default=None, alias="approvedAt")


class Invoice(Document):
    """Invoice document. Stored in /invoices/{id}"""

    status: InvoiceStatus = Field(default=InvoiceStatus.DRAFT)
    due_date: Optional[datetime] = Field(default=None, alias="dueDate")
    paid_at: Optional[datetime] = Field(default=None, alias="paidAt")

    def is_overdue(self, now: Optional[datetime] = None) -> bool:
        """Display-only overdue flag: unpaid and past its due date."""
        if self.status == InvoiceStatus.PAID or self.due_date is None:
            return False
        now = now or datetime.now(self.due_date.tzinfo)
        return self.due_date < now


class EstimateVersion(BaseModel):
    """Immutable snapshot of an estimate's line items and totals.

    Stored in /estimates/{id}/versions/{versionId}; append-only.
    """

    id: Optional[str] = Field(default=None)
    estimate_id: Optional[str] = Field(default=None, alias="estimateId")
    version_number: int = Field(alias="versionNumber", ge=1)
    line_items_snapshot: List[LineItem] = Field(default_factory=list, alias="lineItemsSnapshot")
    subtotal: float = Field(default=0.0)
    tax_rate: float = Field(default=0.0, alias="taxRate")
    tax_amount: float = Field(default=0.0, alias="taxAmount")
    total: float = Field(default=0.0)
    change_order_id: Optional[str] = Field(default=None, alias="changeOrderId")
    notes: Optional[str] = Field(default=None)
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")

    class Config:
        populate_by_name = True

    def to_firestore_dict(self) -> Dict[str, Any]:
        """Convert to Firestore-compatible dict."""
        return self.model_dump(by_alias=True, exclude_none=True, exclude={"id"})


DOCUMENT_MODELS = {
    DocumentType.ESTIMATE: Estimate,
    DocumentType.CHANGE_ORDER: ChangeOrder,
    DocumentType.INVOICE: Invoice,
}
