"""Draft and AI proposal models for JobLedger.

A draft is the unpersisted, document-shaped structure held during the
conversation. The AI collaborator returns an AIProposal whose structured
payload is a strictly validated tagged union keyed on ``type``.
"""

from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, ValidationInfo, field_validator

from models.document import ChangeOrderType
from models.line_item import LineItem, LineItemAction


class AIIntent(str, Enum):
    """Intent classification returned by the AI collaborator."""

    NEW_ESTIMATE = "new_estimate"
    CHANGE_ORDER = "change_order"
    INVOICE_ENTRY = "invoice_entry"
    WORK_ENTRY = "work_entry"
    QUESTION = "question"
    GENERAL = "general"


class DraftType(str, Enum):
    """Kinds of drafts the conversation can hold."""

    ESTIMATE = "estimate"
    CHANGE_ORDER = "change_order"
    INVOICE = "invoice"
    WORK_ENTRY = "work_entry"


DOCUMENT_INTENTS = {
    AIIntent.NEW_ESTIMATE: DraftType.ESTIMATE,
    AIIntent.CHANGE_ORDER: DraftType.CHANGE_ORDER,
    AIIntent.INVOICE_ENTRY: DraftType.INVOICE,
    AIIntent.WORK_ENTRY: DraftType.WORK_ENTRY,
}

INFORMATIONAL_INTENTS = {AIIntent.QUESTION, AIIntent.GENERAL}

# Prefix of temporary line-item keys assigned while a draft is pending
DRAFT_KEY_PREFIX = "draft-"

_ACTIONS = {action.value for action in LineItemAction}
_CHANGE_ORDER_TYPES = {t.value for t in ChangeOrderType}


def _drop_undescribed(value: Any) -> Any:
    """Keep only rows that carry a non-empty description."""
    if value is None:
        return []
    if not isinstance(value, list):
        return value
    kept = []
    for row in value:
        if isinstance(row, dict):
            if str(row.get("description") or "").strip():
                kept.append(dict(row))
        elif isinstance(row, BaseModel):
            if str(getattr(row, "description", "") or "").strip():
                kept.append(row)
    return kept


class DocumentDraft(BaseModel):
    """Pending estimate, change order or invoice."""

    type: Literal["estimate", "change_order", "invoice"]
    title: Optional[str] = Field(default=None)
    line_items: List[LineItem] = Field(default_factory=list, alias="lineItems")
    notes: Optional[str] = Field(default=None)
    estimate_id: Optional[str] = Field(
        default=None,
        alias="estimateId",
        description="Change orders only: estimate the change applies to"
    )
    change_order_type: Optional[ChangeOrderType] = Field(
        default=None,
        alias="changeOrderType",
        description="Change orders only: customer_requested or unanticipated_issue"
    )

    class Config:
        populate_by_name = True

    @field_validator("line_items", mode="before")
    @classmethod
    def repair_line_items(cls, v: Any, info: ValidationInfo) -> Any:
        """Drop undescribed rows; coerce change-order actions into add/remove/modify."""
        rows = _drop_undescribed(v)
        if not isinstance(rows, list):
            return rows

        is_change_order = info.data.get("type") == DraftType.CHANGE_ORDER.value
        for row in rows:
            if not isinstance(row, dict):
                continue
            action = row.get("action")
            if is_change_order:
                if action not in _ACTIONS:
                    row["action"] = LineItemAction.ADD.value
            elif action is not None and action not in _ACTIONS:
                row["action"] = None
        return rows

    @field_validator("change_order_type", mode="before")
    @classmethod
    def drop_unknown_change_order_type(cls, v: Any) -> Any:
        if v is None or v in _CHANGE_ORDER_TYPES:
            return v
        return None

    @property
    def rows(self) -> List[LineItem]:
        return self.line_items


class WorkEntryItem(BaseModel):
    """Proposed actual cost against an estimate line item."""

    estimate_line_item_id: Optional[str] = Field(default=None, alias="estimateLineItemId")
    description: str = Field(default="")
    actual_time_hours: Optional[float] = Field(default=None, alias="actualTimeHours")
    actual_time_rate: Optional[float] = Field(default=None, alias="actualTimeRate")
    actual_time_cost: Optional[float] = Field(default=None, alias="actualTimeCost")
    actual_materials_cost: Optional[float] = Field(default=None, alias="actualMaterialsCost")
    actual_total: float = Field(default=0.0, alias="actualTotal")
    notes: Optional[str] = Field(default=None)

    class Config:
        populate_by_name = True


class WorkEntryDraft(BaseModel):
    """Pending batch of work entries."""

    type: Literal["work_entry"]
    title: Optional[str] = Field(default=None)
    work_entries: List[WorkEntryItem] = Field(default_factory=list, alias="workEntries")
    notes: Optional[str] = Field(default=None)

    class Config:
        populate_by_name = True

    @field_validator("work_entries", mode="before")
    @classmethod
    def drop_rows_without_description(cls, v: Any) -> Any:
        return _drop_undescribed(v)

    @property
    def rows(self) -> List[WorkEntryItem]:
        return self.work_entries


Draft = Annotated[Union[DocumentDraft, WorkEntryDraft], Field(discriminator="type")]


class AIProposal(BaseModel):
    """One AI collaborator response."""

    intent: AIIntent = Field(default=AIIntent.GENERAL)
    message: str = Field(default="")
    structured: Optional[Draft] = Field(default=None)
    new_document: bool = Field(
        default=False,
        alias="newDocument",
        description="AI explicitly signals a brand-new document rather than an edit"
    )
    follow_up_question: Optional[str] = Field(default=None, alias="followUpQuestion")

    class Config:
        populate_by_name = True

    @classmethod
    def informational(cls, message: str) -> "AIProposal":
        """Plain text response with no structured payload."""
        return cls(intent=AIIntent.GENERAL, message=message)

    def to_dict(self) -> Dict[str, Any]:
        """Wire format for the client."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")
