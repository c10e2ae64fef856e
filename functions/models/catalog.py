"""Service catalog models for JobLedger.

Catalog items (rates per unit of work) are saved during onboarding and
serve as read-only context for drafting.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


VALID_CATEGORIES = [
    "demolition",
    "framing",
    "electrical",
    "plumbing",
    "hvac",
    "flooring",
    "tile",
    "painting",
    "cabinets",
    "countertops",
    "roofing",
    "siding",
    "concrete",
    "landscaping",
    "general_labor",
    "materials",
    "other",
]

VALID_UNITS = ["hour", "sqft", "linear_ft", "each", "flat"]


class CatalogItem(BaseModel):
    """A priced service offered by the contractor."""

    id: Optional[str] = Field(default=None)
    name: str = Field(default="")
    description: Optional[str] = Field(default=None)
    category: str = Field(default="other")
    unit: str = Field(default="each")
    default_rate: float = Field(default=0.0, alias="defaultRate")
    is_active: bool = Field(default=True, alias="isActive")

    class Config:
        populate_by_name = True

    def to_firestore_dict(self) -> Dict[str, Any]:
        """Stored fields (camelCase, no id)."""
        return self.model_dump(by_alias=True, exclude_none=True, exclude={"id"})

    def to_prompt_line(self) -> str:
        """One-line rendering for the AI context."""
        line = f"- {self.name} [{self.category}] ${self.default_rate:.2f}/{self.unit}"
        if self.id:
            line += f" (id: {self.id})"
        return line
