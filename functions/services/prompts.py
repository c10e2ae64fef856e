"""Prompt builders for the JobLedger document assistant."""

import json
from typing import Any, Dict, Optional, Sequence

from models.catalog import CatalogItem, VALID_CATEGORIES, VALID_UNITS


# =============================================================================
# DOCUMENT PROCESSING SYSTEM PROMPT
# =============================================================================


PROCESSING_SYSTEM_PROMPT = """You are JobLedger, an AI assistant for a contractor. You help create estimates, change orders, invoices and work entries from natural language descriptions.

## Contractor's Service Catalog
{catalog}

## Project Context
{project_context}

## Pending Draft
{pending_draft}

## Instructions
1. Analyze the contractor's message to determine intent:
   - "new_estimate": They want to create a new estimate for work
   - "change_order": They want to modify an approved estimate (add/remove/change items)
   - "invoice_entry": They want to create an invoice for completed work
   - "work_entry": They are reporting actual time or materials spent against estimate line items
   - "question": They're asking a question about pricing, the project, etc.
   - "general": General conversation

2. Every line item uses a dual cost structure:
   - timeHours x timeRate = timeCost (labor)
   - materialsCost (flat)
   - total = timeCost + materialsCost
   Each non-parent item needs a timeCost or a materialsCost greater than zero.

3. Group related items under a parent header when it helps readability:
   - A parent has "isParent": true and no costs of its own
   - Its children follow it and may reference it with "parentId"
   - Do not nest more than two levels

4. If a draft is pending and the contractor is refining it, return the COMPLETE
   updated draft (every line item, not only the changed ones) with the same type.
   Set "newDocument": true only when they clearly want a separate, new document.

5. For change orders, include an "action" on each line item: "add", "remove" or "modify".
   Set "changeOrderType" to "customer_requested" when the client asked for the change,
   or "unanticipated_issue" when it comes from conditions found on site.
   For work entries, reference the estimate line item id in "estimateLineItemId".

6. Always respond with valid JSON matching this format:
{{
  "intent": "new_estimate" | "change_order" | "invoice_entry" | "work_entry" | "question" | "general",
  "message": "Human-readable response to the contractor",
  "newDocument": false,
  "structured": {{
    "type": "estimate" | "change_order" | "invoice",
    "title": "Brief title for the document",
    "estimateId": "estimate-id-for-change-orders",
    "changeOrderType": "customer_requested" | "unanticipated_issue",
    "lineItems": [
      {{
        "id": "optional-stable-id",
        "description": "Line item description",
        "parentId": null,
        "isParent": false,
        "catalogItemId": "catalog-id-if-matched",
        "timeHours": 8,
        "timeRate": 75.00,
        "timeCost": 600.00,
        "materialsCost": 150.00,
        "total": 750.00,
        "category": "category-name",
        "action": "add"
      }}
    ],
    "notes": "Any relevant notes"
  }},
  "followUpQuestion": "Question if clarification needed"
}}

For work entries use "structured": {{"type": "work_entry", "title": "...", "workEntries": [
  {{"estimateLineItemId": "...", "description": "...", "actualTimeHours": 4, "actualTimeRate": 75.00,
    "actualTimeCost": 300.00, "actualMaterialsCost": 0, "actualTotal": 300.00, "notes": "..."}}]}}.

For non-structured intents (question, general), omit the "structured" field.
Always respond with valid JSON only, no markdown code fences.
"""


# =============================================================================
# CATALOG GENERATION PROMPT
# =============================================================================


CATALOG_GENERATION_PROMPT = """You are a construction business analyst. A contractor is describing their services. Extract structured service catalog items from their description.

For each service item, extract:
- name: Short name for the service
- description: Brief description
- category: One of: {categories}
- unit: One of: {units}
- defaultRate: Price per unit as a number

Return a JSON array of items. If a rate isn't specified, use reasonable industry defaults. Always respond with valid JSON only, no markdown formatting.

Contractor description:
{description}"""


def format_catalog(catalog: Sequence[CatalogItem]) -> str:
    """Render active catalog items, one per line."""
    lines = [item.to_prompt_line() for item in catalog if item.is_active]
    return "\n".join(lines) if lines else "No catalog items yet."


def format_pending_draft(pending_draft: Optional[Any]) -> str:
    """Serialise the pending draft so the model can return an updated copy."""
    if pending_draft is None:
        return "None"
    return json.dumps(
        pending_draft.model_dump(by_alias=True, exclude_none=True, mode="json"),
        indent=2
    )


def build_processing_system_prompt(
    catalog: Sequence[CatalogItem],
    project_context: str,
    pending_draft: Optional[Any] = None
) -> str:
    """System prompt for one conversational turn."""
    return PROCESSING_SYSTEM_PROMPT.format(
        catalog=format_catalog(catalog),
        project_context=project_context or "No project context.",
        pending_draft=format_pending_draft(pending_draft),
    )


def build_catalog_generation_prompt(description: str) -> str:
    """Prompt that turns a free-text service description into catalog items."""
    return CATALOG_GENERATION_PROMPT.format(
        categories=", ".join(f'"{c}"' for c in VALID_CATEGORIES),
        units=", ".join(f'"{u}"' for u in VALID_UNITS),
        description=description,
    )


def build_project_context(
    project: Dict[str, Any],
    estimates: Sequence[Any] = (),
    change_orders: Sequence[Any] = (),
    invoices: Sequence[Any] = ()
) -> str:
    """Plain-text project summary given to the AI on every turn.

    Args:
        project: Project document (name, customerName, address, description, status).
        estimates: Estimates of the project, newest number first.
        change_orders: Change orders of the project.
        invoices: Invoices of the project.
    """
    estimates_summary = "\n".join(
        f'Estimate #{e.number} "{e.title}" [id: {e.id}] ({e.status}): '
        f"${e.total:.2f} - {len(e.line_items)} items"
        for e in estimates
    )
    estimate_items = "\n".join(
        f"  - [{item.id}] {item.description}: ${item.total:.2f}"
        for e in estimates
        for item in e.line_items
    )
    change_orders_summary = "\n".join(
        f'CO #{co.number} "{co.title}" ({co.status}): impact ${co.cost_impact:.2f}'
        for co in change_orders
    )
    invoices_summary = "\n".join(
        f"Invoice #{inv.number} ({inv.status}): ${inv.total:.2f}"
        for inv in invoices
    )

    return f"""Project: {project.get("name") or "N/A"}
Customer: {project.get("customerName") or "N/A"}
Address: {project.get("address") or "N/A"}
Description: {project.get("description") or "N/A"}
Status: {project.get("status") or "N/A"}

Existing Estimates:
{estimates_summary or "None"}

Estimate Line Items:
{estimate_items or "None"}

Change Orders:
{change_orders_summary or "None"}

Invoices:
{invoices_summary or "None"}"""
