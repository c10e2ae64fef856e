"""AI collaborator output parsing and validation.

The AI returns duck-typed JSON. This module turns it into typed Pydantic
models at the boundary, repairing what can be repaired and degrading
anything unusable to a plain informational message. It never raises.
"""

import json
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError as PydanticValidationError
import structlog

from models.catalog import CatalogItem, VALID_CATEGORIES, VALID_UNITS
from models.draft import AIIntent, AIProposal
from utils.money import round2

logger = structlog.get_logger(__name__)

_INTENTS = {intent.value for intent in AIIntent}


def strip_code_fences(content: str) -> str:
    """Remove a surrounding markdown code block from model output."""
    content = content.strip()
    if content.startswith("```json"):
        content = content[7:]
    if content.startswith("```"):
        content = content[3:]
    if content.endswith("```"):
        content = content[:-3]
    return content.strip()


def _load_json(raw: Union[str, bytes, Dict[str, Any], List[Any], None]) -> Optional[Any]:
    """Parse raw model output into Python data, or None if it is not JSON."""
    if raw is None:
        return None
    if isinstance(raw, (dict, list)):
        return raw
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    try:
        return json.loads(strip_code_fences(str(raw)))
    except (json.JSONDecodeError, TypeError, ValueError):
        return None


def parse_ai_response(raw: Union[str, bytes, Dict[str, Any], None]) -> AIProposal:
    """Parse one AI collaborator response into an AIProposal.

    - Non-JSON text becomes an informational message (intent ``general``).
    - An unknown intent is downgraded to ``general``.
    - A structured payload that fails validation is dropped; the message
      is kept.

    Args:
        raw: Raw text, bytes or already-decoded dict from the model.

    Returns:
        AIProposal (never raises).
    """
    data = _load_json(raw)

    if not isinstance(data, dict):
        text = raw if isinstance(raw, str) else ""
        logger.warning("ai_response_not_json", preview=str(raw)[:200])
        return AIProposal.informational(text.strip())

    data = dict(data)
    message = data.get("message")
    if not isinstance(message, str):
        message = data.get("followUpQuestion") if isinstance(data.get("followUpQuestion"), str) else ""
        data["message"] = message

    if data.get("intent") not in _INTENTS:
        logger.warning("ai_intent_unknown", intent=data.get("intent"))
        data["intent"] = AIIntent.GENERAL.value

    if data.get("structured") in ({}, []):
        data["structured"] = None

    try:
        return AIProposal.model_validate(data)
    except PydanticValidationError as e:
        errors = [f"{err['loc']}: {err['msg']}" for err in e.errors()]
        logger.warning("ai_structured_payload_rejected", errors=errors[:10])

    fallback = {key: value for key, value in data.items() if key != "structured"}
    try:
        return AIProposal.model_validate(fallback)
    except PydanticValidationError as e:
        logger.warning("ai_response_unusable", error=str(e)[:200])
        return AIProposal.informational(message)


def parse_catalog_items(raw: Union[str, bytes, List[Any], None]) -> List[CatalogItem]:
    """Parse and normalise AI-generated catalog items.

    Items need a name and a positive rate. Unknown categories become
    ``other``, unknown units become ``each``, rates are rounded to cents.
    Malformed output yields an empty list.
    """
    data = _load_json(raw)
    if isinstance(data, dict):
        data = data.get("items") or data.get("catalog") or []
    if not isinstance(data, list):
        logger.warning("ai_catalog_not_list", preview=str(raw)[:200])
        return []

    items: List[CatalogItem] = []
    for row in data:
        if not isinstance(row, dict):
            continue
        try:
            item = CatalogItem.model_validate(row)
        except PydanticValidationError:
            continue
        if not item.name or item.default_rate <= 0:
            continue
        items.append(item.model_copy(update={
            "category": item.category if item.category in VALID_CATEGORIES else "other",
            "unit": item.unit if item.unit in VALID_UNITS else "each",
            "default_rate": round2(item.default_rate),
        }))
    return items
