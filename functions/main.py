"""Cloud Function entry points for JobLedger.

Provides HTTP endpoints for:
- Processing a chat message into a draft (and approving / discarding it)
- Editing estimates, deleting line items and moving document statuses
- Approving change orders and reviewing work entries
- Reconciliation, project history and estimate versions
- Generating, saving and listing the service catalog
"""

import asyncio
import json
from typing import Any, Awaitable, Callable, Dict, List
from datetime import datetime, date

import structlog
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from firebase_functions import https_fn, options
from firebase_admin import initialize_app

from config.settings import settings
from config.errors import ErrorCode, JobLedgerError, NotFoundError, ValidationError
from models.line_item import LineItem
from services.ai_service import DocumentAIService
from services.catalog_service import CatalogService
from services.document_service import DocumentService
from services.draft_protocol import ConversationGenerations, DraftSession, decision_to_dict

# Initialize Firebase Admin SDK
try:
    initialize_app()
except ValueError:
    # Already initialized
    pass

logger = structlog.get_logger()

# ============================================================================
# Helper Functions
# ============================================================================


def success_response(data: Dict[str, Any]) -> Dict[str, Any]:
    """Build success response."""
    return {"success": True, "data": data}


def error_response(code: str, message: str, details: Dict[str, Any] = None) -> Dict[str, Any]:
    """Build error response."""
    return {
        "success": False,
        "error": {
            "code": code,
            "message": message,
            "details": details or {}
        }
    }


def get_request_json(req: https_fn.Request) -> Dict[str, Any]:
    """Extract JSON from request body.

    Raises:
        ValidationError: If JSON is invalid.
    """
    try:
        return req.get_json(force=True) or {}
    except Exception as e:
        raise ValidationError(
            message=f"Invalid JSON in request body: {str(e)}"
        )


def require_fields(data: Dict[str, Any], *fields: str) -> None:
    """Raise ValidationError for the first missing field."""
    for field in fields:
        if not data.get(field):
            raise ValidationError(
                message=f"Missing {field} in request",
                field=field
            )


def to_json(value: Any) -> Any:
    """Serialise models (camelCase) and lists of models for responses."""
    if isinstance(value, BaseModel):
        return value.model_dump(by_alias=True, exclude_none=True, mode="json")
    if isinstance(value, list):
        return [to_json(v) for v in value]
    return value


def status_for(error: JobLedgerError) -> int:
    """HTTP status for a JobLedger error."""
    if isinstance(error, ValidationError):
        return 400
    if isinstance(error, NotFoundError):
        return 404
    if error.code == ErrorCode.INVALID_FIELD:
        return 400
    return 500


def _handle(
    req: https_fn.Request,
    event: str,
    action: Callable[[Dict[str, Any]], Awaitable[Dict[str, Any]]]
) -> https_fn.Response:
    """Run an async action for a JSON request and map errors to responses."""
    if req.method == "OPTIONS":
        return _cors_response()

    try:
        data = get_request_json(req)
        result = asyncio.run(action(data))
        return _json_response(success_response(result))

    except JobLedgerError as e:
        status = status_for(e)
        if status >= 500:
            logger.error(f"{event}_error", error=e.message, code=e.code)
        else:
            logger.info(f"{event}_rejected", error=e.message, code=e.code)
        return _json_response(
            error_response(e.code, e.message, e.details),
            status=status
        )
    except PydanticValidationError as e:
        error = ValidationError(
            message="Invalid request data",
            errors=[
                f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}"
                for err in e.errors()
            ]
        )
        logger.info(f"{event}_rejected", error=error.message, code=error.code)
        return _json_response(
            error_response(error.code, error.message, error.details),
            status=400
        )
    except Exception as e:
        logger.exception(f"{event}_exception", error=str(e))
        return _json_response(
            error_response(
                ErrorCode.FIRESTORE_ERROR,
                f"Request failed: {str(e)}"
            ),
            status=500
        )


# ============================================================================
# Conversation / Draft Entry Points
# ============================================================================


@https_fn.on_request(
    timeout_sec=120,
    memory=options.MemoryOption.MB_512,
    region="us-central1"
)
def process_message(req: https_fn.Request) -> https_fn.Response:
    """Run one chat turn through the AI and update the pending draft.

    Request body:
    {
        "userId": "user-123",
        "projectId": "proj-xxx",
        "message": "Add a tile backsplash, 30 sqft",
        "draftState": {...}  // From the previous response, optional
    }

    Response:
    {
        "success": true,
        "data": {
            "decision": "new_document" | "modify_draft" | "informational" | "dropped",
            "message": "...",
            "draftState": {"draft": {...}, "generation": 3, "keyCounter": 8}
        }
    }
    """
    return _handle(req, "process_message", _process_message_async)


async def _process_message_async(data: Dict[str, Any]) -> Dict[str, Any]:
    require_fields(data, "userId", "projectId", "message")
    user_id = data["userId"]
    project_id = data["projectId"]
    message = data["message"]

    document_service = DocumentService()
    firestore_service = document_service.firestore

    project_context = await document_service.get_project_context(project_id)
    catalog = await CatalogService(firestore_service).list_items(user_id)
    history = await firestore_service.list_messages(project_id, settings.conversation_history_limit)

    session = DraftSession.from_state(data.get("draftState"))
    decision = await session.process_message(
        DocumentAIService(),
        message,
        catalog,
        project_context,
        history,
        generations=ConversationGenerations(firestore_service, project_id)
    )

    await firestore_service.add_message(project_id, "user", message)
    reply = decision_to_dict(decision)
    if reply.get("message"):
        await firestore_service.add_message(project_id, "assistant", reply["message"])

    logger.info(
        "message_processed",
        project_id=project_id,
        decision=reply["decision"],
        generation=session.generation
    )
    return {**reply, "draftState": session.to_state()}


@https_fn.on_request(
    timeout_sec=60,
    memory=options.MemoryOption.MB_256,
    region="us-central1"
)
def approve_draft(req: https_fn.Request) -> https_fn.Response:
    """Persist the pending draft as a document (or work entries).

    Request body:
    {
        "userId": "user-123",
        "projectId": "proj-xxx",
        "draftState": {...},
        "expectedType": "estimate"  // Optional
    }
    """
    return _handle(req, "approve_draft", _approve_draft_async)


async def _approve_draft_async(data: Dict[str, Any]) -> Dict[str, Any]:
    require_fields(data, "userId", "projectId")
    session = DraftSession.from_state(data.get("draftState"))
    document_service = DocumentService()

    result = await session.approve(
        document_service,
        data["projectId"],
        data["userId"],
        expected_type=data.get("expectedType")
    )
    if result is None:
        return {"approved": False, "draftState": session.to_state()}

    generations = ConversationGenerations(document_service.firestore, data["projectId"])
    session.generation = await generations.bump()
    return {"approved": True, "document": to_json(result), "draftState": session.to_state()}


@https_fn.on_request(
    timeout_sec=30,
    memory=options.MemoryOption.MB_256,
    region="us-central1"
)
def discard_draft(req: https_fn.Request) -> https_fn.Response:
    """Drop the pending draft. Nothing is persisted.

    Request body:
    {
        "projectId": "proj-xxx",
        "draftState": {...}
    }
    """
    return _handle(req, "discard_draft", _discard_draft_async)


async def _discard_draft_async(data: Dict[str, Any]) -> Dict[str, Any]:
    require_fields(data, "projectId")
    session = DraftSession.from_state(data.get("draftState"))
    session.discard()

    generations = ConversationGenerations(DocumentService().firestore, data["projectId"])
    session.generation = await generations.bump()
    return {"draftState": session.to_state()}


# ============================================================================
# Document Entry Points
# ============================================================================


@https_fn.on_request(
    timeout_sec=60,
    memory=options.MemoryOption.MB_256,
    region="us-central1"
)
def update_estimate_line_items(req: https_fn.Request) -> https_fn.Response:
    """Replace all line items of an estimate.

    Request body:
    {
        "userId": "user-123",
        "estimateId": "est-xxx",
        "lineItems": [{...}, ...]
    }
    """
    return _handle(req, "update_estimate_line_items", _update_estimate_line_items_async)


async def _update_estimate_line_items_async(data: Dict[str, Any]) -> Dict[str, Any]:
    require_fields(data, "userId", "estimateId")
    line_items: List[LineItem] = [LineItem.model_validate(item) for item in data.get("lineItems") or []]
    estimate = await DocumentService().replace_estimate_line_items(
        data["estimateId"],
        data["userId"],
        line_items
    )
    return to_json(estimate)


@https_fn.on_request(
    timeout_sec=60,
    memory=options.MemoryOption.MB_256,
    region="us-central1"
)
def delete_line_item(req: https_fn.Request) -> https_fn.Response:
    """Delete one line item (and its children) from an estimate or invoice.

    Request body:
    {
        "userId": "user-123",
        "documentType": "estimate" | "invoice",
        "documentId": "est-xxx",
        "lineItemId": "li-xxx"
    }
    """
    return _handle(req, "delete_line_item", _delete_line_item_async)


async def _delete_line_item_async(data: Dict[str, Any]) -> Dict[str, Any]:
    require_fields(data, "userId", "documentType", "documentId", "lineItemId")
    document = await DocumentService().delete_line_item(
        data["documentType"],
        data["documentId"],
        data["lineItemId"],
        data["userId"]
    )
    return to_json(document)


@https_fn.on_request(
    timeout_sec=60,
    memory=options.MemoryOption.MB_256,
    region="us-central1"
)
def update_document_status(req: https_fn.Request) -> https_fn.Response:
    """Move an estimate, change order or invoice to a new status.

    Request body:
    {
        "userId": "user-123",
        "documentType": "estimate" | "change_order" | "invoice",
        "documentId": "xxx",
        "status": "sent"
    }
    """
    return _handle(req, "update_document_status", _update_document_status_async)


async def _update_document_status_async(data: Dict[str, Any]) -> Dict[str, Any]:
    require_fields(data, "userId", "documentType", "documentId", "status")
    document = await DocumentService().update_status(
        data["documentType"],
        data["documentId"],
        data["status"],
        data["userId"]
    )
    result = to_json(document)
    if hasattr(document, "is_overdue"):
        result["isOverdue"] = document.is_overdue()
    return result


@https_fn.on_request(
    timeout_sec=60,
    memory=options.MemoryOption.MB_256,
    region="us-central1"
)
def approve_change_order(req: https_fn.Request) -> https_fn.Response:
    """Approve a change order and apply it to its estimate.

    Request body:
    {
        "userId": "user-123",
        "changeOrderId": "co-xxx"
    }
    """
    return _handle(req, "approve_change_order", _approve_change_order_async)


async def _approve_change_order_async(data: Dict[str, Any]) -> Dict[str, Any]:
    require_fields(data, "userId", "changeOrderId")
    change_order = await DocumentService().approve_change_order(data["changeOrderId"], data["userId"])
    return to_json(change_order)


@https_fn.on_request(
    timeout_sec=30,
    memory=options.MemoryOption.MB_256,
    region="us-central1"
)
def review_work_entry(req: https_fn.Request) -> https_fn.Response:
    """Approve or reject a pending work entry.

    Request body:
    {
        "userId": "user-123",
        "workEntryId": "we-xxx",
        "status": "approved" | "rejected"
    }
    """
    return _handle(req, "review_work_entry", _review_work_entry_async)


async def _review_work_entry_async(data: Dict[str, Any]) -> Dict[str, Any]:
    require_fields(data, "userId", "workEntryId", "status")
    entry = await DocumentService().review_work_entry(data["workEntryId"], data["status"], data["userId"])
    return to_json(entry)


@https_fn.on_request(
    timeout_sec=60,
    memory=options.MemoryOption.MB_256,
    region="us-central1"
)
def delete_estimate(req: https_fn.Request) -> https_fn.Response:
    """Delete an estimate with its line items and versions.

    Request body:
    {
        "estimateId": "est-xxx",
        "userId": "user-123"
    }
    """
    return _handle(req, "delete_estimate", _delete_estimate_async)


async def _delete_estimate_async(data: Dict[str, Any]) -> Dict[str, Any]:
    require_fields(data, "userId", "estimateId")
    await DocumentService().delete_estimate(data["estimateId"], data["userId"])
    return {"deleted": True}


# ============================================================================
# Reporting Entry Points
# ============================================================================


@https_fn.on_request(
    timeout_sec=60,
    memory=options.MemoryOption.MB_256,
    region="us-central1"
)
def get_reconciliation(req: https_fn.Request) -> https_fn.Response:
    """Estimated versus approved actual cost for a project.

    Request body:
    {
        "projectId": "proj-xxx"
    }
    """
    return _handle(req, "get_reconciliation", _get_reconciliation_async)


async def _get_reconciliation_async(data: Dict[str, Any]) -> Dict[str, Any]:
    require_fields(data, "projectId")
    report = await DocumentService().get_reconciliation(data["projectId"])
    return to_json(report)


@https_fn.on_request(
    timeout_sec=30,
    memory=options.MemoryOption.MB_256,
    region="us-central1"
)
def get_project_history(req: https_fn.Request) -> https_fn.Response:
    """Audit and version events of a project, newest first."""
    return _handle(req, "get_project_history", _get_project_history_async)


async def _get_project_history_async(data: Dict[str, Any]) -> Dict[str, Any]:
    require_fields(data, "projectId")
    events = await DocumentService().get_project_history(data["projectId"])
    return {"events": events}


@https_fn.on_request(
    timeout_sec=30,
    memory=options.MemoryOption.MB_256,
    region="us-central1"
)
def list_estimate_versions(req: https_fn.Request) -> https_fn.Response:
    """Versions of an estimate in ascending order."""
    return _handle(req, "list_estimate_versions", _list_estimate_versions_async)


async def _list_estimate_versions_async(data: Dict[str, Any]) -> Dict[str, Any]:
    require_fields(data, "estimateId")
    versions = await DocumentService().list_versions(data["estimateId"])
    return {"versions": to_json(versions)}


@https_fn.on_request(
    timeout_sec=120,
    memory=options.MemoryOption.MB_512,
    region="us-central1"
)
def generate_catalog(req: https_fn.Request) -> https_fn.Response:
    """Turn a free-text description of services into catalog items.

    Request body:
    {
        "description": "I do kitchen remodels, $85/hr for carpentry..."
    }
    """
    return _handle(req, "generate_catalog", _generate_catalog_async)


async def _generate_catalog_async(data: Dict[str, Any]) -> Dict[str, Any]:
    require_fields(data, "description")
    items = await DocumentAIService().generate_catalog_from_description(data["description"])
    return {"items": to_json(items)}


@https_fn.on_request(
    timeout_sec=30,
    memory=options.MemoryOption.MB_256,
    region="us-central1"
)
def save_catalog(req: https_fn.Request) -> https_fn.Response:
    """Add catalog items and mark onboarding done.

    Request body:
    {
        "userId": "user-123",
        "items": [{"name": "Carpentry", "category": "framing", "unit": "hour", "defaultRate": 85}]
    }
    """
    return _handle(req, "save_catalog", _save_catalog_async)


async def _save_catalog_async(data: Dict[str, Any]) -> Dict[str, Any]:
    require_fields(data, "userId", "items")
    items = await CatalogService().save_items(data["userId"], data["items"])
    return {"items": to_json(items)}


@https_fn.on_request(
    timeout_sec=30,
    memory=options.MemoryOption.MB_256,
    region="us-central1"
)
def replace_catalog(req: https_fn.Request) -> https_fn.Response:
    """Replace the whole catalog (an empty list clears it).

    Request body:
    {
        "userId": "user-123",
        "items": [...]
    }
    """
    return _handle(req, "replace_catalog", _replace_catalog_async)


async def _replace_catalog_async(data: Dict[str, Any]) -> Dict[str, Any]:
    require_fields(data, "userId")
    items = await CatalogService().replace_items(data["userId"], data.get("items") or [])
    return {"items": to_json(items)}


@https_fn.on_request(
    timeout_sec=30,
    memory=options.MemoryOption.MB_256,
    region="us-central1"
)
def list_catalog(req: https_fn.Request) -> https_fn.Response:
    """Active catalog items of a user, grouped by category."""
    return _handle(req, "list_catalog", _list_catalog_async)


async def _list_catalog_async(data: Dict[str, Any]) -> Dict[str, Any]:
    require_fields(data, "userId")
    items = await CatalogService().list_items(data["userId"])
    return {"items": to_json(items)}


CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
    "Access-Control-Max-Age": "3600"
}


def _cors_response() -> https_fn.Response:
    """Return CORS preflight response."""
    return https_fn.Response(
        "",
        status=204,
        headers=CORS_HEADERS
    )


def _json_response(data: dict, status: int = 200) -> https_fn.Response:
    """Return JSON response with CORS headers."""

    def _json_default(o: Any):
        """JSON serializer for Firestore timestamps and other non-JSON values."""
        if isinstance(o, (datetime, date)):
            return o.isoformat()
        return str(o)

    return https_fn.Response(
        json.dumps(data, default=_json_default),
        status=status,
        mimetype="application/json",
        headers=CORS_HEADERS
    )
