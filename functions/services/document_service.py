"""Document service for JobLedger.

Creation and mutation protocol for estimates, change orders, invoices
and work entries. Every mutation validates first, recomputes line-item
rollups and document totals with the acting user's tax rate, persists
in one atomic write and then records an audit entry.
"""

import re
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union
from uuid import uuid4

import structlog
from firebase_admin import firestore

from config.errors import ErrorCode, JobLedgerError, NotFoundError, ValidationError
from config.settings import settings
from models.document import (
    ChangeOrder,
    ChangeOrderStatus,
    ChangeOrderType,
    DOCUMENT_MODELS,
    DocumentTotals,
    DocumentType,
    Estimate,
    EstimateVersion,
    Invoice,
    STATUS_TIMESTAMP_FIELDS,
    STATUSES_BY_TYPE,
)
from models.draft import DRAFT_KEY_PREFIX, DocumentDraft, DraftType, WorkEntryDraft
from models.line_item import LineItem
from models.reconciliation import ProjectVarianceReport
from models.work_entry import WorkEntry, WorkEntryStatus
from services.audit_service import AuditService
from services.change_order_calculator import (
    apply_change_order,
    approved_change_order_impact,
    build_version,
    calculate_cost_impact,
    next_version_number,
)
from services.firestore_service import FirestoreService
from services.prompts import build_project_context
from services.rollup_engine import HierarchyIndex, flatten_with_totals
from services.totals_calculator import compute_document_totals, prepare_line_items
from services.variance_engine import build_project_report
from utils.document_logger import (
    log_approval_rejected,
    log_change_order_applied,
    log_document_committed,
)
from utils.money import round2, to_decimal
from validators.line_item_validator import validate_line_items, validate_work_entries

logger = structlog.get_logger()

INITIAL_VERSION_NOTES = "Initial estimate version"
UPDATED_VERSION_NOTES = "Estimate updated"


def parse_payment_terms(terms: Any) -> int:
    """Days until an invoice is due ("Net 30" -> 30, 15 -> 15)."""
    if isinstance(terms, (int, float)) and terms > 0:
        return int(terms)
    match = re.search(r"\d+", str(terms or ""))
    if match:
        return int(match.group())
    return settings.default_payment_terms_days


def assign_durable_ids(items: Sequence[LineItem], replace_all: bool = False) -> List[LineItem]:
    """Replace temporary draft keys with durable ids, remapping parent references."""
    new_ids = [
        uuid4().hex if replace_all or not item.id or item.id.startswith(DRAFT_KEY_PREFIX) else item.id
        for item in items
    ]
    mapping = {item.id: new_id for item, new_id in zip(items, new_ids) if item.id}

    return [
        item.model_copy(update={
            "id": new_id,
            "parent_id": mapping.get(item.parent_id, item.parent_id),
        })
        for item, new_id in zip(items, new_ids)
    ]


def document_type_of(value: str) -> DocumentType:
    """Parse a document type name.

    Raises:
        ValidationError: If the name is not a known document type.
    """
    try:
        return DocumentType(value)
    except ValueError:
        raise ValidationError(
            message=f"Unknown document type: {value}",
            errors=[f"documentType must be one of: {', '.join(t.value for t in DocumentType)}"],
            field="documentType"
        )


def _totals_dict(totals: DocumentTotals) -> Dict[str, Any]:
    return totals.model_dump(by_alias=True)


def _item_dicts(items: Sequence[LineItem]) -> List[Dict[str, Any]]:
    return [item.to_firestore_dict() for item in items]


def _sort_key(record: Dict[str, Any]) -> float:
    created_at = record.get("createdAt")
    if isinstance(created_at, datetime):
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        return created_at.timestamp()
    return 0.0


class DocumentService:
    """Business-document operations over the persistence collaborator."""

    def __init__(
        self,
        firestore_service: Optional[FirestoreService] = None,
        audit_service: Optional[AuditService] = None
    ):
        self.firestore = firestore_service or FirestoreService()
        self.audit = audit_service or AuditService(self.firestore)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def _tax_rate(self, user_id: str) -> float:
        profile = await self.firestore.get_user_profile(user_id)
        rate = profile.get("defaultTaxRate")
        return float(rate) if rate is not None else settings.default_tax_rate

    async def _require_project(self, project_id: str) -> Dict[str, Any]:
        project = await self.firestore.get_project(project_id)
        if project is None:
            raise NotFoundError("project", project_id)
        return project

    async def load_document(
        self,
        document_type: str,
        document_id: str
    ) -> Union[Estimate, ChangeOrder, Invoice]:
        """Fetch a document with its line items.

        Raises:
            NotFoundError: If the document does not exist.
        """
        data = await self.firestore.get_document(document_type, document_id)
        if data is None:
            raise NotFoundError(document_type, document_id)
        line_items = await self.firestore.get_line_items(document_type, document_id)
        model = DOCUMENT_MODELS[document_type_of(document_type)]
        return model.model_validate({**data, "lineItems": line_items})

    async def list_documents(
        self,
        document_type: str,
        project_id: str,
        with_line_items: bool = True
    ) -> List[Union[Estimate, ChangeOrder, Invoice]]:
        """All documents of one type in a project, highest number first."""
        model = DOCUMENT_MODELS[document_type_of(document_type)]
        documents = []
        for data in await self.firestore.list_documents(document_type, project_id):
            if with_line_items:
                data = {**data, "lineItems": await self.firestore.get_line_items(document_type, data["id"])}
            documents.append(model.model_validate(data))
        return sorted(documents, key=lambda d: d.number, reverse=True)

    async def _change_order_adjustment(self, estimate: Estimate) -> float:
        """Net impact of the change orders approved against an estimate."""
        change_orders = await self.list_documents(
            DocumentType.CHANGE_ORDER.value,
            estimate.project_id,
            with_line_items=False
        )
        return approved_change_order_impact(change_orders, estimate.id)

    async def _version_numbers(self, estimate_id: str) -> List[int]:
        versions = await self.firestore.list_versions(estimate_id)
        return [int(v.get("versionNumber") or 0) for v in versions]

    # ------------------------------------------------------------------
    # Draft commit
    # ------------------------------------------------------------------

    def _validate_items(self, draft_type: str, items: Sequence[LineItem], project_id: str) -> None:
        if not items:
            errors = ["At least one line item is required"]
            log_approval_rejected(draft_type, errors, project_id)
            raise ValidationError(message="Line item validation failed", errors=errors)

        result = validate_line_items(items)
        if not result.is_valid:
            log_approval_rejected(
                draft_type,
                result.errors,
                project_id,
                {"lineItems": _item_dicts(items)}
            )
            result.raise_if_invalid()

    async def _prepare(
        self,
        items: Sequence[LineItem],
        user_id: str
    ) -> Tuple[List[LineItem], DocumentTotals]:
        tax_rate = await self._tax_rate(user_id)
        prepared, totals = prepare_line_items(items, tax_rate)
        return assign_durable_ids(prepared, replace_all=True), totals

    async def create_estimate(self, project_id: str, user_id: str, draft: DocumentDraft) -> Estimate:
        """Persist an estimate draft with its initial version.

        Raises:
            ValidationError: Nothing is persisted.
            NotFoundError: If the project does not exist.
        """
        self._validate_items(DraftType.ESTIMATE.value, draft.line_items, project_id)
        await self._require_project(project_id)

        items, totals = await self._prepare(draft.line_items, user_id)
        number = await self.firestore.next_document_number(DocumentType.ESTIMATE.value, project_id)

        estimate = Estimate(
            project_id=project_id,
            number=number,
            title=draft.title or f"Estimate #{number}",
            notes=draft.notes,
            line_items=items,
        )
        estimate.apply_totals(totals)
        version = build_version(None, items, totals, 1, notes=INITIAL_VERSION_NOTES)

        estimate.id = await self.firestore.create_document(
            DocumentType.ESTIMATE.value,
            estimate.to_firestore_dict(),
            _item_dicts(items),
            version=version.to_firestore_dict()
        )

        await self.audit.record(
            project_id, user_id, "estimate_created", "estimate", estimate.id,
            {"number": number, "total": totals.total}
        )
        log_document_committed("estimate", estimate.id, number, len(items), _totals_dict(totals))
        return estimate

    async def create_change_order(self, project_id: str, user_id: str, draft: DocumentDraft) -> ChangeOrder:
        """Persist a change-order draft against an existing estimate.

        Raises:
            ValidationError: Nothing is persisted.
            NotFoundError: If the project or target estimate does not exist.
        """
        if not draft.estimate_id:
            errors = ["Change order must reference an estimate"]
            log_approval_rejected(DraftType.CHANGE_ORDER.value, errors, project_id)
            raise ValidationError(message="Change order validation failed", errors=errors, field="estimateId")
        self._validate_items(DraftType.CHANGE_ORDER.value, draft.line_items, project_id)

        await self._require_project(project_id)
        estimate = await self.firestore.get_document(DocumentType.ESTIMATE.value, draft.estimate_id)
        if estimate is None or estimate.get("projectId") != project_id:
            raise NotFoundError("estimate", draft.estimate_id)

        items, totals = await self._prepare(draft.line_items, user_id)
        number = await self.firestore.next_document_number(DocumentType.CHANGE_ORDER.value, project_id)

        change_order = ChangeOrder(
            project_id=project_id,
            estimate_id=draft.estimate_id,
            number=number,
            title=draft.title or f"Change Order #{number}",
            notes=draft.notes,
            line_items=items,
            cost_impact=calculate_cost_impact(items),
            change_order_type=draft.change_order_type or ChangeOrderType.CUSTOMER_REQUESTED,
        )
        change_order.apply_totals(totals)

        change_order.id = await self.firestore.create_document(
            DocumentType.CHANGE_ORDER.value,
            change_order.to_firestore_dict(),
            _item_dicts(items)
        )

        await self.audit.record(
            project_id, user_id, "change_order_created", "change_order", change_order.id,
            {
                "number": number,
                "estimateId": draft.estimate_id,
                "costImpact": change_order.cost_impact,
                "type": change_order.change_order_type,
            }
        )
        log_document_committed("change_order", change_order.id, number, len(items), _totals_dict(totals))
        return change_order

    async def create_invoice(
        self,
        project_id: str,
        user_id: str,
        draft: DocumentDraft,
        due_date: Optional[datetime] = None
    ) -> Invoice:
        """Persist an invoice draft; due date defaults from the user's payment terms.

        Raises:
            ValidationError: Nothing is persisted.
            NotFoundError: If the project does not exist.
        """
        self._validate_items(DraftType.INVOICE.value, draft.line_items, project_id)
        await self._require_project(project_id)

        profile = await self.firestore.get_user_profile(user_id)
        if due_date is None:
            days = parse_payment_terms(profile.get("paymentTerms"))
            due_date = datetime.now(timezone.utc) + timedelta(days=days)

        items, totals = await self._prepare(draft.line_items, user_id)
        number = await self.firestore.next_document_number(DocumentType.INVOICE.value, project_id)

        invoice = Invoice(
            project_id=project_id,
            number=number,
            notes=draft.notes,
            due_date=due_date,
            line_items=items,
        )
        invoice.apply_totals(totals)

        invoice.id = await self.firestore.create_document(
            DocumentType.INVOICE.value,
            invoice.to_firestore_dict(),
            _item_dicts(items)
        )

        await self.audit.record(
            project_id, user_id, "invoice_created", "invoice", invoice.id,
            {"number": number, "total": totals.total}
        )
        log_document_committed("invoice", invoice.id, number, len(items), _totals_dict(totals))
        return invoice

    async def _line_item_owners(self, project_id: str) -> Dict[str, str]:
        owners: Dict[str, str] = {}
        for estimate in await self.list_documents(DocumentType.ESTIMATE.value, project_id):
            for item in estimate.line_items:
                if item.id:
                    owners[item.id] = estimate.id
        return owners

    async def record_work_entries(
        self,
        project_id: str,
        user_id: str,
        draft: WorkEntryDraft
    ) -> List[WorkEntry]:
        """Persist approved work-entry draft rows in ``pending`` status.

        Raises:
            ValidationError: Nothing is persisted.
            NotFoundError: If a referenced estimate line item does not exist.
        """
        result = validate_work_entries(draft.work_entries)
        if not result.is_valid:
            log_approval_rejected(DraftType.WORK_ENTRY.value, result.errors, project_id)
            result.raise_if_invalid("Work entry validation failed")

        await self._require_project(project_id)
        owners = await self._line_item_owners(project_id)

        entries = []
        for item in draft.work_entries:
            estimate_id = owners.get(item.estimate_line_item_id)
            if estimate_id is None:
                raise NotFoundError("line_item", item.estimate_line_item_id)
            entries.append(WorkEntry(
                project_id=project_id,
                estimate_id=estimate_id,
                status=WorkEntryStatus.PENDING,
                **item.model_dump(),
            ))

        ids = await self.firestore.create_work_entries([e.to_firestore_dict() for e in entries])
        for entry, entry_id in zip(entries, ids):
            entry.id = entry_id

        await self.audit.record(
            project_id, user_id, "work_entries_created", "work_entry", ",".join(ids),
            {"count": len(ids)}
        )
        logger.info("work_entries_recorded", project_id=project_id, count=len(ids))
        return entries

    async def commit_draft(
        self,
        project_id: str,
        user_id: str,
        draft: Union[DocumentDraft, WorkEntryDraft]
    ) -> Any:
        """Persist an approved draft according to its type."""
        if isinstance(draft, WorkEntryDraft):
            return await self.record_work_entries(project_id, user_id, draft)
        if draft.type == DraftType.ESTIMATE.value:
            return await self.create_estimate(project_id, user_id, draft)
        if draft.type == DraftType.CHANGE_ORDER.value:
            return await self.create_change_order(project_id, user_id, draft)
        return await self.create_invoice(project_id, user_id, draft)

    # ------------------------------------------------------------------
    # Editing
    # ------------------------------------------------------------------

    async def replace_estimate_line_items(
        self,
        estimate_id: str,
        user_id: str,
        line_items: Sequence[LineItem]
    ) -> Estimate:
        """Replace all line items of an estimate and append a version.

        Totals keep the impact of change orders already approved against
        the estimate.

        Raises:
            ValidationError: Stored estimate is left untouched.
            NotFoundError: If the estimate does not exist.
        """
        estimate = await self.load_document(DocumentType.ESTIMATE.value, estimate_id)
        self._validate_items(DraftType.ESTIMATE.value, line_items, estimate.project_id)

        tax_rate = await self._tax_rate(user_id)
        adjustment = await self._change_order_adjustment(estimate)
        prepared, totals = prepare_line_items(assign_durable_ids(line_items), tax_rate, adjustment)
        version = build_version(
            estimate_id,
            prepared,
            totals,
            next_version_number(await self._version_numbers(estimate_id)),
            notes=UPDATED_VERSION_NOTES
        )

        await self.firestore.replace_line_items(
            DocumentType.ESTIMATE.value,
            estimate_id,
            _item_dicts(prepared),
            _totals_dict(totals),
            version=version.to_firestore_dict()
        )

        estimate.line_items = prepared
        estimate.apply_totals(totals)
        await self.audit.record(
            estimate.project_id, user_id, "estimate_updated", "estimate", estimate_id,
            {"versionNumber": version.version_number, "total": totals.total}
        )
        logger.info("estimate_line_items_replaced", estimate_id=estimate_id, version=version.version_number)
        return estimate

    async def delete_line_item(
        self,
        document_type: str,
        document_id: str,
        line_item_id: str,
        user_id: str
    ) -> Union[Estimate, Invoice]:
        """Delete one line item (and its children) and recompute totals.

        Estimate totals keep the impact of approved change orders.

        Raises:
            NotFoundError: If the document or line item does not exist.
        """
        if document_type not in (DocumentType.ESTIMATE.value, DocumentType.INVOICE.value):
            raise ValidationError(
                message=f"Line items cannot be deleted from a {document_type}",
                field="documentType"
            )
        document = await self.load_document(document_type, document_id)

        index = HierarchyIndex(document.line_items)
        if line_item_id not in index.items:
            raise NotFoundError("line_item", line_item_id)

        removed = set()
        stack = [line_item_id]
        while stack:
            key = stack.pop()
            if key in removed:
                continue
            removed.add(key)
            stack.extend(index.children_of(key))

        remaining = [item for item in document.line_items if item.id not in removed]
        tax_rate = await self._tax_rate(user_id)
        adjustment = 0.0
        if document_type == DocumentType.ESTIMATE.value:
            adjustment = await self._change_order_adjustment(document)
        remaining = flatten_with_totals(remaining)
        totals = compute_document_totals(remaining, tax_rate, adjustment)

        await self.firestore.replace_line_items(
            document_type,
            document_id,
            _item_dicts(remaining),
            _totals_dict(totals)
        )

        document.line_items = remaining
        document.apply_totals(totals)
        await self.audit.record(
            document.project_id, user_id, "line_item_deleted", document_type, document_id,
            {"lineItemIds": sorted(removed)}
        )
        return document

    async def update_status(
        self,
        document_type: str,
        document_id: str,
        status: str,
        user_id: str
    ) -> Union[Estimate, ChangeOrder, Invoice]:
        """Move a document to a new status, stamping sentAt/approvedAt/paidAt.

        Approving a change order applies it to its estimate.

        Raises:
            ValidationError: If the status is not valid for the document type.
            NotFoundError: If the document does not exist.
        """
        allowed = [s.value for s in STATUSES_BY_TYPE[document_type_of(document_type)]]
        if status not in allowed:
            raise ValidationError(
                message=f"Invalid {document_type} status: {status}",
                errors=[f"Status must be one of: {', '.join(allowed)}"],
                field="status"
            )

        if document_type == DocumentType.CHANGE_ORDER.value and status == ChangeOrderStatus.APPROVED.value:
            return await self.approve_change_order(document_id, user_id)

        document = await self.load_document(document_type, document_id)
        update: Dict[str, Any] = {"status": status}
        stamp_field = STATUS_TIMESTAMP_FIELDS.get(status)
        if stamp_field:
            update[stamp_field] = firestore.SERVER_TIMESTAMP

        await self.firestore.update_document(document_type, document_id, update)
        document.status = status

        await self.audit.record(
            document.project_id, user_id, f"{document_type}_{status}", document_type, document_id
        )
        return document

    async def approve_change_order(self, change_order_id: str, user_id: str) -> ChangeOrder:
        """Approve a change order and apply its cost impact to the estimate.

        Raises:
            NotFoundError: If the change order or its estimate does not exist.
            JobLedgerError: If the change order was already approved.
        """
        change_order = await self.load_document(DocumentType.CHANGE_ORDER.value, change_order_id)
        if change_order.status == ChangeOrderStatus.APPROVED.value:
            raise JobLedgerError(
                code=ErrorCode.INVALID_FIELD,
                message="Change order is already approved",
                details={"change_order_id": change_order_id}
            )

        estimate = await self.load_document(DocumentType.ESTIMATE.value, change_order.estimate_id)
        tax_rate = await self._tax_rate(user_id)
        totals, version = apply_change_order(
            estimate,
            change_order,
            tax_rate,
            await self._version_numbers(estimate.id)
        )
        cost_impact = round2(to_decimal(totals.subtotal) - to_decimal(estimate.subtotal))

        await self.firestore.apply_change_order(
            estimate.id,
            change_order.id,
            _totals_dict(totals),
            {
                "status": ChangeOrderStatus.APPROVED.value,
                "approvedAt": firestore.SERVER_TIMESTAMP,
                "costImpact": cost_impact,
            },
            version.to_firestore_dict()
        )

        await self.audit.record(
            change_order.project_id, user_id, "change_order_approved", "change_order", change_order.id,
            {
                "estimateId": estimate.id,
                "costImpact": cost_impact,
                "versionNumber": version.version_number,
            }
        )
        log_change_order_applied(
            estimate.id, change_order.id, cost_impact,
            estimate.total, totals.total, version.version_number
        )

        change_order.status = ChangeOrderStatus.APPROVED.value
        change_order.cost_impact = cost_impact
        return change_order

    async def review_work_entry(self, work_entry_id: str, status: str, user_id: str) -> WorkEntry:
        """Human confirmation of a pending work entry.

        Raises:
            ValidationError: If status is not approved/rejected.
            NotFoundError: If the work entry does not exist.
        """
        if status not in (WorkEntryStatus.APPROVED.value, WorkEntryStatus.REJECTED.value):
            raise ValidationError(
                message=f"Invalid work entry status: {status}",
                errors=["Status must be one of: approved, rejected"],
                field="status"
            )

        data = await self.firestore.get_work_entry(work_entry_id)
        if data is None:
            raise NotFoundError("work_entry", work_entry_id)
        entry = WorkEntry.model_validate(data)

        await self.firestore.update_work_entry(work_entry_id, {
            "status": status,
            "reviewedAt": firestore.SERVER_TIMESTAMP,
        })
        entry.status = status

        await self.audit.record(
            entry.project_id, user_id, f"work_entry_{status}", "work_entry", work_entry_id,
            {"actualTotal": entry.actual_total}
        )
        return entry

    async def delete_estimate(self, estimate_id: str, user_id: str) -> None:
        """Delete an estimate with its line items and versions."""
        data = await self.firestore.get_document(DocumentType.ESTIMATE.value, estimate_id)
        if data is None:
            raise NotFoundError("estimate", estimate_id)
        await self.firestore.delete_document(DocumentType.ESTIMATE.value, estimate_id)
        await self.audit.record(data.get("projectId"), user_id, "estimate_deleted", "estimate", estimate_id)

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    async def list_versions(self, estimate_id: str) -> List[EstimateVersion]:
        """Versions of an estimate, ascending."""
        if await self.firestore.get_document(DocumentType.ESTIMATE.value, estimate_id) is None:
            raise NotFoundError("estimate", estimate_id)
        versions = await self.firestore.list_versions(estimate_id)
        return [
            EstimateVersion.model_validate({**v, "estimateId": estimate_id})
            for v in sorted(versions, key=lambda v: v.get("versionNumber") or 0)
        ]

    async def get_reconciliation(self, project_id: str) -> ProjectVarianceReport:
        """Estimated versus approved actual cost for every estimate of a project."""
        await self._require_project(project_id)
        estimates = await self.list_documents(DocumentType.ESTIMATE.value, project_id)
        change_orders = await self.list_documents(
            DocumentType.CHANGE_ORDER.value,
            project_id,
            with_line_items=False
        )
        entries = [
            WorkEntry.model_validate(data)
            for data in await self.firestore.list_work_entries(project_id)
        ]
        return build_project_report(
            project_id,
            sorted(estimates, key=lambda e: e.number),
            entries,
            change_orders
        )

    async def get_project_history(self, project_id: str) -> List[Dict[str, Any]]:
        """Audit records merged with estimate version events, newest first."""
        await self._require_project(project_id)
        events: List[Dict[str, Any]] = []

        for record in await self.firestore.list_audit_logs(project_id, settings.audit_log_limit):
            events.append({
                "id": record.get("id"),
                "source": "audit",
                "action": record.get("action"),
                "entityType": record.get("entityType"),
                "entityId": record.get("entityId"),
                "userId": record.get("userId"),
                "details": record.get("details"),
                "createdAt": record.get("createdAt"),
            })

        for estimate in await self.list_documents(DocumentType.ESTIMATE.value, project_id, with_line_items=False):
            for version in await self.firestore.list_versions(estimate.id):
                number = int(version.get("versionNumber") or 0)
                events.append({
                    "id": version.get("id"),
                    "source": "version",
                    "action": "estimate_created" if number == 1 else "estimate_updated",
                    "entityType": "estimate",
                    "entityId": estimate.id,
                    "details": {
                        "estimateNumber": estimate.number,
                        "versionNumber": number,
                        "total": version.get("total"),
                        "changeOrderId": version.get("changeOrderId"),
                        "notes": version.get("notes"),
                    },
                    "createdAt": version.get("createdAt"),
                })

        events.sort(key=_sort_key, reverse=True)
        return events

    async def get_project_context(self, project_id: str) -> str:
        """Project summary text for the AI collaborator."""
        project = await self._require_project(project_id)
        return build_project_context(
            project,
            await self.list_documents(DocumentType.ESTIMATE.value, project_id),
            await self.list_documents(DocumentType.CHANGE_ORDER.value, project_id, with_line_items=False),
            await self.list_documents(DocumentType.INVOICE.value, project_id, with_line_items=False),
        )
