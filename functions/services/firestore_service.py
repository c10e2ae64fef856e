"""Firestore service for JobLedger.

Persistence collaborator: documents, line items, estimate versions,
work entries, audit logs, user profiles and conversation messages.

Layout:
  /users/{userId}                      profile (defaultTaxRate, paymentTerms)
  /users/{userId}/catalog/{itemId}     service catalog
  /projects/{projectId}                draftGeneration counter
  /projects/{projectId}/messages/{id}  conversation
  /estimates|changeOrders|invoices/{id}
      /lineItems/{lineItemId}
      /versions/{versionId}            (estimates only, append-only)
  /workEntries/{id}
  /auditLogs/{id}
"""

from typing import Dict, Any, Optional, List, Sequence
import inspect
import structlog

from firebase_admin import firestore

from config.errors import JobLedgerError, ErrorCode

logger = structlog.get_logger()


class FirestoreService:
    """Service for Firestore operations.

    Multi-row writes (document + line items + version) go through a single
    batch so readers never see stored totals that disagree with stored
    line items.

    Note: Firebase Admin SDK for Python is synchronous. Methods are
    marked async for interface compatibility but operations are sync.
    """

    COLLECTION_USERS = "users"
    COLLECTION_PROJECTS = "projects"
    COLLECTION_ESTIMATES = "estimates"
    COLLECTION_CHANGE_ORDERS = "changeOrders"
    COLLECTION_INVOICES = "invoices"
    COLLECTION_WORK_ENTRIES = "workEntries"
    COLLECTION_AUDIT_LOGS = "auditLogs"
    SUBCOLLECTION_LINE_ITEMS = "lineItems"
    SUBCOLLECTION_VERSIONS = "versions"
    SUBCOLLECTION_CATALOG = "catalog"
    SUBCOLLECTION_MESSAGES = "messages"

    # Document type -> top-level collection
    DOCUMENT_COLLECTIONS = {
        "estimate": COLLECTION_ESTIMATES,
        "change_order": COLLECTION_CHANGE_ORDERS,
        "invoice": COLLECTION_INVOICES,
    }

    def __init__(self, db=None):
        """Initialize FirestoreService.

        Args:
            db: Optional Firestore client. If not provided, uses default.
        """
        self._db = db

    @property
    def db(self):
        """Get Firestore client (lazy initialization)."""
        if self._db is None:
            self._db = firestore.client()
        return self._db

    async def _maybe_await(self, result: Any) -> Any:
        """Await result if it is awaitable (supports AsyncMock in unit tests)."""
        if inspect.isawaitable(result):
            return await result
        return result

    def collection_for(self, document_type: str) -> str:
        """Top-level collection name for a document type."""
        try:
            return self.DOCUMENT_COLLECTIONS[document_type]
        except KeyError:
            raise JobLedgerError(
                code=ErrorCode.INVALID_FIELD,
                message=f"Unknown document type: {document_type}",
                details={"document_type": document_type}
            )

    def _document_ref(self, document_type: str, document_id: str):
        return self.db.collection(self.collection_for(document_type)).document(document_id)

    @staticmethod
    def _snapshot_dict(doc) -> Dict[str, Any]:
        return {"id": doc.id, **(doc.to_dict() or {})}

    async def _get(self, doc_ref, what: str, **context) -> Optional[Dict[str, Any]]:
        try:
            doc = await self._maybe_await(doc_ref.get())
            if doc.exists:
                return self._snapshot_dict(doc)
            return None
        except Exception as e:
            logger.error("firestore_get_failed", entity=what, error=str(e), **context)
            raise JobLedgerError(
                code=ErrorCode.FIRESTORE_ERROR,
                message=f"Failed to get {what}: {str(e)}",
                details=context
            )

    async def _query(self, query, what: str, **context) -> List[Dict[str, Any]]:
        try:
            docs = await self._maybe_await(query.stream())
            return [self._snapshot_dict(doc) for doc in docs]
        except Exception as e:
            logger.error("firestore_query_failed", entity=what, error=str(e), **context)
            raise JobLedgerError(
                code=ErrorCode.FIRESTORE_ERROR,
                message=f"Failed to list {what}: {str(e)}",
                details=context
            )

    async def _commit(self, batch, what: str, **context) -> None:
        try:
            await self._maybe_await(batch.commit())
        except Exception as e:
            logger.error("firestore_batch_failed", entity=what, error=str(e), **context)
            raise JobLedgerError(
                code=ErrorCode.FIRESTORE_WRITE_FAILED,
                message=f"Failed to write {what}: {str(e)}",
                details=context
            )

    # ------------------------------------------------------------------
    # Users, projects, catalog
    # ------------------------------------------------------------------

    async def get_user_profile(self, user_id: str) -> Dict[str, Any]:
        """Fetch the user's profile (empty dict if missing)."""
        doc_ref = self.db.collection(self.COLLECTION_USERS).document(user_id)
        return await self._get(doc_ref, "user profile", user_id=user_id) or {}

    async def get_project(self, project_id: str) -> Optional[Dict[str, Any]]:
        """Fetch project document by ID."""
        doc_ref = self.db.collection(self.COLLECTION_PROJECTS).document(project_id)
        return await self._get(doc_ref, "project", project_id=project_id)

    async def list_catalog_items(self, user_id: str) -> List[Dict[str, Any]]:
        """Active service catalog items of a user."""
        query = (
            self.db
            .collection(self.COLLECTION_USERS)
            .document(user_id)
            .collection(self.SUBCOLLECTION_CATALOG)
            .where(filter=firestore.FieldFilter("isActive", "==", True))
        )
        return await self._query(query, "catalog items", user_id=user_id)

    async def save_catalog_items(self, user_id: str, items: Sequence[Dict[str, Any]]) -> List[str]:
        """Add catalog items and mark the user's onboarding done, in one batch."""
        user_ref = self.db.collection(self.COLLECTION_USERS).document(user_id)
        catalog_ref = user_ref.collection(self.SUBCOLLECTION_CATALOG)
        batch = self.db.batch()
        ids = []
        for item in items:
            item_ref = catalog_ref.document()
            batch.set(item_ref, {**item, "createdAt": firestore.SERVER_TIMESTAMP})
            ids.append(item_ref.id)
        batch.set(user_ref, {"onboardingDone": True}, merge=True)
        await self._commit(batch, "catalog items", user_id=user_id)
        return ids

    async def replace_catalog_items(self, user_id: str, items: Sequence[Dict[str, Any]]) -> List[str]:
        """Replace the whole catalog of a user in one batch."""
        catalog_ref = (
            self.db
            .collection(self.COLLECTION_USERS)
            .document(user_id)
            .collection(self.SUBCOLLECTION_CATALOG)
        )
        existing = await self._query(catalog_ref, "catalog items", user_id=user_id)
        batch = self.db.batch()
        for item in existing:
            batch.delete(catalog_ref.document(item["id"]))
        ids = []
        for item in items:
            item_ref = catalog_ref.document()
            batch.set(item_ref, {**item, "createdAt": firestore.SERVER_TIMESTAMP})
            ids.append(item_ref.id)
        await self._commit(batch, "catalog items", user_id=user_id)
        return ids

    # ------------------------------------------------------------------
    # Documents and line items
    # ------------------------------------------------------------------

    async def get_document(self, document_type: str, document_id: str) -> Optional[Dict[str, Any]]:
        """Fetch an estimate, change order or invoice (without line items)."""
        return await self._get(
            self._document_ref(document_type, document_id),
            document_type,
            document_id=document_id
        )

    async def get_line_items(self, document_type: str, document_id: str) -> List[Dict[str, Any]]:
        """Line items of a document in sortOrder."""
        query = (
            self._document_ref(document_type, document_id)
            .collection(self.SUBCOLLECTION_LINE_ITEMS)
            .order_by("sortOrder")
        )
        return await self._query(query, "line items", document_id=document_id)

    async def list_documents(self, document_type: str, project_id: str) -> List[Dict[str, Any]]:
        """All documents of one type in a project."""
        query = (
            self.db
            .collection(self.collection_for(document_type))
            .where(filter=firestore.FieldFilter("projectId", "==", project_id))
        )
        return await self._query(query, document_type, project_id=project_id)

    async def next_document_number(self, document_type: str, project_id: str) -> int:
        """max(existing number) + 1 for this project and document type."""
        documents = await self.list_documents(document_type, project_id)
        return max((int(doc.get("number") or 0) for doc in documents), default=0) + 1

    def _set_line_items(self, batch, doc_ref, line_items: Sequence[Dict[str, Any]]) -> None:
        items_ref = doc_ref.collection(self.SUBCOLLECTION_LINE_ITEMS)
        for item in line_items:
            data = {k: v for k, v in item.items() if k != "id"}
            item_ref = items_ref.document(item["id"]) if item.get("id") else items_ref.document()
            batch.set(item_ref, data)

    def _add_version(self, batch, doc_ref, version: Optional[Dict[str, Any]]) -> None:
        if version is None:
            return
        version_ref = doc_ref.collection(self.SUBCOLLECTION_VERSIONS).document()
        batch.set(version_ref, {**version, "createdAt": firestore.SERVER_TIMESTAMP})

    async def create_document(
        self,
        document_type: str,
        data: Dict[str, Any],
        line_items: Sequence[Dict[str, Any]],
        version: Optional[Dict[str, Any]] = None
    ) -> str:
        """Create a document, its line items and (optionally) its first version atomically.

        Returns:
            The new document ID.
        """
        doc_ref = self.db.collection(self.collection_for(document_type)).document()
        batch = self.db.batch()
        batch.set(doc_ref, {
            **data,
            "createdAt": firestore.SERVER_TIMESTAMP,
            "updatedAt": firestore.SERVER_TIMESTAMP
        })
        self._set_line_items(batch, doc_ref, line_items)
        self._add_version(batch, doc_ref, version)

        await self._commit(batch, document_type, project_id=data.get("projectId"))
        logger.info(
            "document_persisted",
            document_type=document_type,
            document_id=doc_ref.id,
            line_items=len(line_items)
        )
        return doc_ref.id

    async def replace_line_items(
        self,
        document_type: str,
        document_id: str,
        line_items: Sequence[Dict[str, Any]],
        totals: Dict[str, Any],
        version: Optional[Dict[str, Any]] = None
    ) -> None:
        """Delete all line items, recreate the new set and update totals in one batch."""
        doc_ref = self._document_ref(document_type, document_id)
        existing = await self._query(
            doc_ref.collection(self.SUBCOLLECTION_LINE_ITEMS),
            "line items",
            document_id=document_id
        )

        batch = self.db.batch()
        items_ref = doc_ref.collection(self.SUBCOLLECTION_LINE_ITEMS)
        for item in existing:
            batch.delete(items_ref.document(item["id"]))
        self._set_line_items(batch, doc_ref, line_items)
        batch.update(doc_ref, {**totals, "updatedAt": firestore.SERVER_TIMESTAMP})
        self._add_version(batch, doc_ref, version)

        await self._commit(batch, "line items", document_id=document_id)
        logger.info(
            "line_items_replaced",
            document_type=document_type,
            document_id=document_id,
            removed=len(existing),
            written=len(line_items)
        )

    async def update_document(
        self,
        document_type: str,
        document_id: str,
        data: Dict[str, Any]
    ) -> None:
        """Update document fields.

        Raises:
            JobLedgerError: If Firestore operation fails.
        """
        try:
            doc_ref = self._document_ref(document_type, document_id)
            data["updatedAt"] = firestore.SERVER_TIMESTAMP
            await self._maybe_await(doc_ref.update(data))
            logger.info(
                "document_updated",
                document_type=document_type,
                document_id=document_id,
                fields=list(data.keys())
            )
        except JobLedgerError:
            raise
        except Exception as e:
            logger.error("firestore_update_failed", document_id=document_id, error=str(e))
            raise JobLedgerError(
                code=ErrorCode.FIRESTORE_WRITE_FAILED,
                message=f"Failed to update {document_type}: {str(e)}",
                details={"document_id": document_id}
            )

    async def apply_change_order(
        self,
        estimate_id: str,
        change_order_id: str,
        estimate_update: Dict[str, Any],
        change_order_update: Dict[str, Any],
        version: Dict[str, Any]
    ) -> None:
        """Update estimate totals, mark the change order and append a version atomically."""
        estimate_ref = self._document_ref("estimate", estimate_id)
        change_order_ref = self._document_ref("change_order", change_order_id)

        batch = self.db.batch()
        batch.update(estimate_ref, {**estimate_update, "updatedAt": firestore.SERVER_TIMESTAMP})
        batch.update(change_order_ref, {**change_order_update, "updatedAt": firestore.SERVER_TIMESTAMP})
        self._add_version(batch, estimate_ref, version)

        await self._commit(
            batch,
            "change order approval",
            estimate_id=estimate_id,
            change_order_id=change_order_id
        )

    async def delete_document(self, document_type: str, document_id: str) -> None:
        """Delete a document with its line items and versions.

        Raises:
            JobLedgerError: If Firestore operation fails.
        """
        try:
            doc_ref = self._document_ref(document_type, document_id)

            for subcollection_name in (self.SUBCOLLECTION_LINE_ITEMS, self.SUBCOLLECTION_VERSIONS):
                docs = doc_ref.collection(subcollection_name).stream()
                for doc in docs:
                    await self._maybe_await(doc.reference.delete())

            await self._maybe_await(doc_ref.delete())
            logger.info("document_deleted", document_type=document_type, document_id=document_id)

        except JobLedgerError:
            raise
        except Exception as e:
            logger.error("document_delete_failed", document_id=document_id, error=str(e))
            raise JobLedgerError(
                code=ErrorCode.FIRESTORE_ERROR,
                message=f"Failed to delete {document_type}: {str(e)}",
                details={"document_id": document_id}
            )

    # ------------------------------------------------------------------
    # Estimate versions
    # ------------------------------------------------------------------

    async def list_versions(self, estimate_id: str) -> List[Dict[str, Any]]:
        """Versions of an estimate in ascending version order."""
        query = (
            self._document_ref("estimate", estimate_id)
            .collection(self.SUBCOLLECTION_VERSIONS)
            .order_by("versionNumber")
        )
        return await self._query(query, "estimate versions", estimate_id=estimate_id)

    # ------------------------------------------------------------------
    # Work entries
    # ------------------------------------------------------------------

    async def create_work_entries(self, entries: Sequence[Dict[str, Any]]) -> List[str]:
        """Create work entries in one batch.

        Returns:
            IDs of the created entries, in input order.
        """
        collection = self.db.collection(self.COLLECTION_WORK_ENTRIES)
        batch = self.db.batch()
        ids = []
        for entry in entries:
            doc_ref = collection.document()
            batch.set(doc_ref, {**entry, "createdAt": firestore.SERVER_TIMESTAMP})
            ids.append(doc_ref.id)

        await self._commit(batch, "work entries", count=len(ids))
        return ids

    async def get_work_entry(self, work_entry_id: str) -> Optional[Dict[str, Any]]:
        """Fetch work entry by ID."""
        doc_ref = self.db.collection(self.COLLECTION_WORK_ENTRIES).document(work_entry_id)
        return await self._get(doc_ref, "work entry", work_entry_id=work_entry_id)

    async def update_work_entry(self, work_entry_id: str, data: Dict[str, Any]) -> None:
        """Update work entry fields."""
        try:
            doc_ref = self.db.collection(self.COLLECTION_WORK_ENTRIES).document(work_entry_id)
            await self._maybe_await(doc_ref.update(data))
        except Exception as e:
            logger.error("work_entry_update_failed", work_entry_id=work_entry_id, error=str(e))
            raise JobLedgerError(
                code=ErrorCode.FIRESTORE_WRITE_FAILED,
                message=f"Failed to update work entry: {str(e)}",
                details={"work_entry_id": work_entry_id}
            )

    async def list_work_entries(self, project_id: str) -> List[Dict[str, Any]]:
        """All work entries of a project, any status."""
        query = (
            self.db
            .collection(self.COLLECTION_WORK_ENTRIES)
            .where(filter=firestore.FieldFilter("projectId", "==", project_id))
        )
        return await self._query(query, "work entries", project_id=project_id)

    # ------------------------------------------------------------------
    # Audit log and conversation
    # ------------------------------------------------------------------

    async def record_audit(self, data: Dict[str, Any]) -> str:
        """Append an audit log record."""
        try:
            doc_ref = self.db.collection(self.COLLECTION_AUDIT_LOGS).document()
            await self._maybe_await(doc_ref.set({**data, "createdAt": firestore.SERVER_TIMESTAMP}))
            return doc_ref.id
        except Exception as e:
            raise JobLedgerError(
                code=ErrorCode.FIRESTORE_WRITE_FAILED,
                message=f"Failed to record audit log: {str(e)}",
                details={"action": data.get("action")}
            )

    async def list_audit_logs(self, project_id: str, limit: int) -> List[Dict[str, Any]]:
        """Most recent audit records of a project, newest first."""
        query = (
            self.db
            .collection(self.COLLECTION_AUDIT_LOGS)
            .where(filter=firestore.FieldFilter("projectId", "==", project_id))
            .order_by("createdAt", direction=firestore.Query.DESCENDING)
            .limit(int(limit))
        )
        return await self._query(query, "audit logs", project_id=project_id)

    async def add_message(self, project_id: str, role: str, content: str) -> None:
        """Append a conversation turn to the project's chat."""
        try:
            doc_ref = (
                self.db
                .collection(self.COLLECTION_PROJECTS)
                .document(project_id)
                .collection(self.SUBCOLLECTION_MESSAGES)
                .document()
            )
            await self._maybe_await(doc_ref.set({
                "role": role,
                "content": content,
                "createdAt": firestore.SERVER_TIMESTAMP
            }))
        except Exception as e:
            raise JobLedgerError(
                code=ErrorCode.FIRESTORE_WRITE_FAILED,
                message=f"Failed to save message: {str(e)}",
                details={"project_id": project_id}
            )

    async def list_messages(self, project_id: str, limit: int) -> List[Dict[str, Any]]:
        """Most recent conversation turns, oldest first."""
        query = (
            self.db
            .collection(self.COLLECTION_PROJECTS)
            .document(project_id)
            .collection(self.SUBCOLLECTION_MESSAGES)
            .order_by("createdAt", direction=firestore.Query.DESCENDING)
            .limit(int(limit))
        )
        messages = await self._query(query, "messages", project_id=project_id)
        return list(reversed(messages))

    async def get_draft_generation(self, project_id: str) -> int:
        """Current draft generation of the project's conversation."""
        doc_ref = self.db.collection(self.COLLECTION_PROJECTS).document(project_id)
        project = await self._get(doc_ref, "project", project_id=project_id) or {}
        return int(project.get("draftGeneration") or 0)

    async def bump_draft_generation(self, project_id: str) -> int:
        """Atomically advance the draft generation and return the new value."""
        doc_ref = self.db.collection(self.COLLECTION_PROJECTS).document(project_id)
        try:
            await self._maybe_await(doc_ref.set(
                {"draftGeneration": firestore.Increment(1), "updatedAt": firestore.SERVER_TIMESTAMP},
                merge=True
            ))
        except Exception as e:
            logger.error("draft_generation_bump_failed", project_id=project_id, error=str(e))
            raise JobLedgerError(
                code=ErrorCode.FIRESTORE_WRITE_FAILED,
                message=f"Failed to advance draft generation: {str(e)}",
                details={"project_id": project_id}
            )
        return await self.get_draft_generation(project_id)
