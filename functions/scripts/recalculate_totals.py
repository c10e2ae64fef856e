"""
Recalculate subtotal / tax / total for every estimate and invoice in Firestore.

Line items are re-derived and rolled up (parents count once, via their
children). Estimates keep the impact of their approved change orders.
Tax is applied with the owning user's current tax rate.
Use after fixing rounding or hierarchy bugs that left stored totals stale.

Usage (Firestore emulator):
  $env:FIRESTORE_EMULATOR_HOST="127.0.0.1:8080"
  $env:GCLOUD_PROJECT="jobledger-dev"
  python scripts/recalculate_totals.py --dry-run
"""

from __future__ import annotations

import argparse
import asyncio
import os
from typing import Any, Dict, List, Optional


async def _recalculate(collection_type: str, dry_run: bool) -> int:
    from firebase_admin import firestore

    from models.document import ChangeOrder
    from models.line_item import LineItem
    from services.change_order_calculator import approved_change_order_impact
    from services.firestore_service import FirestoreService
    from services.rollup_engine import flatten_with_totals
    from services.totals_calculator import compute_document_totals, normalize_line_items

    service = FirestoreService()
    profiles: Dict[str, Dict[str, Any]] = {}
    projects: Dict[str, Optional[Dict[str, Any]]] = {}
    change_orders: Dict[str, List[ChangeOrder]] = {}

    async def tax_rate_for(document: Dict[str, Any]) -> float:
        project_id = document.get("projectId")
        if project_id not in projects:
            projects[project_id] = await service.get_project(project_id) if project_id else None
        user_id = (projects[project_id] or {}).get("userId")
        if user_id and user_id not in profiles:
            profiles[user_id] = await service.get_user_profile(user_id)
        rate = (profiles.get(user_id) or {}).get("defaultTaxRate")
        return float(rate if rate is not None else document.get("taxRate") or 0)

    async def adjustment_for(document: Dict[str, Any]) -> float:
        if collection_type != "estimate":
            return 0.0
        project_id = document.get("projectId")
        if project_id not in change_orders:
            change_orders[project_id] = [
                ChangeOrder.model_validate(row)
                for row in await service.list_documents("change_order", project_id)
            ] if project_id else []
        return approved_change_order_impact(change_orders[project_id], document["id"])

    collection = service.collection_for(collection_type)
    snapshots = firestore.client().collection(collection).stream()
    updated = 0

    for snap in snapshots:
        document = {"id": snap.id, **(snap.to_dict() or {})}
        rows = await service.get_line_items(collection_type, snap.id)
        items = flatten_with_totals(normalize_line_items([LineItem.model_validate(r) for r in rows]))
        totals = compute_document_totals(
            items,
            await tax_rate_for(document),
            await adjustment_for(document)
        )

        label = f"{collection_type} #{document.get('number', '?')} ({snap.id})"
        print(
            f"✓ {label}: subtotal {document.get('subtotal')} → {totals.subtotal}, "
            f"total {document.get('total')} → {totals.total}"
        )
        if dry_run:
            continue

        await service.replace_line_items(
            collection_type,
            snap.id,
            [item.to_firestore_dict() for item in items],
            totals.model_dump(by_alias=True)
        )
        updated += 1

    return updated


def main() -> int:
    parser = argparse.ArgumentParser(description="Recalculate estimate and invoice totals from line items")
    parser.add_argument(
        "--project-id",
        required=False,
        help="GCP/Firebase project id (if not set, uses GCLOUD_PROJECT / FIREBASE_PROJECT_ID)",
    )
    parser.add_argument("--dry-run", action="store_true", help="Print new totals without writing")
    args = parser.parse_args()

    project_id = (
        args.project_id
        or os.environ.get("GCLOUD_PROJECT")
        or os.environ.get("FIREBASE_PROJECT_ID")
        or "jobledger-dev"
    )

    import firebase_admin

    if not firebase_admin._apps:
        firebase_admin.initialize_app(options={"projectId": project_id})

    print("Starting total recalculation...\n")
    for collection_type in ("estimate", "invoice"):
        count = asyncio.run(_recalculate(collection_type, args.dry_run))
        print(f"\nUpdated {count} {collection_type} documents\n")

    print("Done.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
