"""Document Event Logger for JobLedger.

Highly visible, formatted logging for committed documents, applied
change orders and rejected approvals, with distinctive visual markers
that stand out in the Cloud Functions log stream.
"""

import json
import structlog
from typing import Dict, Any, List, Optional
from datetime import datetime, timezone

logger = structlog.get_logger()

BANNER_WIDTH = 80
DOCUMENT_BANNER_CHAR = "═"
CHANGE_ORDER_BANNER_CHAR = "─"
REJECTED_BANNER_CHAR = "░"


def _create_banner(char: str, text: str, width: int = BANNER_WIDTH) -> str:
    """Create a centered banner with given character."""
    text_with_spaces = f" {text} "
    padding = (width - len(text_with_spaces)) // 2
    return char * padding + text_with_spaces + char * (width - padding - len(text_with_spaces))


def _format_json(data: Dict[str, Any], indent: int = 2) -> str:
    """Format dictionary as pretty JSON string."""
    try:
        return json.dumps(data, indent=indent, default=str, ensure_ascii=False)
    except (TypeError, ValueError):
        return str(data)


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def log_document_committed(
    document_type: str,
    document_id: str,
    number: int,
    line_item_count: int,
    totals: Dict[str, Any]
) -> None:
    """Log a draft committed as a persisted document."""
    title = f"{document_type.upper().replace('_', ' ')} #{number} COMMITTED"

    print("\n")
    print(_create_banner(DOCUMENT_BANNER_CHAR, title))
    print(f"║ Document ID : {document_id}")
    print(f"║ Timestamp   : {_timestamp()}")
    print(f"║ Line items  : {line_item_count}")
    print(f"║ Subtotal    : ${totals.get('subtotal', 0):,.2f}")
    print(f"║ Tax         : ${totals.get('taxAmount', 0):,.2f} ({totals.get('taxRate', 0)}%)")
    print(f"║ Total       : ${totals.get('total', 0):,.2f}")
    print(DOCUMENT_BANNER_CHAR * BANNER_WIDTH)
    print("\n")

    logger.info(
        "document_commit_logged",
        document_type=document_type,
        document_id=document_id,
        number=number,
        total=totals.get("total")
    )


def log_change_order_applied(
    estimate_id: str,
    change_order_id: str,
    cost_impact: float,
    old_total: float,
    new_total: float,
    version_number: int
) -> None:
    """Log a change order applied to its estimate."""
    sign = "+" if cost_impact >= 0 else "-"

    print("\n")
    print(_create_banner(CHANGE_ORDER_BANNER_CHAR, "CHANGE ORDER APPLIED"))
    print(f"│ Estimate     : {estimate_id}")
    print(f"│ Change order : {change_order_id}")
    print(f"│ Cost impact  : {sign}${abs(cost_impact):,.2f}")
    print(f"│ Total        : ${old_total:,.2f} → ${new_total:,.2f}")
    print(f"│ Version      : v{version_number}")
    print(CHANGE_ORDER_BANNER_CHAR * BANNER_WIDTH)
    print("\n")

    logger.info(
        "change_order_apply_logged",
        estimate_id=estimate_id,
        change_order_id=change_order_id,
        cost_impact=cost_impact,
        version_number=version_number
    )


def log_approval_rejected(
    draft_type: str,
    errors: List[str],
    project_id: Optional[str] = None,
    draft: Optional[Dict[str, Any]] = None
) -> None:
    """Log a draft approval that failed validation."""
    print("\n")
    print(_create_banner(REJECTED_BANNER_CHAR, f"{draft_type.upper()} APPROVAL REJECTED"))
    print(f"░ Project : {project_id or 'N/A'}")
    print(f"░ Errors  : {len(errors)}")
    for error in errors:
        print(f"░   • {error}")
    if draft:
        print("░ Draft:")
        for line in _format_json(draft).split("\n"):
            print(f"░   {line}")
    print(REJECTED_BANNER_CHAR * BANNER_WIDTH)
    print("\n")

    logger.warning(
        "approval_rejected_logged",
        draft_type=draft_type,
        project_id=project_id,
        error_count=len(errors)
    )
