"""
Audit trail service.

Writes DividendAuditEntry rows in the caller's transaction. Callers commit;
a rolled-back change leaves no audit row behind.
"""
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from dividend_ledger.models.audit import DividendAuditEntry

logger = structlog.get_logger()


def model_to_dict(obj: Any, only: Optional[Iterable[str]] = None) -> Optional[Dict[str, Any]]:
    """Convert a SQLAlchemy model to a JSON-safe dictionary."""
    if obj is None:
        return None

    names = set(only) if only is not None else None
    result = {}
    for column in obj.__table__.columns:
        if names is not None and column.name not in names:
            continue
        value = getattr(obj, column.name)
        if isinstance(value, (datetime, date)):
            value = value.isoformat()
        elif isinstance(value, Decimal):
            value = str(value)
        result[column.name] = value
    return result


def record_entry(
    db: AsyncSession,
    entity_type: str,
    entity_id: int,
    action: str,
    actor_id: str,
    company_id: Optional[int] = None,
    old_state: Optional[Dict] = None,
    new_state: Optional[Dict] = None,
) -> DividendAuditEntry:
    """
    Add an audit entry to the session.

    Args:
        entity_type: "dividend", "dividend_round", "dividend_computation", "dividend_payment"
        entity_id: Primary key of the changed row
        action: What happened ("generate", "transition", "tax_computed", ...)
        actor_id: Who triggered the change (user id or "system:<job>")
        old_state: Previous state (None for creation)
        new_state: New state
    """
    if not actor_id:
        raise ValueError("actor_id is required for audit entries")

    entry = DividendAuditEntry(
        entity_type=entity_type,
        entity_id=entity_id,
        company_id=company_id,
        action=action,
        old_state=old_state,
        new_state=new_state,
        actor_id=str(actor_id),
    )
    db.add(entry)

    logger.debug(
        "Recorded audit entry",
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        actor_id=actor_id,
    )
    return entry
