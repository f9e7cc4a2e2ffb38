"""
Audit trail for dividend ledger mutations.

Every generation and every status transition writes one row here inside the
same transaction as the change itself.
"""
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Index, JSON

from dividend_ledger.models.database import Base


class DividendAuditEntry(Base):
    """Immutable log of ledger state changes"""
    __tablename__ = "dividend_audit_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)

    # What entity changed
    entity_type = Column(String(50), nullable=False)  # "dividend", "dividend_round"
    entity_id = Column(Integer, nullable=False)
    company_id = Column(Integer, nullable=True, index=True)

    action = Column(String(50), nullable=False)  # "generate", "transition", "tax_computed"
    old_state = Column(JSON, nullable=True)  # NULL for creation
    new_state = Column(JSON, nullable=True)

    # Who triggered the change
    actor_id = Column(String(100), nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_dividend_audit_entity", "entity_type", "entity_id"),
    )

    def __repr__(self):
        return f"<DividendAuditEntry {self.entity_type}:{self.entity_id} {self.action} by {self.actor_id}>"
