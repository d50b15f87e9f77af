"""
LeadRecord model — one row per eligible person, keyed by person_id.

Holds the scheduling state: score (0 = call immediately, 200 = terminal),
the queue category, and the lease used when an agent claims the lead from the
ordinary queue.
"""
from sqlalchemy import Column, Integer, BigInteger, Text, Boolean, Date, DateTime, Index

from leadqueue.database import Base, utcnow
from leadqueue.models.enums import Category, CallOutcome, enum_column


class LeadRecord(Base):
    __tablename__ = 'lead_records'

    id = Column(Integer, primary_key=True, autoincrement=True)
    person_id = Column(BigInteger, nullable=False, unique=True)
    score = Column(Integer, nullable=False, default=0)
    category = Column(enum_column(Category), nullable=True)   # None = in no queue
    active = Column(Boolean, nullable=False, default=True)
    reason = Column(Text, default='')                          # why the lead qualifies
    pending_count = Column(Integer, default=0)
    total_attempts = Column(Integer, nullable=False, default=0)
    successful_calls = Column(Integer, nullable=False, default=0)
    last_outcome = Column(enum_column(CallOutcome), nullable=True)
    last_aged_on = Column(Date, nullable=True)
    last_reset_at = Column(DateTime, nullable=True)
    last_contacted_at = Column(DateTime, nullable=True)
    last_checked_at = Column(DateTime, nullable=True)
    last_converted_at = Column(DateTime, nullable=True)
    claimed_by_agent_id = Column(Text, nullable=True)
    lease_expires_at = Column(DateTime, nullable=True)
    claimed_category = Column(enum_column(Category), nullable=True)  # queue the lead was claimed from
    last_failed_agent_id = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index('ix_lead_records_queue', 'active', 'category', 'score', 'created_at'),
    )

    def to_dict(self):
        return {
            'person_id': self.person_id,
            'score': self.score,
            'category': self.category.value if self.category else None,
            'active': self.active,
            'reason': self.reason or '',
            'pending_count': self.pending_count or 0,
            'total_attempts': self.total_attempts,
            'successful_calls': self.successful_calls,
            'last_outcome': self.last_outcome.value if self.last_outcome else None,
            'last_contacted_at': self.last_contacted_at.isoformat() if self.last_contacted_at else None,
            'last_checked_at': self.last_checked_at.isoformat() if self.last_checked_at else None,
            'claimed_by_agent_id': self.claimed_by_agent_id,
            'lease_expires_at': self.lease_expires_at.isoformat() if self.lease_expires_at else None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }
