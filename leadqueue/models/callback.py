"""
Callback model — a scheduled, agent-preferential contact request.

The callback lane always outranks the ordinary category queues.
"""
from sqlalchemy import Column, Integer, BigInteger, Text, DateTime, Index

from leadqueue.database import Base, utcnow
from leadqueue.models.enums import Category, CallbackStatus, enum_column


class Callback(Base):
    __tablename__ = 'callbacks'

    id = Column(Integer, primary_key=True, autoincrement=True)
    person_id = Column(BigInteger, nullable=False, index=True)
    category = Column(enum_column(Category), nullable=True)
    scheduled_for = Column(DateTime, nullable=False)
    preferred_agent_id = Column(Text, nullable=True)
    status = Column(enum_column(CallbackStatus), nullable=False, default=CallbackStatus.PENDING)
    assigned_to_agent_id = Column(Text, nullable=True)
    assigned_at = Column(DateTime, nullable=True)
    lease_expires_at = Column(DateTime, nullable=True)
    retry_count = Column(Integer, nullable=False, default=0)
    max_retries = Column(Integer, nullable=False, default=1)
    last_failed_agent_id = Column(Text, nullable=True)
    reason = Column(Text, default='')
    completion_reason = Column(Text, nullable=True)   # answered / retries_exhausted / ...
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index('ix_callbacks_due', 'status', 'scheduled_for'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'person_id': self.person_id,
            'category': self.category.value if self.category else None,
            'scheduled_for': self.scheduled_for.isoformat() if self.scheduled_for else None,
            'preferred_agent_id': self.preferred_agent_id,
            'status': self.status.value,
            'assigned_to_agent_id': self.assigned_to_agent_id,
            'lease_expires_at': self.lease_expires_at.isoformat() if self.lease_expires_at else None,
            'retry_count': self.retry_count,
            'max_retries': self.max_retries,
            'reason': self.reason or '',
            'completion_reason': self.completion_reason,
        }
