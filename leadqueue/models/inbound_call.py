"""
InboundCallQueueEntry model — a live inbound call waiting for an agent.

Same claim semantics as the ordinary queue, but entries come from the
telephony layer and use a short assignment grace period instead of a lease.
"""
from sqlalchemy import Column, Integer, BigInteger, Text, Boolean, DateTime

from leadqueue.database import Base, utcnow
from leadqueue.models.enums import InboundStatus, enum_column


class InboundCallQueueEntry(Base):
    __tablename__ = 'inbound_call_queue'

    id = Column(Integer, primary_key=True, autoincrement=True)
    call_sid = Column(Text, nullable=False, unique=True)
    person_id = Column(BigInteger, nullable=True)      # None = unknown caller
    phone_number = Column(Text, default='')
    priority = Column(Integer, nullable=False, default=50)   # higher answers first
    queue_position = Column(Integer, nullable=True)
    status = Column(enum_column(InboundStatus), nullable=False, default=InboundStatus.WAITING)
    entered_at = Column(DateTime, nullable=False, default=utcnow)
    assigned_to_agent_id = Column(Text, nullable=True)
    assigned_at = Column(DateTime, nullable=True)
    lease_expires_at = Column(DateTime, nullable=True)
    last_attempted_agent_id = Column(Text, nullable=True)
    attempts_count = Column(Integer, nullable=False, default=0)
    max_wait_reached = Column(Boolean, nullable=False, default=False)
    estimated_wait_seconds = Column(Integer, nullable=True)
    abandon_reason = Column(Text, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    def to_dict(self):
        return {
            'id': self.id,
            'call_sid': self.call_sid,
            'person_id': self.person_id,
            'phone_number': self.phone_number or '',
            'priority': self.priority,
            'queue_position': self.queue_position,
            'status': self.status.value,
            'entered_at': self.entered_at.isoformat() if self.entered_at else None,
            'assigned_to_agent_id': self.assigned_to_agent_id,
            'attempts_count': self.attempts_count,
            'max_wait_reached': self.max_wait_reached,
            'estimated_wait_seconds': self.estimated_wait_seconds,
            'abandon_reason': self.abandon_reason,
        }
