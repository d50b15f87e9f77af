"""
LeadTransition model — audit trail of every category move.

Exit rows (to_category is None) are what the leak detector scans.
"""
from sqlalchemy import Column, Integer, BigInteger, Text, Boolean, DateTime, JSON, ForeignKey, Index

from leadqueue.database import Base, utcnow
from leadqueue.models.enums import Category, TransitionSource, RecoveryStatus, enum_column


class LeadTransition(Base):
    __tablename__ = 'lead_transitions'

    id = Column(Integer, primary_key=True, autoincrement=True)
    person_id = Column(BigInteger, nullable=False, index=True)
    from_category = Column(enum_column(Category), nullable=True)
    to_category = Column(enum_column(Category), nullable=True)
    reason = Column(Text, default='')
    source = Column(enum_column(TransitionSource), nullable=False)
    agent_id = Column(Text, nullable=True)
    conversion_id = Column(Integer, ForeignKey('conversions.id'), nullable=True)
    conversion_logged = Column(Boolean, nullable=False, default=False)
    recovery_status = Column(enum_column(RecoveryStatus), nullable=True)
    occurred_at = Column(DateTime, nullable=False, default=utcnow)
    details = Column(JSON, nullable=True)

    __table_args__ = (
        Index('ix_lead_transitions_exit_scan', 'conversion_logged', 'occurred_at'),
    )

    @property
    def is_exit(self):
        return self.from_category is not None and self.to_category is None

    def to_dict(self):
        return {
            'id': self.id,
            'person_id': self.person_id,
            'from_category': self.from_category.value if self.from_category else None,
            'to_category': self.to_category.value if self.to_category else None,
            'reason': self.reason or '',
            'source': self.source.value,
            'agent_id': self.agent_id,
            'conversion_id': self.conversion_id,
            'conversion_logged': self.conversion_logged,
            'recovery_status': self.recovery_status.value if self.recovery_status else None,
            'occurred_at': self.occurred_at.isoformat() if self.occurred_at else None,
        }
