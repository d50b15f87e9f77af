"""
ConversionRecord model — append-only ledger of category exits.

At most one row per person inside the dedup window; enforced by the ledger
service, not by a constraint, because the window is rolling.
"""
from sqlalchemy import Column, Integer, BigInteger, Text, DateTime, JSON, Index

from leadqueue.database import Base, utcnow
from leadqueue.models.enums import Category, ConversionType, enum_column


class ConversionRecord(Base):
    __tablename__ = 'conversions'

    id = Column(Integer, primary_key=True, autoincrement=True)
    person_id = Column(BigInteger, nullable=False)
    previous_category = Column(enum_column(Category), nullable=True)
    conversion_type = Column(enum_column(ConversionType), nullable=False)
    reason = Column(Text, default='')
    final_score = Column(Integer, default=0)
    total_attempts = Column(Integer, default=0)
    converted_at = Column(DateTime, nullable=False)
    primary_agent_id = Column(Text, nullable=True)
    contributing_agents = Column(JSON, default=list)
    attribution_method = Column(Text, nullable=True)   # inline / backfill
    attributed_at = Column(DateTime, nullable=True)
    source = Column(Text, default='')                  # discovery / transition / leak_recovery
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index('ix_conversions_person_converted', 'person_id', 'converted_at'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'person_id': self.person_id,
            'previous_category': self.previous_category.value if self.previous_category else None,
            'conversion_type': self.conversion_type.value,
            'reason': self.reason or '',
            'final_score': self.final_score,
            'total_attempts': self.total_attempts,
            'converted_at': self.converted_at.isoformat() if self.converted_at else None,
            'primary_agent_id': self.primary_agent_id,
            'contributing_agents': self.contributing_agents or [],
            'attribution_method': self.attribution_method,
            'source': self.source or '',
        }
