"""
CallContact model — one row per completed contact attempt (the evidence trail
used for agent attribution).
"""
from sqlalchemy import Column, Integer, BigInteger, Text, DateTime, Index

from leadqueue.database import Base, utcnow
from leadqueue.models.enums import Category, CallOutcome, enum_column


class CallContact(Base):
    __tablename__ = 'call_contacts'

    id = Column(Integer, primary_key=True, autoincrement=True)
    person_id = Column(BigInteger, nullable=False)
    agent_id = Column(Text, nullable=False)
    category = Column(enum_column(Category), nullable=True)
    outcome = Column(enum_column(CallOutcome), nullable=False)
    talk_time_seconds = Column(Integer, default=0)
    started_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index('ix_call_contacts_person_started', 'person_id', 'started_at'),
    )
