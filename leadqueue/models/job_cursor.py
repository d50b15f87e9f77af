"""
JobCursor model — persisted resume point for paginated batch jobs.

One row per job key (e.g. "discovery:unsigned"). position is the last
person_id fully committed; None means start from the beginning.
"""
from sqlalchemy import Column, Text, BigInteger, DateTime

from leadqueue.database import Base, utcnow


class JobCursor(Base):
    __tablename__ = 'job_cursors'

    key = Column(Text, primary_key=True)
    position = Column(BigInteger, nullable=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
