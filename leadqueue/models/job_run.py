"""
JobRun model — one row per batch job execution (discovery, aging, sweeps...).
"""
from sqlalchemy import Column, Text, Integer, Float, Boolean, DateTime, JSON, Index

from leadqueue.database import Base, utcnow


class JobRun(Base):
    __tablename__ = 'job_runs'

    id = Column(Text, primary_key=True)
    job = Column(Text, nullable=False)
    status = Column(Text, nullable=False, default='queued')
    params = Column(JSON, default=dict)
    processed = Column(Integer, default=0)
    failed = Column(Integer, default=0)
    skipped = Column(Integer, default=0)
    stats = Column(JSON, default=dict)
    errors = Column(JSON, default=list)
    can_resume = Column(Boolean, default=False)
    next_offset = Column(Text, nullable=True)
    duration_seconds = Column(Float, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    started_at = Column(DateTime, nullable=True)
    finished_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index('ix_job_runs_job_created', 'job', 'created_at'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'job': self.job,
            'status': self.status,
            'params': self.params or {},
            'processed': self.processed or 0,
            'failed': self.failed or 0,
            'skipped': self.skipped or 0,
            'stats': self.stats or {},
            'errors': (self.errors or [])[-20:],
            'can_resume': bool(self.can_resume),
            'next_offset': self.next_offset,
            'duration_seconds': self.duration_seconds,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'finished_at': self.finished_at.isoformat() if self.finished_at else None,
        }
