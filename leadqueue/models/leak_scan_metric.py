"""
LeakScanMetric model — one row per leak detector scan, for health reporting.
"""
from sqlalchemy import Column, Integer, DateTime

from leadqueue.database import Base, utcnow


class LeakScanMetric(Base):
    __tablename__ = 'leak_scan_metrics'

    id = Column(Integer, primary_key=True, autoincrement=True)
    scanned_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    window_minutes = Column(Integer, default=0)
    exits_checked = Column(Integer, default=0)
    potential_leaks = Column(Integer, default=0)
    recovered = Column(Integer, default=0)
    unrecovered = Column(Integer, default=0)
    duration_ms = Column(Integer, default=0)
