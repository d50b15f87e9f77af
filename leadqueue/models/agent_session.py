"""
AgentSession model — presence/heartbeat per agent.
"""
from sqlalchemy import Column, Integer, Text, DateTime

from leadqueue.database import Base, utcnow
from leadqueue.models.enums import AgentStatus, enum_column


class AgentSession(Base):
    __tablename__ = 'agent_sessions'

    id = Column(Integer, primary_key=True, autoincrement=True)
    agent_id = Column(Text, nullable=False, unique=True)
    status = Column(enum_column(AgentStatus), nullable=False, default=AgentStatus.OFFLINE)
    last_heartbeat_at = Column(DateTime, nullable=False, default=utcnow)
