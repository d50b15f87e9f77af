"""
Agent presence — heartbeats and the "how many agents can take a call" count
used by the inbound timeout policy.
"""
import logging
from datetime import timedelta

from leadqueue.config import AGENT_HEARTBEAT_TIMEOUT_SECONDS
from leadqueue.database import session_scope, utcnow
from leadqueue.models.agent_session import AgentSession
from leadqueue.models.enums import AgentStatus
from leadqueue.services.leases import conditional_update

logger = logging.getLogger('services.agents')


def heartbeat(agent_id: str, status: AgentStatus = AgentStatus.AVAILABLE, now=None, session=None) -> dict:
    """Record that an agent is alive, and what they are doing."""
    status = AgentStatus(status)
    now = now or utcnow()
    with session_scope(session) as s:
        row = s.query(AgentSession).filter_by(agent_id=agent_id).first()
        if row is None:
            row = AgentSession(agent_id=agent_id)
            s.add(row)
        row.status = status
        row.last_heartbeat_at = now
    return {'agent_id': agent_id, 'status': status.value, 'last_heartbeat_at': now.isoformat()}


def available_agent_count(now=None, session=None) -> int:
    """Agents marked available whose heartbeat is still fresh."""
    now = now or utcnow()
    cutoff = now - timedelta(seconds=AGENT_HEARTBEAT_TIMEOUT_SECONDS)
    with session_scope(session) as s:
        return (
            s.query(AgentSession)
            .filter(
                AgentSession.status == AgentStatus.AVAILABLE,
                AgentSession.last_heartbeat_at >= cutoff,
            )
            .count()
        )


def expire_stale_sessions(now=None, session=None) -> int:
    """Mark agents offline when their heartbeat has gone quiet."""
    now = now or utcnow()
    cutoff = now - timedelta(seconds=AGENT_HEARTBEAT_TIMEOUT_SECONDS)
    with session_scope(session) as s:
        expired = conditional_update(
            s, AgentSession,
            [AgentSession.status != AgentStatus.OFFLINE, AgentSession.last_heartbeat_at < cutoff],
            {'status': AgentStatus.OFFLINE},
        )
    if expired:
        logger.info("Marked %d agent session(s) offline after missed heartbeats", expired)
    return expired
