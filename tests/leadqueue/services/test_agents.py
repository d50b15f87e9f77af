"""Tests for leadqueue.services.agents — heartbeats and availability."""
from datetime import timedelta

from leadqueue.models.agent_session import AgentSession
from leadqueue.models.enums import AgentStatus
from leadqueue.services.agents import heartbeat, available_agent_count, expire_stale_sessions


class TestAgentPresence:

    def test_heartbeat_upserts(self, db_session, now):
        heartbeat('agent-1', now=now)
        heartbeat('agent-1', AgentStatus.ON_CALL, now=now + timedelta(seconds=10))
        rows = db_session.query(AgentSession).all()
        assert len(rows) == 1
        assert rows[0].status == AgentStatus.ON_CALL

    def test_available_count_ignores_stale_and_busy(self, now):
        heartbeat('agent-1', now=now)
        heartbeat('agent-2', AgentStatus.ON_CALL, now=now)
        heartbeat('agent-3', now=now - timedelta(minutes=30))
        assert available_agent_count(now=now) == 1

    def test_expire_stale_sessions(self, db_session, now):
        heartbeat('agent-1', now=now - timedelta(minutes=30))
        heartbeat('agent-2', now=now)
        assert expire_stale_sessions(now=now) == 1
        row = db_session.query(AgentSession).filter_by(agent_id='agent-1').one()
        assert row.status == AgentStatus.OFFLINE
