"""Tests for leadqueue.services.leases — lease maths and compare-and-swap claims."""
from datetime import timedelta

from leadqueue.models.lead_record import LeadRecord
from leadqueue.services.leases import Lease, LEAD_LEASE, claim_row, lease_free


class TestLease:

    def test_expires_at(self, now):
        assert Lease('x', 30).expires_at(now) == now + timedelta(seconds=30)

    def test_lead_lease_is_five_minutes(self):
        assert LEAD_LEASE.ttl_seconds == 300


class TestClaimRow:
    """claim_row() succeeds for exactly one caller."""

    def _claim(self, session, lead, agent, now):
        where = [lease_free(LeadRecord.claimed_by_agent_id, LeadRecord.lease_expires_at, now)]
        won = claim_row(session, LeadRecord, lead.id, where, {
            'claimed_by_agent_id': agent,
            'lease_expires_at': LEAD_LEASE.expires_at(now),
        })
        session.commit()
        return won

    def test_second_claim_loses(self, db_session, make_lead, now):
        lead = make_lead(601)
        assert self._claim(db_session, lead, 'agent-1', now) is True
        assert self._claim(db_session, lead, 'agent-2', now) is False
        assert lead.claimed_by_agent_id == 'agent-1'

    def test_lapsed_lease_can_be_taken_over(self, db_session, make_lead, now):
        lead = make_lead(602, claimed_by_agent_id='agent-1', lease_expires_at=now - timedelta(seconds=1))
        assert self._claim(db_session, lead, 'agent-2', now) is True
        assert lead.claimed_by_agent_id == 'agent-2'

    def test_missing_row(self, db_session, now):
        assert claim_row(db_session, LeadRecord, 12345, [], {'claimed_by_agent_id': 'a'}) is False
